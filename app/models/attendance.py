"""
AttendanceRecord model — one row per employee per calendar day.

The row is created by a punch-in and closed exactly once by the matching
punch-out. ``total_hours`` and the final ``status`` only exist after punch-out.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (Column, DateTime, Float, ForeignKey, Index, Integer,
                        String, UniqueConstraint)
from sqlalchemy.orm import relationship

from app.db.base import Base


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_emp_date"),
        Index("ix_attendance_employee_date", "employee_id", "attendance_date"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)  # type: ignore[assignment]
    attendance_date: str = Column(String(10), nullable=False)  # type: ignore[assignment]  # YYYY-MM-DD
    punch_in_time: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    punch_out_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    total_hours: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    status: str | None = Column(String(10), nullable=True)  # type: ignore[assignment]
    # present | partial | absent
    notes: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]

    employee = relationship("Employee", back_populates="attendance_records")
