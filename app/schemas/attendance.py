"""Pydantic schemas for attendance records, punch actions and service status."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# ── Records ─────────────────────────────────────────────────────────
class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    attendance_date: str
    punch_in_time: datetime
    punch_out_time: datetime | None = None
    total_hours: float | None = None
    status: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


# ── Session state ───────────────────────────────────────────────────
class AttendanceStateRead(BaseModel):
    employee_id: int
    today: str | None
    today_record: AttendanceRecordRead | None
    display_status: str  # present | partial | absent
    is_punched_in: bool
    has_punched_out: bool
    history: list[AttendanceRecordRead]
    monthly_hours: float
    present_days: int
    partial_days: int
    avg_hours_per_day: float | None

    @classmethod
    def from_session(cls, session) -> AttendanceStateRead:
        return cls(
            employee_id=session.employee_id,
            today=session.loaded_for,
            today_record=session.today_record,
            display_status=session.display_status,
            is_punched_in=session.is_punched_in,
            has_punched_out=session.has_punched_out,
            history=session.history,
            monthly_hours=round(session.monthly_hours, 2),
            present_days=session.present_days,
            partial_days=session.partial_days,
            avg_hours_per_day=(
                round(session.avg_hours_per_day, 2)
                if session.avg_hours_per_day is not None
                else None
            ),
        )


# ── Punch actions ───────────────────────────────────────────────────
class PunchResponse(BaseModel):
    success: bool
    changed: bool
    outcome: str  # success | no_op
    message: str
    record: AttendanceRecordRead | None = None


class RecordDeleteResponse(BaseModel):
    success: bool
    message: str


# ── Health / Status ────────────────────────────────────────────────
class HealthResponse(BaseModel):
    db: bool
    change_feed: bool


class StatusResponse(BaseModel):
    total_employees: int
    today_punch_ins: int
    open_sessions: int
    status: str
