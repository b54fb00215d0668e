"""
Attendance record store — the queries and writes behind the punch clock.

Wraps an ``async_sessionmaker`` rather than a single session so that a
long-lived ``AttendanceSession`` can reload as many times as the change feed
asks it to. SQLAlchemy errors never escape: unique violations become
``DuplicateEntryError`` and everything else ``StoreError``. Each committed
write is published on the change feed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import DuplicateEntryError, StoreError
from app.models.attendance import AttendanceRecord
from app.realtime.feed import ChangeEvent, ChangeFeed, ChangeType
from app.services.attendance_rules import STATUS_PRESENT

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """Tell a unique-constraint violation apart from other integrity errors."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return code == _UNIQUE_VIOLATION
    # SQLite: "UNIQUE constraint failed: attendance_records.employee_id, ..."
    return "unique" in str(orig).lower()


class AttendanceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed) -> None:
        self._session_factory = session_factory
        self.feed = feed

    # ── Reads ───────────────────────────────────────────────────────
    async def get_for_day(self, employee_id: int, attendance_date: str) -> AttendanceRecord | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AttendanceRecord).where(
                        AttendanceRecord.employee_id == employee_id,
                        AttendanceRecord.attendance_date == attendance_date,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load attendance for {attendance_date}") from e

    async def list_since(self, employee_id: int, start_date: str) -> list[AttendanceRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AttendanceRecord)
                    .where(
                        AttendanceRecord.employee_id == employee_id,
                        AttendanceRecord.attendance_date >= start_date,
                    )
                    .order_by(AttendanceRecord.attendance_date.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load attendance history since {start_date}") from e

    async def list_month_hours(
        self, employee_id: int, month_start: str, month_end: str
    ) -> list[float | None]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AttendanceRecord.total_hours).where(
                        AttendanceRecord.employee_id == employee_id,
                        AttendanceRecord.attendance_date >= month_start,
                        AttendanceRecord.attendance_date <= month_end,
                    )
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load hours for {month_start}..{month_end}") from e

    # ── Writes ──────────────────────────────────────────────────────
    async def insert_punch_in(
        self, employee_id: int, attendance_date: str, punch_in_time: datetime
    ) -> AttendanceRecord:
        record = AttendanceRecord(
            employee_id=employee_id,
            attendance_date=attendance_date,
            punch_in_time=punch_in_time,
            status=STATUS_PRESENT,
        )
        try:
            async with self._session_factory() as db:
                db.add(record)
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    if _is_unique_violation(e):
                        raise DuplicateEntryError(
                            f"Employee {employee_id} already has a record for {attendance_date}"
                        ) from e
                    raise StoreError("Failed to create attendance record") from e
                await db.refresh(record)
        except SQLAlchemyError as e:
            raise StoreError("Failed to create attendance record") from e

        await self._publish("INSERT", employee_id, record.id)
        return record

    async def close_record(
        self,
        record_id: int,
        punch_out_time: datetime,
        total_hours: float,
        status: str,
    ) -> AttendanceRecord | None:
        """Close an open record. Returns ``None`` if it was already closed or is gone."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(AttendanceRecord)
                    .where(
                        AttendanceRecord.id == record_id,
                        AttendanceRecord.punch_out_time.is_(None),
                    )
                    .values(
                        punch_out_time=punch_out_time,
                        total_hours=total_hours,
                        status=status,
                    )
                )
                await db.commit()
                if result.rowcount == 0:
                    return None
                record = await db.get(AttendanceRecord, record_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to close attendance record {record_id}") from e

        if record is not None:
            await self._publish("UPDATE", record.employee_id, record.id)
        return record

    async def delete_record(self, record_id: int) -> AttendanceRecord | None:
        try:
            async with self._session_factory() as db:
                record = await db.get(AttendanceRecord, record_id)
                if record is None:
                    return None
                await db.delete(record)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete attendance record {record_id}") from e

        await self._publish("DELETE", record.employee_id, record.id)
        return record

    async def _publish(self, event_type: ChangeType, employee_id: int, record_id: int) -> None:
        # Write is committed at this point; publish failures are only logged.
        try:
            await self.feed.publish(
                ChangeEvent(event_type=event_type, employee_id=employee_id, record_id=record_id)
            )
        except Exception as e:
            logger.warning("Could not publish %s for record %d: %s", event_type, record_id, e)
