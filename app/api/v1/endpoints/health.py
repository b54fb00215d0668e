"""
Health & status endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_change_feed, get_current_active_employee, get_db
from app.core.config import settings
from app.models.attendance import AttendanceRecord
from app.models.employee import Employee
from app.realtime.feed import ChangeFeed
from app.schemas.attendance import HealthResponse, StatusResponse
from app.services.attendance_rules import local_today

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> HealthResponse:
    """Public health check — database and change feed connectivity."""
    result = HealthResponse(db=False, change_feed=False)

    try:
        await db.execute(select(1))
        result.db = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)

    try:
        result.change_feed = await feed.ping()
    except Exception as e:
        logger.error("Health check change feed failure: %s", e)

    return result


@router.get("/status", response_model=StatusResponse)
async def system_status(
    db: AsyncSession = Depends(get_db),
    _current: Employee = Depends(get_current_active_employee),
) -> StatusResponse:
    """Active employee count, today's punch-ins and sessions still open."""
    today = local_today(settings.TIMEZONE_OFFSET)

    emp_count = await db.execute(
        select(func.count(Employee.id)).where(Employee.is_active.is_(True))
    )
    punch_ins = await db.execute(
        select(func.count(AttendanceRecord.id)).where(AttendanceRecord.attendance_date == today)
    )
    open_sessions = await db.execute(
        select(func.count(AttendanceRecord.id)).where(
            AttendanceRecord.attendance_date == today,
            AttendanceRecord.punch_out_time.is_(None),
        )
    )

    return StatusResponse(
        total_employees=emp_count.scalar_one(),
        today_punch_ins=punch_ins.scalar_one(),
        open_sessions=open_sessions.scalar_one(),
        status="operational",
    )
