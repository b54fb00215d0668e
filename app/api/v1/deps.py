"""
FastAPI dependencies — auth guards, database session and attendance store.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import decode_access_token
from app.db.session import async_session_factory
from app.models.employee import Employee
from app.realtime.feed import ChangeFeed, build_change_feed
from app.services.attendance_store import AttendanceStore

# auto_error=False so the cookie can be checked when the header is missing
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Attendance store & change feed ──────────────────────────────────
@lru_cache
def get_change_feed() -> ChangeFeed:
    """Process-wide change feed, built on first use."""
    return build_change_feed(settings.REALTIME_BACKEND, settings.REDIS_URL)


def get_store() -> AttendanceStore:
    return AttendanceStore(async_session_factory, get_change_feed())


# ── Auth dependencies ───────────────────────────────────────────────
def _token_from_cookie(access_token: str | None) -> str | None:
    # auth.py stores the cookie as "Bearer <token>"
    if not access_token:
        return None
    if access_token.startswith("Bearer "):
        return access_token.split(" ", 1)[1]
    return access_token


async def get_current_employee(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Decode JWT from Header OR Cookie, look up the employee."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    # Priority: Header > Cookie
    final_token = token or _token_from_cookie(access_token)
    if not final_token:
        raise credentials_exc

    payload = decode_access_token(final_token)
    if payload is None:
        raise credentials_exc

    employee_id: str | None = payload.get("sub")
    if employee_id is None or not employee_id.isdigit():
        raise credentials_exc

    result = await db.execute(select(Employee).where(Employee.id == int(employee_id)))
    employee = result.scalar_one_or_none()
    if employee is None:
        raise credentials_exc
    return employee


async def get_current_active_employee(
    current: Employee = Depends(get_current_employee),
) -> Employee:
    """Reject deactivated accounts."""
    if not current.is_active:
        raise HTTPException(status_code=400, detail="Inactive employee account")
    return current


async def require_admin(
    current: Employee = Depends(get_current_active_employee),
) -> Employee:
    """Only allow admin role to proceed."""
    if current.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current
