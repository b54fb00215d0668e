"""
Employee directory endpoints.

- GET operations require any authenticated employee.
- POST / PUT / DELETE operations require admin role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_current_active_employee, get_db, require_admin
from app.core.security import get_password_hash
from app.models.employee import Employee
from app.schemas.employee import (DeleteResponse, EmployeeCreate, EmployeeRead,
                                  EmployeeUpdate)

router = APIRouter(prefix="/employees", tags=["employees"])
logger = logging.getLogger(__name__)


async def _get_employee_or_404(db: AsyncSession, employee_id: int) -> Employee:
    result = await db.execute(select(Employee).where(Employee.id == employee_id))
    emp = result.scalar_one_or_none()
    if emp is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    return emp


@router.get("", response_model=list[EmployeeRead])
async def list_employees(
    skip: int = 0,
    limit: int = Query(default=50, le=500),
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    _current: Employee = Depends(get_current_active_employee),
) -> list[Employee]:
    query = (
        select(Employee)
        .where(Employee.is_active.is_(True))
        .order_by(Employee.full_name, Employee.email)
        .offset(skip)
        .limit(limit)
    )
    if search:
        # Escape SQL LIKE metacharacters to prevent wildcard injection
        safe_search = search.replace("%", r"\%").replace("_", r"\_")
        query = query.where(Employee.full_name.ilike(f"%{safe_search}%", escape="\\"))
    result = await db.execute(query)
    return list(result.scalars().all())


@router.post("", response_model=EmployeeRead, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    _admin: Employee = Depends(require_admin),
) -> Employee:
    existing = await db.execute(select(Employee).where(Employee.email == body.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")

    data = body.model_dump(exclude={"password"})
    employee = Employee(**data, hashed_password=get_password_hash(body.password))
    db.add(employee)
    await db.commit()
    await db.refresh(employee)
    logger.info("Created employee %d (%s)", employee.id, employee.email)
    return employee


@router.get("/{employee_id}", response_model=EmployeeRead)
async def get_employee(
    employee_id: int,
    db: AsyncSession = Depends(get_db),
    _current: Employee = Depends(get_current_active_employee),
) -> Employee:
    emp = await _get_employee_or_404(db, employee_id)
    if not emp.is_active:
        raise HTTPException(status_code=404, detail="Employee not found")
    return emp


@router.put("/{employee_id}", response_model=EmployeeRead)
async def update_employee(
    employee_id: int,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Employee = Depends(require_admin),
) -> Employee:
    emp = await _get_employee_or_404(db, employee_id)

    changes = body.model_dump(exclude_unset=True)
    password = changes.pop("password", None)
    if password:
        emp.hashed_password = get_password_hash(password)
    for field, value in changes.items():
        setattr(emp, field, value)

    await db.commit()
    await db.refresh(emp)
    logger.info("Updated employee %d", employee_id)
    return emp


@router.delete("/{employee_id}", response_model=DeleteResponse)
async def delete_employee(
    employee_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: Employee = Depends(require_admin),
) -> DeleteResponse:
    """Soft-delete (deactivate) an employee. Attendance history is preserved."""
    emp = await _get_employee_or_404(db, employee_id)
    emp.is_active = False
    await db.commit()
    logger.info("Deactivated employee %d (%s)", employee_id, emp.email)
    return DeleteResponse(success=True, message=f"Employee '{emp.email}' deactivated")
