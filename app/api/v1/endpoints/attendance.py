"""
Punch clock endpoints for the signed-in employee.

Each request builds a short-lived ``AttendanceSession``; the SSE stream keeps
one alive for the life of the connection so the client receives a fresh
state every time the change feed reports a write for that employee.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.api.v1.deps import get_current_active_employee, get_store, require_admin
from app.models.employee import Employee
from app.schemas.attendance import (AttendanceStateRead, PunchResponse,
                                    RecordDeleteResponse)
from app.services.attendance_session import (OUTCOME_DUPLICATE_ENTRY,
                                             OUTCOME_INVALID_PUNCH_TIME,
                                             OUTCOME_STORE_FAILURE,
                                             AttendanceSession,
                                             OperationResult)
from app.services.attendance_store import AttendanceStore

router = APIRouter(prefix="/attendance", tags=["attendance"])
logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


def _raise_for_outcome(result: OperationResult) -> None:
    if result.outcome == OUTCOME_DUPLICATE_ENTRY:
        raise HTTPException(status_code=409, detail=result.message)
    if result.outcome == OUTCOME_INVALID_PUNCH_TIME:
        raise HTTPException(status_code=422, detail=result.message)
    if result.outcome == OUTCOME_STORE_FAILURE:
        raise HTTPException(status_code=503, detail=result.message)


def _punch_response(result: OperationResult, fallback_message: str) -> PunchResponse:
    return PunchResponse(
        success=True,
        changed=result.ok,
        outcome=result.outcome,
        message=result.message or fallback_message,
        record=result.record,
    )


@router.get("/me", response_model=AttendanceStateRead)
async def my_attendance(
    current: Employee = Depends(get_current_active_employee),
    store: AttendanceStore = Depends(get_store),
) -> AttendanceStateRead:
    """Today's record, status, 30-day history and month-to-date hours."""
    session = AttendanceSession(current.id, store)
    _raise_for_outcome(await session.load_state())
    return AttendanceStateRead.from_session(session)


@router.post("/punch-in", response_model=PunchResponse, status_code=201)
async def punch_in(
    current: Employee = Depends(get_current_active_employee),
    store: AttendanceStore = Depends(get_store),
) -> PunchResponse:
    """Open today's record. A second punch-in for the same day returns 409."""
    session = AttendanceSession(current.id, store)
    result = await session.punch_in()
    _raise_for_outcome(result)
    return _punch_response(result, "Punched in")


@router.post("/punch-out", response_model=PunchResponse)
async def punch_out(
    current: Employee = Depends(get_current_active_employee),
    store: AttendanceStore = Depends(get_store),
) -> PunchResponse:
    """Close today's open record; a no-op when there is nothing open."""
    session = AttendanceSession(current.id, store)
    _raise_for_outcome(await session.load_state())
    result = await session.punch_out()
    _raise_for_outcome(result)
    return _punch_response(result, "No open session for today")


@router.get("/stream")
async def attendance_stream(
    request: Request,
    current: Employee = Depends(get_current_active_employee),
    store: AttendanceStore = Depends(get_store),
) -> StreamingResponse:
    """Server-sent events: a ``state`` event on connect and after every change."""
    # Only the newest snapshot matters to the client
    queue: asyncio.Queue[str] = asyncio.Queue(maxsize=1)

    async def _push(session: AttendanceSession) -> None:
        snapshot = AttendanceStateRead.from_session(session).model_dump_json()
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(snapshot)

    session = AttendanceSession(current.id, store, on_reload=_push)

    async def event_source():
        try:
            first = await session.start()
            if not first.ok:
                yield f"event: error\ndata: {json.dumps({'detail': first.message})}\n\n"
            while not await request.is_disconnected():
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: state\ndata: {payload}\n\n"
        finally:
            await session.close()
            logger.debug("Attendance stream closed for employee %d", session.employee_id)

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.delete("/records/{record_id}", response_model=RecordDeleteResponse)
async def delete_record(
    record_id: int,
    store: AttendanceStore = Depends(get_store),
    admin: Employee = Depends(require_admin),
) -> RecordDeleteResponse:
    """Remove an attendance record (admin only). Subscribers reload on the DELETE event."""
    record = await store.delete_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Attendance record not found")
    logger.info(
        "Admin %d deleted attendance record %d (employee %d, %s)",
        admin.id,
        record_id,
        record.employee_id,
        record.attendance_date,
    )
    return RecordDeleteResponse(success=True, message=f"Attendance record {record_id} deleted")
