"""
Attendance session — the per-employee punch clock state container.

Holds today's record, the rolling history and the month-to-date hours for one
employee, and offers the two mutating actions. Writes never patch local
state: the store publishes a change event after each commit and the
session's subscription reloads everything through ``load_state``, the same
path used at start-up.

Per day the record moves ``NoRecord -> OpenSession -> ClosedSession``;
``punch_in`` is only valid from the first state, ``punch_out`` only from
the second.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from app.core.config import settings
from app.core.exceptions import DuplicateEntryError, StoreError
from app.models.attendance import AttendanceRecord
from app.realtime.feed import ChangeEvent, Subscription
from app.services.attendance_rules import (STATUS_PARTIAL, STATUS_PRESENT,
                                           classify, classify_hours,
                                           ensure_utc, history_start,
                                           hours_between, is_open,
                                           local_today, month_bounds,
                                           parse_offset, sum_hours)
from app.services.attendance_store import AttendanceStore

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_DUPLICATE_ENTRY = "duplicate_entry"
OUTCOME_STORE_FAILURE = "store_failure"
OUTCOME_NO_OP = "no_op"
OUTCOME_INVALID_PUNCH_TIME = "invalid_punch_time"

LOAD_FAILED_MESSAGE = "Failed to load attendance data"
ALREADY_PUNCHED_IN_MESSAGE = "You have already punched in today"


@dataclass(frozen=True)
class OperationResult:
    outcome: str
    message: str = ""
    record: AttendanceRecord | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_SUCCESS


class AttendanceSession:
    def __init__(
        self,
        employee_id: int,
        store: AttendanceStore,
        *,
        tz_offset: str | None = None,
        history_days: int | None = None,
        clock: Callable[[], datetime] | None = None,
        on_reload: Callable[[AttendanceSession], Awaitable[None]] | None = None,
    ) -> None:
        self.employee_id = employee_id
        self._store = store
        self._tz_offset = tz_offset or settings.TIMEZONE_OFFSET
        self._history_days = settings.HISTORY_DAYS if history_days is None else history_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._on_reload = on_reload
        self._subscription: Subscription | None = None
        self._reset()

    def _reset(self) -> None:
        self.today_record: AttendanceRecord | None = None
        self.history: list[AttendanceRecord] = []
        self.monthly_hours = 0.0
        self.loaded_for: str | None = None
        self.last_error: str | None = None

    def today(self) -> str:
        return local_today(self._tz_offset, self._clock())

    # ── Derived reads ───────────────────────────────────────────────
    @property
    def display_status(self) -> str:
        return classify(self.today_record)

    @property
    def is_punched_in(self) -> bool:
        return is_open(self.today_record)

    @property
    def has_punched_out(self) -> bool:
        return self.today_record is not None and self.today_record.punch_out_time is not None

    @property
    def can_punch_in(self) -> bool:
        return self.today_record is None

    @property
    def present_days(self) -> int:
        return sum(1 for r in self.history if r.status == STATUS_PRESENT)

    @property
    def partial_days(self) -> int:
        return sum(1 for r in self.history if r.status == STATUS_PARTIAL)

    @property
    def avg_hours_per_day(self) -> float | None:
        if not self.history:
            return None
        return self.monthly_hours / max(self.present_days + self.partial_days, 1)

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    # ── Lifecycle ───────────────────────────────────────────────────
    async def start(self) -> OperationResult:
        """Subscribe to changes for this employee, then run the first load."""
        if self._subscription is None:
            try:
                self._subscription = await self._store.feed.subscribe(
                    self.employee_id, self._on_change
                )
            except Exception as e:
                logger.error("Could not subscribe to changes for employee %d: %s", self.employee_id, e)
        return await self.load_state()

    async def close(self) -> None:
        if self._subscription is not None:
            await self._store.feed.unsubscribe(self._subscription)
            self._subscription = None

    async def switch_employee(self, employee_id: int) -> OperationResult | None:
        if employee_id == self.employee_id:
            return None
        await self.close()
        self.employee_id = employee_id
        self._reset()
        return await self.start()

    async def settle(self) -> None:
        """Wait for every reload triggered by changes seen so far."""
        if self._subscription is not None:
            await self._subscription.join()

    async def _on_change(self, event: ChangeEvent) -> None:
        logger.debug(
            "Change %s on record %s for employee %d, reloading",
            event.event_type,
            event.record_id,
            self.employee_id,
        )
        await self.load_state()

    # ── Operations ──────────────────────────────────────────────────
    async def load_state(self, today: str | None = None) -> OperationResult:
        """Refresh today's record, the history window and the monthly hours.

        All three queries must succeed before anything is assigned; on failure
        the previous state stays in place.
        """
        today = today or self.today()
        month_start, month_end = month_bounds(today)
        try:
            today_record = await self._store.get_for_day(self.employee_id, today)
            history = await self._store.list_since(
                self.employee_id, history_start(today, self._history_days)
            )
            monthly_hours = sum_hours(
                await self._store.list_month_hours(self.employee_id, month_start, month_end)
            )
        except StoreError as e:
            logger.error("Error fetching attendance for employee %d: %s", self.employee_id, e, exc_info=True)
            self.last_error = LOAD_FAILED_MESSAGE
            return OperationResult(OUTCOME_STORE_FAILURE, LOAD_FAILED_MESSAGE)

        self.today_record = today_record
        self.history = history
        self.monthly_hours = monthly_hours
        self.loaded_for = today
        self.last_error = None

        if self._on_reload is not None:
            await self._on_reload(self)
        return OperationResult(OUTCOME_SUCCESS, record=today_record)

    async def punch_in(self, today: str | None = None) -> OperationResult:
        today = today or self.today()
        now = ensure_utc(self._clock()).astimezone(timezone.utc)
        try:
            record = await self._store.insert_punch_in(self.employee_id, today, now)
        except DuplicateEntryError:
            logger.info("Employee %d already punched in on %s", self.employee_id, today)
            return OperationResult(OUTCOME_DUPLICATE_ENTRY, ALREADY_PUNCHED_IN_MESSAGE)
        except StoreError as e:
            logger.error("Error punching in employee %d: %s", self.employee_id, e, exc_info=True)
            return OperationResult(OUTCOME_STORE_FAILURE, "Failed to punch in")

        logger.info("Employee %d punched in on %s", self.employee_id, today)
        local = now.astimezone(parse_offset(self._tz_offset))
        return OperationResult(
            OUTCOME_SUCCESS,
            f"Successfully punched in at {local.strftime('%H:%M')}",
            record,
        )

    async def punch_out(self, today: str | None = None) -> OperationResult:
        today = today or self.today()
        record = self.today_record
        if record is None or record.attendance_date != today or record.punch_out_time is not None:
            return OperationResult(OUTCOME_NO_OP)

        now = ensure_utc(self._clock()).astimezone(timezone.utc)
        hours_worked = hours_between(record.punch_in_time, now)
        if hours_worked <= 0:
            logger.warning(
                "Rejected punch-out for employee %d: %s is not after punch-in",
                self.employee_id,
                now.isoformat(),
            )
            return OperationResult(
                OUTCOME_INVALID_PUNCH_TIME, "Punch-out time must be after punch-in time"
            )

        status = classify_hours(hours_worked)
        try:
            closed = await self._store.close_record(
                record.id, now, round(hours_worked, 2), status
            )
        except StoreError as e:
            logger.error("Error punching out employee %d: %s", self.employee_id, e, exc_info=True)
            return OperationResult(OUTCOME_STORE_FAILURE, "Failed to punch out")

        if closed is None:
            return OperationResult(OUTCOME_NO_OP)

        logger.info(
            "Employee %d punched out on %s after %.2fh (%s)",
            self.employee_id,
            today,
            hours_worked,
            status,
        )
        return OperationResult(
            OUTCOME_SUCCESS,
            f"Successfully punched out. Total hours: {hours_worked:.2f}h",
            closed,
        )
