# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Recurring actions.

Next-run computation is a set of pure functions of the current time; the
`RecurrenceGuard` pairs one of them with the store to keep a single upcoming
occurrence per ``(correlation_key, action_type)``.

The guard is check-then-enqueue and therefore best effort: two schedulers
racing past `find_upcoming` can both enqueue. Deployments that need strict
uniqueness should add a partial unique index on
``(correlation_key, action_type)`` where ``status = "pending"``.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from ..core.log import get_logger
from ..core.time import Clock, SystemClock, dt_to_ms, ms_to_dt
from ..protocol.actions import ActionType
from ..storage.actions import ActionStore, DomainAction

REPORTS_TZ = "America/Los_Angeles"
REPORTS_HOUR = 4

NextRun = Callable[[int], int]


def _local(now_ms: int, tz: str) -> datetime:
    return ms_to_dt(now_ms).astimezone(ZoneInfo(tz))


def _at(day: datetime, hour: int, tz: str) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=ZoneInfo(tz))


def next_daily_run(now_ms: int, *, hour: int, tz: str = "UTC") -> int:
    """Next ``hour:00`` local time strictly after `now_ms`."""
    local = _local(now_ms, tz)
    run = _at(local, hour, tz)
    if dt_to_ms(run) <= now_ms:
        run = _at(local + timedelta(days=1), hour, tz)
    return dt_to_ms(run)


def next_weekly_run(now_ms: int, *, weekday: int, hour: int, tz: str = "UTC") -> int:
    """Next ``weekday`` (Monday=0) at ``hour:00`` local time strictly after `now_ms`."""
    if not 0 <= weekday <= 6:
        raise ValueError("weekday must be within 0..6")
    local = _local(now_ms, tz)
    ahead = (weekday - local.weekday()) % 7
    run = _at(local + timedelta(days=ahead), hour, tz)
    if dt_to_ms(run) <= now_ms:
        run = _at(local + timedelta(days=ahead + 7), hour, tz)
    return dt_to_ms(run)


def next_automatic_report_run(now_ms: int) -> int:
    """Reports go out at 04:00 America/Los_Angeles on the following calendar day."""
    local = _local(now_ms, REPORTS_TZ)
    return dt_to_ms(_at(local + timedelta(days=1), REPORTS_HOUR, REPORTS_TZ))


class RecurrenceGuard:
    def __init__(self, store: ActionStore, *, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.log = get_logger("recurrence")

    async def ensure_scheduled(
        self,
        action_type: ActionType | str,
        correlation_key: str,
        compute_next_run: NextRun,
        *,
        parameters: dict[str, Any] | None = None,
        max_attempts: int | None = None,
    ) -> DomainAction:
        """Return the upcoming occurrence, enqueueing it first if none exists."""
        now = self.clock.now_ms()
        existing = await self.store.find_upcoming(correlation_key, action_type, now_ms=now)
        if existing is not None:
            self.log.debug(
                "occurrence already scheduled",
                event="recurrence.exists",
                action_id=existing.id,
                correlation_key=correlation_key,
            )
            return existing

        run_at = compute_next_run(now)
        if run_at <= now:
            raise ValueError(f"compute_next_run returned a time not in the future: {run_at} <= {now}")
        action = await self.store.enqueue(
            action_type,
            parameters or {},
            scheduled_at_ms=run_at,
            max_attempts=max_attempts,
            correlation_key=correlation_key,
        )
        self.log.info(
            "next occurrence scheduled",
            event="recurrence.scheduled",
            action_id=action.id,
            correlation_key=correlation_key,
            scheduled_at_ms=run_at,
        )
        return action
