# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Action store interface (DB-agnostic).

Responsibilities:
- Persist DomainAction records (parameters, schedule, retry bookkeeping).
- Provide the atomic claim primitive (`claim_next_due`) that gives claim
  exclusivity across any number of workers and processes.
- Apply outcomes, fenced on the claiming worker.
- Operator surface: get / cancel / list.
- Maintenance: release claims on shutdown, reclaim stale claims, expire overdue work.

State machine:
    pending --claim--> in_progress --success--> success
    in_progress --transient, attempts remain--> pending (scheduled later)
    in_progress --transient exhausted | fatal--> failed
    pending --cancel | expiry--> cancelled

Implementations keep `attempt_count < max_attempts` for every pending record,
so a pending record is always claimable once due.
"""

from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..protocol.actions import ActionStatus, ActionType, Outcome

__all__ = [
    "ActionFilter",
    "ActionStore",
    "DomainAction",
    "RetryAt",
]


@dataclass
class DomainAction:
    """
    One unit of deferred work as persisted in the store.

    Attributes:
        id: Stable identifier (uuid4 hex).
        action_type: Tag selecting the handler (normally an `ActionType` value).
        parameters: JSON-like payload; its schema belongs to the handler.
        scheduled_at_ms: Earliest eligible execution time.
        expires_at_ms: Deadline after which the action is abandoned.
        status: Lifecycle state.
        attempt_count: Number of claims so far.
        max_attempts: Upper bound for attempt_count.
        last_attempted_at_ms: Time of the latest claim.
        last_error: ``{"kind": ErrorKind, "message": str}`` of the latest failure.
        result_payload: Handler result on success.
        correlation_key: Key used to find an already-scheduled recurrence.
        worker_id: Claim owner while in_progress.
        claimed_at_ms: Time of the active claim.
    """

    id: str
    action_type: str
    parameters: dict[str, Any]
    scheduled_at_ms: int
    max_attempts: int
    created_at_ms: int
    updated_at_ms: int
    status: ActionStatus = ActionStatus.pending
    attempt_count: int = 0
    expires_at_ms: int | None = None
    last_attempted_at_ms: int | None = None
    last_error: dict[str, Any] | None = None
    result_payload: dict[str, Any] | None = None
    correlation_key: str | None = None
    worker_id: str | None = None
    claimed_at_ms: int | None = None

    def to_doc(self) -> dict[str, Any]:
        doc = asdict(self)
        doc["_id"] = doc.pop("id")
        doc["status"] = self.status.value
        return doc

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> DomainAction:
        data = {k: v for k, v in doc.items() if k in _FIELDS}
        data["id"] = str(doc["_id"]) if "_id" in doc else str(doc["id"])
        data["status"] = ActionStatus(doc.get("status", ActionStatus.pending.value))
        return cls(**data)

    def expired(self, now_ms: int) -> bool:
        return self.expires_at_ms is not None and self.expires_at_ms <= now_ms


_FIELDS = frozenset(DomainAction.__dataclass_fields__) - {"id", "status"}


@dataclass(frozen=True)
class ActionFilter:
    """Operator query. Empty sequences mean "any"; the scheduled range is inclusive."""

    statuses: Sequence[ActionStatus] = field(default_factory=tuple)
    action_types: Sequence[ActionType | str] = field(default_factory=tuple)
    correlation_key: str | None = None
    scheduled_from_ms: int | None = None
    scheduled_to_ms: int | None = None
    limit: int = 100


# Computes the retry time for a reclaimed record.
RetryAt = Callable[[DomainAction], int]


@runtime_checkable
class ActionStore(Protocol):
    """
    Async persistence + claiming for DomainAction.

    Notes:
        - `claim_next_due` MUST be a single atomic conditional update; two
          concurrent callers never receive the same record.
        - `complete` and `release` MUST be fenced on ``status=in_progress`` and
          the claiming ``worker_id``; a caller that lost its claim gets ``None``/``False``.
        - Persistence failures surface as `StoreUnavailable`.
    """

    async def enqueue(
        self,
        action_type: ActionType | str,
        parameters: dict[str, Any],
        *,
        scheduled_at_ms: int | None = None,
        max_attempts: int | None = None,
        correlation_key: str | None = None,
        expires_at_ms: int | None = None,
    ) -> DomainAction:
        """Insert a new pending record. Raises ValidationError on bad arguments."""
        ...

    async def claim_next_due(self, now_ms: int, worker_id: str) -> DomainAction | None:
        """Claim the earliest due pending record, or return None when nothing is due."""
        ...

    async def complete(
        self,
        action_id: str,
        outcome: Outcome,
        *,
        worker_id: str,
        now_ms: int,
        retry_at_ms: int | None = None,
    ) -> DomainAction | None:
        """
        Persist an outcome. Failures with `retry_at_ms` go back to pending at
        that time; failures without it are dead-lettered as failed.
        """
        ...

    async def find_upcoming(
        self, correlation_key: str, action_type: ActionType | str, *, now_ms: int
    ) -> DomainAction | None:
        """Earliest pending record for the pair scheduled strictly after `now_ms`."""
        ...

    async def get(self, action_id: str) -> DomainAction | None: ...

    async def cancel(self, action_id: str, *, now_ms: int, reason: str | None = None) -> bool:
        """Cancel a pending record. Returns False for any other state."""
        ...

    async def list(self, flt: ActionFilter) -> list[DomainAction]: ...

    async def release(self, action_id: str, *, worker_id: str, now_ms: int) -> bool:
        """Hand an in-progress claim back to pending without consuming the attempt."""
        ...

    async def reclaim_stale(self, *, older_than_ms: int, now_ms: int, retry_at_ms: RetryAt) -> list[DomainAction]:
        """Treat claims older than `older_than_ms` as transient failures. Returns updated records."""
        ...

    async def expire_overdue(self, *, now_ms: int) -> int:
        """Cancel pending records past their deadline. Returns the number expired."""
        ...

    async def ensure_indexes(self) -> None: ...
