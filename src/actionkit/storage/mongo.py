# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Mongo-backed ActionStore.

The store receives an already-constructed async database handle (PyMongo
async or Motor); it never opens connections itself. The claim primitive is a
single ``find_one_and_update`` whose filter doubles as the compare-and-swap
condition: only a record still ``pending`` and due can be flipped to
``in_progress``, so concurrent claimers race on the document, not in memory.

Completion and release are fenced on ``(status=in_progress, worker_id)`` so a
worker that lost its claim (stale reclaim, shutdown release) cannot overwrite
the record's newer state.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from ..api.errors import ErrorKind, StoreUnavailable, ValidationError
from ..core.log import get_logger, swallow
from ..core.time import Clock, SystemClock
from ..core.types import DEFAULT_ACTIONS_COLLECTION
from ..core.utils import ensure_json, new_action_id
from ..protocol.actions import ActionStatus, ActionType, Outcome
from .actions import ActionFilter, DomainAction, RetryAt

_PENDING = ActionStatus.pending.value
_IN_PROGRESS = ActionStatus.in_progress.value

# attempt_count < max_attempts, evaluated server-side
_ATTEMPTS_REMAIN = {"$expr": {"$lt": ["$attempt_count", "$max_attempts"]}}


def _tag(action_type: ActionType | str) -> str:
    return action_type.value if isinstance(action_type, ActionType) else str(action_type)


class MongoActionStore:
    """ActionStore over a Mongo-compatible async collection."""

    def __init__(
        self,
        db: Any,
        *,
        clock: Clock | None = None,
        collection: str = DEFAULT_ACTIONS_COLLECTION,
        default_max_attempts: int = 5,
    ) -> None:
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        self.db = db
        self.clock = clock or SystemClock()
        self.collection_name = collection
        self.default_max_attempts = default_max_attempts
        self.log = get_logger("store")

    @property
    def _coll(self) -> Any:
        return self.db[self.collection_name]

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except (PyMongoError, OSError) as e:
            self.log.warning("store operation failed", event="store.unavailable", op=op, error=str(e))
            raise StoreUnavailable(f"{op}: {e}") from e

    # ---- Producer surface ----------------------------------------------------

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
        tag = _tag(action_type)
        if not tag:
            raise ValidationError("action_type must be a non-empty string")
        attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
            raise ValidationError(f"max_attempts must be an integer >= 1, got {max_attempts!r}")
        if not isinstance(parameters, dict):
            raise ValidationError("parameters must be a JSON object")
        try:
            params = ensure_json(parameters)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"parameters are not JSON-serializable: {e}") from e

        now = self.clock.now_ms()
        action = DomainAction(
            id=new_action_id(),
            action_type=tag,
            parameters=params,
            scheduled_at_ms=now if scheduled_at_ms is None else int(scheduled_at_ms),
            max_attempts=attempts,
            created_at_ms=now,
            updated_at_ms=now,
            expires_at_ms=expires_at_ms,
            correlation_key=correlation_key,
        )
        with self._guard("enqueue"):
            await self._coll.insert_one(action.to_doc())
        self.log.debug(
            "action enqueued",
            event="action.enqueue",
            action_id=action.id,
            action_type=tag,
            scheduled_at_ms=action.scheduled_at_ms,
        )
        return action

    # ---- Claim / complete ----------------------------------------------------

    async def claim_next_due(self, now_ms: int, worker_id: str) -> DomainAction | None:
        flt = {
            "status": _PENDING,
            "scheduled_at_ms": {"$lte": now_ms},
            "$or": [{"expires_at_ms": None}, {"expires_at_ms": {"$gt": now_ms}}],
            **_ATTEMPTS_REMAIN,
        }
        upd = {
            "$set": {
                "status": _IN_PROGRESS,
                "worker_id": worker_id,
                "claimed_at_ms": now_ms,
                "last_attempted_at_ms": now_ms,
                "updated_at_ms": now_ms,
            },
            "$inc": {"attempt_count": 1},
        }
        with self._guard("claim"):
            doc = await self._coll.find_one_and_update(
                flt,
                upd,
                sort=[("scheduled_at_ms", ASCENDING), ("created_at_ms", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            )
        return DomainAction.from_doc(doc) if doc else None

    async def complete(
        self,
        action_id: str,
        outcome: Outcome,
        *,
        worker_id: str,
        now_ms: int,
        retry_at_ms: int | None = None,
    ) -> DomainAction | None:
        fence = {"_id": action_id, "status": _IN_PROGRESS, "worker_id": worker_id}
        released = {"worker_id": None, "claimed_at_ms": None, "updated_at_ms": now_ms}

        if outcome.ok:
            upd = {"$set": {"status": ActionStatus.success.value, "result_payload": outcome.result, **released}}
            return await self._fenced_update("complete", fence, upd)

        last_error = outcome.last_error()
        if retry_at_ms is not None:
            upd = {
                "$set": {
                    "status": _PENDING,
                    # strictly after this completion
                    "scheduled_at_ms": max(int(retry_at_ms), now_ms + 1),
                    "last_error": last_error,
                    **released,
                }
            }
            doc = await self._fenced_update("retry", {**fence, **_ATTEMPTS_REMAIN}, upd)
            if doc is not None:
                return doc
            # attempts exhausted (or fenced out): fall through to dead-letter

        upd = {"$set": {"status": ActionStatus.failed.value, "last_error": last_error, **released}}
        return await self._fenced_update("fail", fence, upd)

    async def _fenced_update(self, op: str, flt: dict[str, Any], upd: dict[str, Any]) -> DomainAction | None:
        with self._guard(op):
            doc = await self._coll.find_one_and_update(flt, upd, return_document=ReturnDocument.AFTER)
        return DomainAction.from_doc(doc) if doc else None

    # ---- Recurrence ----------------------------------------------------------

    async def find_upcoming(
        self, correlation_key: str, action_type: ActionType | str, *, now_ms: int
    ) -> DomainAction | None:
        flt = {
            "correlation_key": correlation_key,
            "action_type": _tag(action_type),
            "status": _PENDING,
            "scheduled_at_ms": {"$gt": now_ms},
        }
        with self._guard("find_upcoming"):
            doc = await self._coll.find_one(flt, sort=[("scheduled_at_ms", ASCENDING)])
        return DomainAction.from_doc(doc) if doc else None

    # ---- Operator surface ----------------------------------------------------

    async def get(self, action_id: str) -> DomainAction | None:
        with self._guard("get"):
            doc = await self._coll.find_one({"_id": action_id})
        return DomainAction.from_doc(doc) if doc else None

    async def cancel(self, action_id: str, *, now_ms: int, reason: str | None = None) -> bool:
        upd = {
            "$set": {
                "status": ActionStatus.cancelled.value,
                "last_error": {"kind": ErrorKind.CANCELLED.value, "message": reason or "cancelled by operator"},
                "updated_at_ms": now_ms,
            }
        }
        with self._guard("cancel"):
            res = await self._coll.update_one({"_id": action_id, "status": _PENDING}, upd)
        ok = bool(res.modified_count)
        if ok:
            self.log.info("action cancelled", event="action.cancel", action_id=action_id, reason=reason)
        return ok

    async def list(self, flt: ActionFilter) -> list[DomainAction]:
        q: dict[str, Any] = {}
        if flt.statuses:
            q["status"] = {"$in": [ActionStatus(s).value for s in flt.statuses]}
        if flt.action_types:
            q["action_type"] = {"$in": [_tag(t) for t in flt.action_types]}
        if flt.correlation_key is not None:
            q["correlation_key"] = flt.correlation_key
        rng: dict[str, int] = {}
        if flt.scheduled_from_ms is not None:
            rng["$gte"] = flt.scheduled_from_ms
        if flt.scheduled_to_ms is not None:
            rng["$lte"] = flt.scheduled_to_ms
        if rng:
            q["scheduled_at_ms"] = rng

        out: list[DomainAction] = []
        with self._guard("list"):
            cur = self._coll.find(q).sort([("scheduled_at_ms", ASCENDING), ("created_at_ms", ASCENDING)])
            async for doc in cur.limit(max(1, int(flt.limit))):
                out.append(DomainAction.from_doc(doc))
        return out

    # ---- Maintenance ---------------------------------------------------------

    async def release(self, action_id: str, *, worker_id: str, now_ms: int) -> bool:
        upd = {
            "$set": {"status": _PENDING, "worker_id": None, "claimed_at_ms": None, "updated_at_ms": now_ms},
            "$inc": {"attempt_count": -1},
        }
        with self._guard("release"):
            doc = await self._coll.find_one_and_update(
                {"_id": action_id, "status": _IN_PROGRESS, "worker_id": worker_id},
                upd,
                return_document=ReturnDocument.AFTER,
            )
        return doc is not None

    async def reclaim_stale(self, *, older_than_ms: int, now_ms: int, retry_at_ms: RetryAt) -> list[DomainAction]:
        cutoff = now_ms - older_than_ms
        with self._guard("reclaim.scan"):
            cur = self._coll.find({"status": _IN_PROGRESS, "claimed_at_ms": {"$lte": cutoff}})
            stale = [DomainAction.from_doc(d) async for d in cur]

        out: list[DomainAction] = []
        for a in stale:
            # CAS on the exact claim we observed
            fence = {"_id": a.id, "status": _IN_PROGRESS, "worker_id": a.worker_id, "claimed_at_ms": a.claimed_at_ms}
            err = {
                "kind": ErrorKind.STALE.value,
                "message": f"claim by {a.worker_id} stale since {a.claimed_at_ms}",
            }
            released = {"worker_id": None, "claimed_at_ms": None, "updated_at_ms": now_ms, "last_error": err}
            if a.attempt_count < a.max_attempts:
                upd = {"$set": {"status": _PENDING, "scheduled_at_ms": max(retry_at_ms(a), now_ms + 1), **released}}
            else:
                upd = {"$set": {"status": ActionStatus.failed.value, **released}}
            doc = await self._fenced_update("reclaim", fence, upd)
            if doc is not None:
                out.append(doc)
        return out

    async def expire_overdue(self, *, now_ms: int) -> int:
        upd = {
            "$set": {
                "status": ActionStatus.cancelled.value,
                "last_error": {"kind": ErrorKind.EXPIRED.value, "message": "expired before execution"},
                "updated_at_ms": now_ms,
            }
        }
        with self._guard("expire"):
            res = await self._coll.update_many({"status": _PENDING, "expires_at_ms": {"$lte": now_ms}}, upd)
        return int(res.modified_count)

    async def ensure_indexes(self) -> None:
        # Index creation is often unsupported in test doubles; warn but don't fail.
        specs = [
            ([("status", ASCENDING), ("scheduled_at_ms", ASCENDING)], "ix_actions_status_scheduled"),
            (
                [("correlation_key", ASCENDING), ("action_type", ASCENDING), ("status", ASCENDING)],
                "ix_actions_correlation",
            ),
            ([("status", ASCENDING), ("claimed_at_ms", ASCENDING)], "ix_actions_status_claimed"),
        ]
        for keys, name in specs:
            with swallow(logger=self.log, code=f"idx.{name}", msg="create index failed", level=logging.WARNING):
                await self._coll.create_index(keys, name=name)
