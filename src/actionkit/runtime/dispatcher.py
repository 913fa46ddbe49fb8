# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Dispatch loop.

Drives claim -> execute -> complete against the shared ActionStore:

- `cfg.concurrency` worker coroutines each loop over `run_once`; the store is
  the only synchronization point between them (and between processes).
- Nothing due -> sleep `poll_interval` (the loop's single suspension point
  when idle). `StoreUnavailable` -> sleep `store_backoff` and retry.
- Handlers run under `asyncio.wait_for(action_timeout)`; a timeout is a
  transient failure. The dispatcher only reads the `Outcome` tag.
- A sweep coroutine reclaims stale in-progress claims (operator alert) and
  cancels pending actions past their deadline.
- `stop()` stops claiming, waits up to `shutdown_grace` for in-flight work,
  then cancels stragglers and releases their claims back to pending.
"""

import asyncio
import logging
import time
import uuid

from ..api.errors import ErrorKind, StoreUnavailable, UnknownActionType
from ..core.config import DispatcherConfig
from ..core.log import alert, bind_context, get_logger, log_context, swallow
from ..core.time import Clock, SystemClock
from ..protocol.actions import ActionCompletedPayload, ActionStatus, Outcome, OutcomeKind
from ..protocol.messages import EventChannel
from ..storage.actions import ActionStore, DomainAction
from ..transport.publisher import EventPublisher
from ..worker.context import ActionContext
from ..worker.handlers.base import ActionHandler
from ..worker.registry import ExecutorRegistry
from .backoff import BackoffPolicy
from .metrics import DispatcherMetrics, default_metrics


class Dispatcher:
    def __init__(
        self,
        store: ActionStore,
        registry: ExecutorRegistry,
        *,
        cfg: DispatcherConfig | None = None,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        backoff: BackoffPolicy | None = None,
        metrics: DispatcherMetrics | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.cfg = cfg or DispatcherConfig()
        self.clock = clock or SystemClock()
        self.publisher = publisher
        self.backoff = backoff or BackoffPolicy.from_config(self.cfg)
        self.metrics = metrics or default_metrics()
        self.host_id = f"{self.cfg.worker_id_prefix}-{uuid.uuid4().hex[:8]}"
        self.log = get_logger("dispatcher")

        self._workers: dict[str, asyncio.Task] = {}
        self._sweeper: asyncio.Task | None = None
        self._stopping = False
        # workers between claim attempt and completion
        self._busy: set[str] = set()
        # worker_id -> claimed action currently executing
        self._inflight: dict[str, DomainAction] = {}

    # ---- lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._stopping

    async def start(self) -> None:
        if self._workers:
            return
        self._stopping = False
        for i in range(self.cfg.concurrency):
            wid = f"{self.host_id}-{i}"
            self._workers[wid] = asyncio.create_task(self._worker_loop(wid), name=f"actionkit-worker-{i}")
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="actionkit-sweeper")
        self.log.info("dispatcher started", event="dispatch.start", host_id=self.host_id, workers=len(self._workers))

    async def stop(self) -> None:
        if not self._workers:
            return
        self._stopping = True

        if self._sweeper:
            self._sweeper.cancel()

        for wid, task in self._workers.items():
            if wid not in self._busy:
                task.cancel()

        busy = [t for wid, t in self._workers.items() if wid in self._busy]
        if busy:
            self.log.info("draining in-flight actions", event="dispatch.drain", count=len(busy))
            await asyncio.wait(busy, timeout=self.cfg.shutdown_grace_ms / 1000.0)

        stragglers = dict(self._inflight)
        for task in self._workers.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._workers.values(), return_exceptions=True)
        if self._sweeper:
            await asyncio.gather(self._sweeper, return_exceptions=True)

        now = self.clock.now_ms()
        for wid, action in stragglers.items():
            with swallow(logger=self.log, code="dispatch.release", msg="release failed", level=logging.ERROR):
                released = await self.store.release(action.id, worker_id=wid, now_ms=now)
                self.log.warning(
                    "claim released on shutdown",
                    event="dispatch.release",
                    action_id=action.id,
                    worker_id=wid,
                    released=released,
                )

        self._workers.clear()
        self._sweeper = None
        self._busy.clear()
        self._inflight.clear()
        self.log.info("dispatcher stopped", event="dispatch.stop", host_id=self.host_id)

    # ---- worker --------------------------------------------------------------

    async def _worker_loop(self, worker_id: str) -> None:
        bind_context(worker_id=worker_id)
        while not self._stopping:
            try:
                did_work = await self.run_once(worker_id)
            except StoreUnavailable as e:
                self.metrics.store_backoff_total.inc()
                self.log.warning("store unavailable; backing off", event="dispatch.store_backoff", error=str(e))
                await self.clock.sleep_ms(self.cfg.store_backoff_ms)
                continue
            except Exception:
                self.log.exception("dispatch cycle failed", event="dispatch.cycle_error")
                await self.clock.sleep_ms(self.cfg.store_backoff_ms)
                continue
            if not did_work:
                await self.clock.sleep_ms(self.cfg.poll_interval_ms)

    async def run_once(self, worker_id: str) -> bool:
        """
        One claim/execute/complete cycle. Returns False when nothing was due.
        Raises StoreUnavailable when the store cannot be reached.
        """
        self._busy.add(worker_id)
        try:
            action = await self.store.claim_next_due(self.clock.now_ms(), worker_id)
            if action is None:
                return False
            if self._stopping:
                await self.store.release(action.id, worker_id=worker_id, now_ms=self.clock.now_ms())
                return True
            self._inflight[worker_id] = action
            self.metrics.claimed_total.labels(action_type=action.action_type).inc()
            self.metrics.inflight.inc()
            try:
                await self._process(action, worker_id)
            finally:
                self._inflight.pop(worker_id, None)
                self.metrics.inflight.dec()
            return True
        finally:
            self._busy.discard(worker_id)

    async def _process(self, action: DomainAction, worker_id: str) -> None:
        with log_context(
            action_id=action.id, action_type=action.action_type, attempt=action.attempt_count, worker_id=worker_id
        ):
            self.log.debug("action claimed", event="action.claim", max_attempts=action.max_attempts)
            try:
                handler = self.registry.for_type(action.action_type)
            except UnknownActionType as e:
                self.log.error("no handler for action type", event="action.unknown_type")
                outcome = Outcome.fatal(str(e), error_kind=ErrorKind.UNKNOWN_ACTION_TYPE)
            else:
                outcome = await self._execute(handler, action)
            await self._apply(action, outcome, worker_id)

    async def _execute(self, handler: ActionHandler, action: DomainAction) -> Outcome:
        ctx = ActionContext(
            action=action,
            clock=self.clock,
            store=self.store,
            log=get_logger(f"handlers.{action.action_type}"),
            publisher=self.publisher,
        )
        timeout_s = self.cfg.action_timeout_ms / 1000.0
        started = time.monotonic()
        try:
            return await asyncio.wait_for(handler.execute(action.parameters, ctx), timeout=timeout_s)
        except asyncio.TimeoutError:
            self.metrics.timeouts_total.labels(action_type=action.action_type).inc()
            self.log.warning("action timed out", event="action.timeout", timeout_ms=self.cfg.action_timeout_ms)
            return Outcome.transient(f"timed out after {self.cfg.action_timeout_ms}ms", error_kind=ErrorKind.TIMEOUT)
        except Exception as e:
            self.log.exception("handler escaped its error boundary", event="action.handler_crash")
            return Outcome.transient(f"unexpected_error: {e}")
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000.0
            self.metrics.execution_ms.labels(action_type=action.action_type).observe(elapsed_ms)

    def _retry_at(self, action: DomainAction, outcome: Outcome, now_ms: int) -> int | None:
        if outcome.kind != OutcomeKind.transient_failure:
            return None
        kind = outcome.error_kind or ErrorKind.TRANSIENT
        if not self.backoff.is_retryable(kind, action.attempt_count, action.max_attempts):
            return None
        return now_ms + self.backoff.next_delay_ms(action.attempt_count, jitter_key=action.id)

    async def _apply(self, action: DomainAction, outcome: Outcome, worker_id: str) -> None:
        now = self.clock.now_ms()
        retry_at = self._retry_at(action, outcome, now)
        updated = await self.store.complete(
            action.id, outcome, worker_id=worker_id, now_ms=now, retry_at_ms=retry_at
        )
        if updated is None:
            self._count_completion(action, "fenced")
            self.log.warning("claim lost before completion; outcome discarded", event="action.fenced")
            return

        if updated.status == ActionStatus.success:
            self._count_completion(action, "success")
            self.log.info("action succeeded", event="action.success")
            if self.cfg.notify_on_success and self.publisher is not None:
                await self.publisher.publish(
                    EventChannel.action_completed,
                    ActionCompletedPayload(
                        action_id=updated.id,
                        action_type=updated.action_type,
                        attempt_count=updated.attempt_count,
                        correlation_key=updated.correlation_key,
                        result=updated.result_payload,
                    ),
                    key=updated.id,
                )
        elif updated.status == ActionStatus.pending:
            self._count_completion(action, "retry")
            self.log.warning(
                "action failed; retry scheduled",
                event="action.retry",
                scheduled_at_ms=updated.scheduled_at_ms,
                last_error=updated.last_error,
            )
        else:
            self._count_completion(action, "failed")
            self.log.error(
                "action dead-lettered",
                event="action.failed",
                attempt_count=updated.attempt_count,
                last_error=updated.last_error,
            )

    def _count_completion(self, action: DomainAction, result: str) -> None:
        self.metrics.completed_total.labels(action_type=action.action_type, result=result).inc()

    # ---- maintenance ---------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while not self._stopping:
            with swallow(logger=self.log, code="dispatch.sweep", msg="sweep failed", level=logging.ERROR):
                await self.sweep_once()
            await self.clock.sleep_ms(self.cfg.sweep_interval_ms)

    async def sweep_once(self) -> tuple[list[DomainAction], int]:
        """Reclaim stale claims and expire overdue actions. Returns (reclaimed, expired_count)."""
        now = self.clock.now_ms()

        def retry_at(a: DomainAction) -> int:
            return now + self.backoff.next_delay_ms(a.attempt_count, jitter_key=a.id)

        reclaimed = await self.store.reclaim_stale(
            older_than_ms=self.cfg.stale_after_ms, now_ms=now, retry_at_ms=retry_at
        )
        for a in reclaimed:
            self.metrics.stale_reclaimed_total.labels(action_type=a.action_type, result=a.status.value).inc()
            alert(
                self.log,
                "action.stale",
                "stale in-progress action reclaimed",
                action_id=a.id,
                action_type=a.action_type,
                status=a.status.value,
                attempt_count=a.attempt_count,
            )
        expired = await self.store.expire_overdue(now_ms=now)
        if expired:
            self.metrics.expired_total.inc(expired)
            self.log.info("overdue actions expired", event="dispatch.expired", count=expired)
        return reclaimed, expired
