# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Domain event -> webhook fan-out.

Each pass reads up to `batch_size` events after the lowest subscriber
position, then walks them once per subscriber while holding that
subscriber's lease. Matching events become `SendWebhook` actions; every
event, matching or not, advances the subscriber's `last_seq`, and the lease
is renewed after each one. A subscriber whose lease is held elsewhere is
skipped for this pass.
"""

import asyncio
import logging
import uuid
from typing import Any

from ..api.errors import StoreUnavailable
from ..core.log import get_logger, swallow
from ..core.time import Clock, SystemClock
from ..ports.events import DomainEvent, DomainEventLog, EventSubscriber, EventSubscribers, WebhookPayloadBuilder
from ..protocol.actions import ActionType
from ..storage.actions import ActionStore
from .metrics import DispatcherMetrics, default_metrics


class DefaultPayloads:
    """The event payload tagged with its type and a unix-seconds timestamp."""

    async def build(self, event: DomainEvent) -> list[dict[str, Any]]:
        return [{**event.payload, "webhook_event_type": event.event_type, "timestamp": event.created_at_ms // 1000}]


def correlation_key(subscriber_id: str, seq: int) -> str:
    return f"domain_event:{subscriber_id}:{seq}"


class DomainEventFanout:
    def __init__(
        self,
        events: DomainEventLog,
        subscribers: EventSubscribers,
        store: ActionStore,
        *,
        clock: Clock | None = None,
        payloads: WebhookPayloadBuilder | None = None,
        batch_size: int = 500,
        lock_ttl_ms: int = 60_000,
        interval_ms: int = 1_000,
        default_adapter: str = "http",
        owner_id: str | None = None,
        metrics: DispatcherMetrics | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.events = events
        self.subscribers = subscribers
        self.store = store
        self.clock = clock or SystemClock()
        self.payloads = payloads or DefaultPayloads()
        self.batch_size = batch_size
        self.lock_ttl_ms = lock_ttl_ms
        self.interval_ms = interval_ms
        self.default_adapter = default_adapter
        self.owner_id = owner_id or f"fanout-{uuid.uuid4().hex[:8]}"
        self.metrics = metrics or default_metrics()
        self.log = get_logger("fanout")
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="actionkit-fanout")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                handled = await self.publish_once()
            except StoreUnavailable as e:
                self.log.warning("store unavailable; fan-out backing off", event="fanout.store_backoff", error=str(e))
                handled = 0
            except Exception:
                self.log.exception("fan-out pass failed", event="fanout.error")
                handled = 0
            if handled == 0:
                await self.clock.sleep_ms(self.interval_ms)

    async def publish_once(self) -> int:
        """One pass over all subscribers. Returns events handled (summed per subscriber)."""
        subs = await self.subscribers.all()
        if not subs:
            return 0
        start = min(s.last_seq if s.last_seq is not None else -1 for s in subs)
        batch = await self.events.events_after(start, self.batch_size)
        if not batch:
            return 0

        handled = 0
        for sub in subs:
            now = self.clock.now_ms()
            if not await self.subscribers.acquire_lock(
                sub.subscriber_id, self.owner_id, ttl_ms=self.lock_ttl_ms, now_ms=now
            ):
                self.log.debug("subscriber locked elsewhere", event="fanout.locked", subscriber_id=sub.subscriber_id)
                continue
            try:
                handled += await self._drain(sub, batch)
            finally:
                with swallow(logger=self.log, code="fanout.release", msg="lock release failed", level=logging.WARNING):
                    await self.subscribers.release_lock(sub.subscriber_id, self.owner_id)
        return handled

    async def _drain(self, sub: EventSubscriber, batch: list[DomainEvent]) -> int:
        handled = 0
        for event in batch:
            if sub.last_seq is not None and event.seq <= sub.last_seq:
                continue
            if sub.wants(event):
                queued = await self._queue(sub, event)
                self.metrics.fanout_events_total.labels(result="queued").inc()
                self.log.info(
                    "domain event queued for webhook",
                    event="fanout.queued",
                    subscriber_id=sub.subscriber_id,
                    event_type=event.event_type,
                    seq=event.seq,
                    webhooks=queued,
                )
            else:
                self.metrics.fanout_events_total.labels(result="filtered").inc()
            await self.subscribers.advance(sub.subscriber_id, event.seq)
            sub.last_seq = event.seq
            handled += 1
            if not await self.subscribers.renew_lock(
                sub.subscriber_id, self.owner_id, ttl_ms=self.lock_ttl_ms, now_ms=self.clock.now_ms()
            ):
                self.log.warning("subscriber lock lost", event="fanout.lock_lost", subscriber_id=sub.subscriber_id)
                break
        return handled

    async def _queue(self, sub: EventSubscriber, event: DomainEvent) -> int:
        bodies = await self.payloads.build(event)
        for body in bodies:
            await self.store.enqueue(
                ActionType.SEND_WEBHOOK,
                {
                    "adapter": sub.adapter or self.default_adapter,
                    "adapter_config": dict(sub.adapter_config),
                    "urls": [sub.webhook_url],
                    "payload": body,
                },
                correlation_key=correlation_key(sub.subscriber_id, event.seq),
            )
        return len(bodies)
