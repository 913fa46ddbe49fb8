# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Fire-and-forget publisher for real-time fan-out channels.

One topic per channel (``topic_fmt.format(channel=...)``). At most
``max_in_flight`` sends run concurrently across all callers; the semaphore is
the bounded pool shared by every worker coroutine. A failed send is logged and
dropped: nothing here retries, and nothing here raises into the caller.
"""

import asyncio
from typing import Any

from pydantic import BaseModel

from ..core.config import DispatcherConfig
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..protocol.messages import EventChannel, build_envelope
from ..runtime.metrics import DispatcherMetrics, default_metrics
from .bus import Bus


class EventPublisher:
    def __init__(
        self,
        bus: Bus,
        *,
        topic_fmt: str = "events.{channel}.v1",
        max_in_flight: int = 64,
        clock: Clock | None = None,
        metrics: DispatcherMetrics | None = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.bus = bus
        self.topic_fmt = topic_fmt
        self.clock = clock or SystemClock()
        self._sem = asyncio.Semaphore(max_in_flight)
        self.log = get_logger("transport.publisher")
        self.metrics = metrics or default_metrics()

    @classmethod
    def from_config(
        cls,
        bus: Bus,
        cfg: DispatcherConfig,
        *,
        clock: Clock | None = None,
        metrics: DispatcherMetrics | None = None,
    ) -> EventPublisher:
        return cls(
            bus,
            topic_fmt=cfg.topic_event_fmt,
            max_in_flight=cfg.publish_max_in_flight,
            clock=clock,
            metrics=metrics,
        )

    def _count(self, channel: EventChannel | str, result: str) -> None:
        known = {c.value for c in EventChannel}
        label = channel.value if isinstance(channel, EventChannel) else str(channel)
        self.metrics.published_total.labels(channel=label if label in known else "unknown", result=result).inc()

    def topic(self, channel: EventChannel | str) -> str:
        return self.topic_fmt.format(channel=EventChannel(channel).value)

    async def publish(
        self, channel: EventChannel | str, payload: dict[str, Any] | BaseModel, *, key: str | None = None
    ) -> bool:
        """Returns True when the message reached the bus, False when it was dropped."""
        try:
            env = build_envelope(channel, payload, ts_ms=self.clock.now_ms())
        except ValueError as e:
            # pydantic.ValidationError is a ValueError
            self._count(channel, "invalid")
            self.log.error("invalid event payload dropped", event="publish.invalid", channel=str(channel), error=str(e))
            return False

        topic = self.topic(env.channel)
        async with self._sem:
            try:
                await self.bus.send(topic, key.encode("utf-8") if key else None, env)
            except Exception as e:
                self._count(env.channel, "failed")
                self.log.warning(
                    "publish failed; event dropped",
                    event="publish.failed",
                    topic=topic,
                    event_id=env.event_id,
                    error=str(e),
                )
                return False
        self._count(env.channel, "ok")
        self.log.debug("event published", event="publish.ok", topic=topic, event_id=env.event_id)
        return True
