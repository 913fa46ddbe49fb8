from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..core.time import Clock
from ..protocol.actions import ActionType
from ..protocol.messages import EventChannel
from ..storage.actions import ActionStore, DomainAction

if TYPE_CHECKING:
    from ..transport.publisher import EventPublisher


class ActionContext:
    """
    Per-execution collaborators handed to a handler.

    Handlers get the store only through `enqueue` (follow-up work) and the
    transport only through `publish` (fire-and-forget fan-out).
    """

    def __init__(
        self,
        *,
        action: DomainAction,
        clock: Clock,
        store: ActionStore,
        log: logging.LoggerAdapter,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.action = action
        self.clock = clock
        self.log = log
        self._store = store
        self._publisher = publisher

    @property
    def worker_id(self) -> str | None:
        return self.action.worker_id

    def now_ms(self) -> int:
        return self.clock.now_ms()

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
        return await self._store.enqueue(
            action_type,
            parameters,
            scheduled_at_ms=scheduled_at_ms,
            max_attempts=max_attempts,
            correlation_key=correlation_key,
            expires_at_ms=expires_at_ms,
        )

    async def publish(self, channel: EventChannel | str, payload: dict[str, Any]) -> None:
        if self._publisher is None:
            self.log.debug("publish skipped: no publisher", event="publish.skip", channel=str(channel))
            return
        await self._publisher.publish(channel, payload)
