# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class DomainEvent:
    """Append-only log entry; `seq` is strictly increasing across the log."""

    seq: int
    event_type: str
    created_at_ms: int
    organization_id: str | None = None
    main_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class EventSubscriber:
    """
    A webhook endpoint subscribed to some event types, optionally scoped to
    one organization. `last_seq` is the highest event already handled.
    """

    subscriber_id: str
    webhook_url: str
    event_types: list[str]
    organization_id: str | None = None
    last_seq: int | None = None
    adapter: str | None = None
    adapter_config: dict[str, Any] = field(default_factory=dict)

    def wants(self, event: DomainEvent) -> bool:
        if event.seq <= (self.last_seq if self.last_seq is not None else -1):
            return False
        if event.event_type not in self.event_types:
            return False
        return self.organization_id is None or self.organization_id == event.organization_id


@runtime_checkable
class DomainEventLog(Protocol):
    async def events_after(self, seq: int, limit: int) -> list[DomainEvent]:
        """Events with `seq` greater than the argument, ascending."""
        ...


@runtime_checkable
class EventSubscribers(Protocol):
    async def all(self) -> list[EventSubscriber]: ...
    async def acquire_lock(self, subscriber_id: str, owner: str, *, ttl_ms: int, now_ms: int) -> bool:
        """True when `owner` now holds the lock (free, expired, or already ours)."""
        ...

    async def renew_lock(self, subscriber_id: str, owner: str, *, ttl_ms: int, now_ms: int) -> bool: ...
    async def release_lock(self, subscriber_id: str, owner: str) -> None: ...
    async def advance(self, subscriber_id: str, seq: int) -> None:
        """Move `last_seq` forward; a lower or equal value is ignored."""
        ...


@runtime_checkable
class WebhookPayloadBuilder(Protocol):
    """Expands one domain event into zero or more webhook bodies."""

    async def build(self, event: DomainEvent) -> list[dict[str, Any]]: ...
