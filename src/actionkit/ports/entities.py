# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Read/write access to marketplace entities needed by handlers.

The relational store that owns these rows is external; handlers see only
these narrow protocols and small snapshot dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable


class SourceOrDestination(str, Enum):
    source = "source"
    destination = "destination"


class TransferMessageType(str, Enum):
    email = "email"
    phone = "phone"


class GenreTarget(str, Enum):
    artist = "artist"
    event = "event"
    user = "user"


class BroadcastStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class BroadcastType(str, Enum):
    last_call = "last_call"
    custom = "custom"


@dataclass
class EventSnapshot:
    event_id: str
    organization_id: str
    name: str
    on_sale: bool
    marketing_list_id: str | None = None


@dataclass
class Fan:
    user_id: str
    email: str | None
    first_name: str | None = None
    last_name: str | None = None


@dataclass
class TransferSnapshot:
    transfer_id: str
    event_name: str
    source_email: str | None
    transfer_address: str | None = None
    message_type: TransferMessageType | None = None
    accepts_drips: bool = True


@dataclass
class TicketCountReport:
    event_id: str
    event_name: str
    subscribers: list[str] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)


@dataclass
class AbandonedCart:
    order_id: str
    user_id: str
    email: str
    event_name: str


@dataclass
class Broadcast:
    broadcast_id: str
    event_id: str
    notification_type: BroadcastType
    status: BroadcastStatus = BroadcastStatus.pending
    message: str | None = None


@dataclass
class AudienceMember:
    user_id: str
    push_tokens: list[str] = field(default_factory=list)


@runtime_checkable
class FanDirectory(Protocol):
    async def get_event(self, event_id: str) -> EventSnapshot | None: ...
    async def fans(self, event_id: str) -> list[Fan]: ...


@runtime_checkable
class MarketingContacts(Protocol):
    async def has_credentials(self, organization_id: str) -> bool: ...
    async def import_contacts(self, organization_id: str, list_id: str, fans: list[Fan]) -> int:
        """Upsert fans into the marketing list; returns the number added."""
        ...


@runtime_checkable
class TransferDirectory(Protocol):
    async def get_transfer(self, transfer_id: str) -> TransferSnapshot | None: ...
    async def log_drip(self, transfer_id: str, side: SourceOrDestination) -> None: ...


@runtime_checkable
class ReportSource(Protocol):
    async def ticket_count_reports(self) -> list[TicketCountReport]: ...


@runtime_checkable
class AbandonedCarts(Protocol):
    async def find_unretargeted(self, *, now_ms: int) -> list[AbandonedCart]: ...
    async def mark_retargeted(self, order_id: str, *, now_ms: int) -> None: ...


@runtime_checkable
class GenreIndex(Protocol):
    async def refresh_artist(self, artist_id: str, *, user_id: str) -> None: ...
    async def refresh_event(self, event_id: str, *, user_id: str) -> None: ...
    async def refresh_user(self, user_id: str) -> None: ...


@runtime_checkable
class Broadcasts(Protocol):
    async def get_broadcast(self, broadcast_id: str) -> Broadcast | None: ...
    async def mark_in_progress(self, broadcast_id: str) -> None: ...
    async def set_sent_count(self, broadcast_id: str, count: int) -> None: ...
    async def checked_in_audience(self, event_id: str) -> list[AudienceMember]:
        """Users checked in at the event, with their registered push tokens."""
        ...
