# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Collaborator interfaces consumed by action handlers. Implementations are
provided by the hosting application and injected via `build_registry`.
"""

from .communications import CommType, CommunicationMessage, CommunicationQueue, CommunicationSender
from .entities import (
    AbandonedCart,
    AbandonedCarts,
    AudienceMember,
    Broadcast,
    Broadcasts,
    BroadcastStatus,
    BroadcastType,
    EventSnapshot,
    Fan,
    FanDirectory,
    GenreIndex,
    GenreTarget,
    MarketingContacts,
    ReportSource,
    SourceOrDestination,
    TicketCountReport,
    TransferDirectory,
    TransferMessageType,
    TransferSnapshot,
)
from .events import DomainEvent, DomainEventLog, EventSubscriber, EventSubscribers, WebhookPayloadBuilder
from .payments import (
    ChargeOutcome,
    PaymentGateway,
    PaymentLedger,
    PaymentRecord,
    PaymentStatus,
    RefundOutcome,
    map_ipn_status,
)
from .webhooks import WebhookAdapter, WebhookAdapterFactory

__all__ = [
    "AbandonedCart",
    "AbandonedCarts",
    "AudienceMember",
    "Broadcast",
    "BroadcastStatus",
    "BroadcastType",
    "Broadcasts",
    "ChargeOutcome",
    "CommType",
    "CommunicationMessage",
    "CommunicationQueue",
    "CommunicationSender",
    "DomainEvent",
    "DomainEventLog",
    "EventSubscriber",
    "EventSubscribers",
    "EventSnapshot",
    "Fan",
    "FanDirectory",
    "GenreIndex",
    "GenreTarget",
    "MarketingContacts",
    "PaymentGateway",
    "PaymentLedger",
    "PaymentRecord",
    "PaymentStatus",
    "RefundOutcome",
    "ReportSource",
    "SourceOrDestination",
    "TicketCountReport",
    "TransferDirectory",
    "TransferMessageType",
    "TransferSnapshot",
    "WebhookAdapter",
    "WebhookAdapterFactory",
    "WebhookPayloadBuilder",
    "map_ipn_status",
]
