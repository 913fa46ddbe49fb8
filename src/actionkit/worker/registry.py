# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Executor registry.

Maps an action-type tag to the handler instance that runs it. Built once at
process start from explicitly constructed handlers; lookups never construct
or discover anything.
"""

from collections.abc import Iterable, Iterator, Mapping

from ..api.errors import RegistryError, UnknownActionType
from ..core.time import Clock
from ..ports.communications import CommType, CommunicationQueue, CommunicationSender
from ..ports.entities import (
    AbandonedCarts,
    Broadcasts,
    FanDirectory,
    GenreIndex,
    MarketingContacts,
    ReportSource,
    TransferDirectory,
)
from ..ports.payments import PaymentGateway, PaymentLedger
from ..ports.webhooks import WebhookAdapterFactory
from ..protocol.actions import ActionType
from ..runtime.recurrence import RecurrenceGuard
from ..storage.actions import ActionStore
from .handlers.base import ActionHandler
from .handlers.broadcasts import BroadcastPushNotificationHandler
from .handlers.communications import SendCommunicationHandler
from .handlers.genres import UpdateGenresHandler
from .handlers.marketing import BulkFanListImportHandler
from .handlers.payments import ProcessPaymentIPNHandler
from .handlers.reports import SendAutomaticReportEmailsHandler
from .handlers.retargeting import RetargetAbandonedOrdersHandler
from .handlers.transfers import ProcessTransferDripHandler
from .handlers.webhooks import SendWebhookHandler


class ExecutorRegistry:
    def __init__(self, handlers: Iterable[ActionHandler] = ()) -> None:
        self._handlers: dict[str, ActionHandler] = {}
        for h in handlers:
            self.register(h)

    def _check_tag(self, tag: str) -> None:
        if not tag or tag.strip() != tag:
            raise RegistryError(f"empty/invalid action type tag: {tag!r}")

    def register(self, handler: ActionHandler) -> None:
        action_type = getattr(handler, "action_type", None)
        if action_type is None:
            raise RegistryError(f"{type(handler).__name__} does not declare action_type")
        tag = action_type.value if isinstance(action_type, ActionType) else str(action_type)
        self._check_tag(tag)
        if tag in self._handlers:
            raise RegistryError(f"handler already registered for {tag}")
        self._handlers[tag] = handler

    def for_type(self, action_type: ActionType | str) -> ActionHandler:
        """Lookup the handler for a tag or raise UnknownActionType."""
        tag = action_type.value if isinstance(action_type, ActionType) else str(action_type)
        try:
            return self._handlers[tag]
        except KeyError:
            raise UnknownActionType(tag) from None

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def missing(self) -> list[ActionType]:
        """Known action types without a handler (useful as a startup check)."""
        return [t for t in ActionType if t.value not in self._handlers]

    def __contains__(self, action_type: object) -> bool:
        tag = action_type.value if isinstance(action_type, ActionType) else action_type
        return tag in self._handlers

    def __iter__(self) -> Iterator[ActionHandler]:
        return iter(self._handlers.values())

    def __len__(self) -> int:
        return len(self._handlers)


def build_registry(
    *,
    store: ActionStore,
    clock: Clock,
    gateway: PaymentGateway,
    ledger: PaymentLedger,
    senders: Mapping[CommType, CommunicationSender],
    comms: CommunicationQueue,
    webhook_adapters: Mapping[str, WebhookAdapterFactory],
    fans: FanDirectory,
    contacts: MarketingContacts,
    transfers: TransferDirectory,
    reports: ReportSource,
    carts: AbandonedCarts,
    genres: GenreIndex,
    broadcasts: Broadcasts,
    block_external_comms: bool = False,
    verify_ipn: bool = True,
    push_template_id: str | None = None,
) -> ExecutorRegistry:
    """Production handler set with every collaborator passed in explicitly."""
    guard = RecurrenceGuard(store, clock=clock)
    return ExecutorRegistry(
        [
            ProcessPaymentIPNHandler(gateway, ledger, verify_with_gateway=verify_ipn),
            SendCommunicationHandler(senders, block_external_comms=block_external_comms),
            SendWebhookHandler(webhook_adapters),
            BulkFanListImportHandler(fans, contacts, guard),
            ProcessTransferDripHandler(transfers, comms),
            SendAutomaticReportEmailsHandler(reports, comms, guard),
            RetargetAbandonedOrdersHandler(carts, comms, guard),
            UpdateGenresHandler(genres),
            BroadcastPushNotificationHandler(broadcasts, comms, template_id=push_template_id),
        ]
    )
