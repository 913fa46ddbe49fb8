# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Payment collaborators consumed by the IPN handler.

`PaymentGateway` wraps a concrete gateway client; implementations translate
wire errors into `GatewayUnavailable` (retry) or `GatewayDeclined` (dead-letter).
`PaymentLedger` is the relational side: payments recorded against orders.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from ..protocol.actions import Outcome


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    pending_confirmation = "pending_confirmation"
    completed = "completed"
    refunded = "refunded"
    cancelled = "cancelled"
    draft = "draft"
    unknown = "unknown"


# Gateway-reported IPN status -> ledger status.
IPN_STATUS_MAP: dict[str, PaymentStatus] = {
    "unpaid": PaymentStatus.unpaid,
    "paid": PaymentStatus.pending_confirmation,
    "overpaid": PaymentStatus.pending_confirmation,
    "underpaid": PaymentStatus.pending_confirmation,
    "paid_late": PaymentStatus.pending_confirmation,
    "confirmed": PaymentStatus.completed,
    "completed": PaymentStatus.completed,
    "refunded": PaymentStatus.refunded,
    "cancelled": PaymentStatus.cancelled,
    "draft": PaymentStatus.draft,
}


def map_ipn_status(raw: str | None) -> PaymentStatus:
    return IPN_STATUS_MAP.get((raw or "none").lower(), PaymentStatus.unknown)


class ChargeOutcome(BaseModel):
    charge_id: str
    amount_cents: int
    status: PaymentStatus = PaymentStatus.completed


class RefundOutcome(BaseModel):
    refund_id: str
    charge_id: str
    amount_cents: int


@dataclass
class PaymentRecord:
    payment_id: str
    order_id: str
    external_reference: str | None
    amount_cents: int
    status: PaymentStatus


@runtime_checkable
class PaymentGateway(Protocol):
    name: str

    async def charge(self, token: str, amount_cents: int) -> ChargeOutcome: ...
    async def refund(self, charge_id: str, amount_cents: int) -> RefundOutcome: ...
    async def update_metadata(self, payment_id: str, fields: dict[str, Any]) -> Outcome: ...
    async def fetch_payment_request(self, request_id: str) -> dict[str, Any]:
        """Authoritative copy of a payment request (used to verify inbound IPNs)."""
        ...


@runtime_checkable
class PaymentLedger(Protocol):
    async def find_payment(self, order_id: str, external_reference: str) -> PaymentRecord | None: ...

    async def add_provider_payment(
        self,
        order_id: str,
        *,
        external_reference: str,
        provider: str,
        amount_cents: int,
        status: PaymentStatus,
        raw: dict[str, Any],
    ) -> PaymentRecord: ...

    async def update_amount(self, payment_id: str, amount_cents: int) -> None: ...
    async def complete_payment(self, payment_id: str, raw: dict[str, Any]) -> None: ...
    async def record_ipn(self, payment_id: str, status: PaymentStatus, raw: dict[str, Any]) -> None: ...
