from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ...api.errors import PermanentError
from ...ports.payments import PaymentGateway, PaymentLedger, PaymentStatus, map_ipn_status
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext
from .base import ActionHandler


class PaymentDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    received_amount: float | None = None


class IpnParams(BaseModel):
    """Inbound gateway notification, stored verbatim as the action payload."""

    model_config = ConfigDict(extra="allow")

    id: str
    status: str | None = None
    custom_payment_id: str | None = None
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)

    @property
    def received_cents(self) -> int:
        return int(round((self.payment_details.received_amount or 0.0) * 100))


class ProcessPaymentIPNHandler(ActionHandler):
    """
    Applies a payment notification to the order's ledger.

    Idempotent on the external reference ``"<gateway>-<ipn id>"``: a replayed
    IPN finds the payment created by the first delivery and only re-applies
    the status transition.
    """

    action_type = ActionType.PROCESS_PAYMENT_IPN
    Params = IpnParams

    def __init__(self, gateway: PaymentGateway, ledger: PaymentLedger, *, verify_with_gateway: bool = True) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.verify_with_gateway = verify_with_gateway

    async def run(self, params: IpnParams, ctx: ActionContext) -> Outcome:
        if params.custom_payment_id is None:
            ctx.log.info("IPN without custom_payment_id ignored", event="ipn.skip", ipn_id=params.id)
            return Outcome.success({"skipped": "no custom_payment_id"})

        ipn = params
        if self.verify_with_gateway:
            ipn = IpnParams.model_validate(await self.gateway.fetch_payment_request(params.id))
        if ipn.custom_payment_id is None:
            raise PermanentError("gateway response did not include a custom_payment_id")

        order_id = ipn.custom_payment_id
        external_reference = f"{self.gateway.name}-{ipn.id}"
        status = map_ipn_status(ipn.status)
        raw = ipn.model_dump(mode="json")
        ctx.log.debug("IPN resolved", event="ipn.status", ipn_id=ipn.id, order_id=order_id, status=status.value)

        payment = await self.ledger.find_payment(order_id, external_reference)
        if payment is None:
            payment = await self.ledger.add_provider_payment(
                order_id,
                external_reference=external_reference,
                provider=self.gateway.name,
                amount_cents=ipn.received_cents,
                status=status,
                raw=raw,
            )

        if status == PaymentStatus.completed:
            await self.ledger.update_amount(payment.payment_id, ipn.received_cents)
            await self.ledger.complete_payment(payment.payment_id, raw)
            meta = await self.gateway.update_metadata(
                payment.payment_id, {"order_id": order_id, "external_reference": external_reference}
            )
            if not meta.ok:
                return meta
        else:
            await self.ledger.record_ipn(payment.payment_id, status, raw)

        return Outcome.success(
            {"payment_id": payment.payment_id, "status": status.value, "external_reference": external_reference}
        )
