from __future__ import annotations

import pytest

from actionkit.api.errors import ErrorKind
from actionkit.ports.payments import PaymentStatus, map_ipn_status
from actionkit.protocol.actions import ActionType, Outcome, OutcomeKind
from actionkit.worker.handlers.payments import ProcessPaymentIPNHandler
from tests.helpers.context import claimed_context
from tests.helpers.fakes import FakeGateway, FakeLedger

pytestmark = [pytest.mark.handlers]


def _ipn(status: str, *, order: str | None = "order-1", amount: float = 12.5) -> dict:
    body = {"id": "req-9", "status": status, "payment_details": {"received_amount": amount}}
    if order is not None:
        body["custom_payment_id"] = order
    return body


async def _run(store, clock, handler, params):
    ctx = await claimed_context(store, clock, ActionType.PROCESS_PAYMENT_IPN, params)
    return await handler.execute(params, ctx)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("paid", PaymentStatus.pending_confirmation),
        ("CONFIRMED", PaymentStatus.completed),
        ("refunded", PaymentStatus.refunded),
        ("something-new", PaymentStatus.unknown),
        (None, PaymentStatus.unknown),
    ],
)
def test_status_mapping(raw, expected):
    assert map_ipn_status(raw) == expected


@pytest.mark.asyncio
async def test_confirmed_ipn_completes_payment(store, clock):
    gw = FakeGateway(requests={"req-9": _ipn("confirmed")})
    ledger = FakeLedger()
    out = await _run(store, clock, ProcessPaymentIPNHandler(gw, ledger), _ipn("paid"))

    assert out.ok
    assert out.result == {"payment_id": "pay-1", "status": "completed", "external_reference": "globee-req-9"}
    pay = ledger.payments["pay-1"]
    assert pay.status == PaymentStatus.completed
    assert pay.amount_cents == 1250
    assert pay.order_id == "order-1"
    assert gw.fetches == ["req-9"]
    assert gw.metadata_calls == [("pay-1", {"order_id": "order-1", "external_reference": "globee-req-9"})]


@pytest.mark.asyncio
async def test_replayed_ipn_reuses_payment(store, clock):
    gw = FakeGateway(requests={"req-9": _ipn("paid")})
    ledger = FakeLedger()
    h = ProcessPaymentIPNHandler(gw, ledger)
    await _run(store, clock, h, _ipn("paid"))
    gw.requests["req-9"] = _ipn("confirmed")
    out = await _run(store, clock, h, _ipn("confirmed"))

    assert out.ok
    assert list(ledger.payments) == ["pay-1"]
    assert ledger.ipns == [("pay-1", PaymentStatus.pending_confirmation)]
    assert ledger.completed == ["pay-1"]


@pytest.mark.asyncio
async def test_without_verification_uses_inbound_body(store, clock):
    gw = FakeGateway()
    ledger = FakeLedger()
    out = await _run(store, clock, ProcessPaymentIPNHandler(gw, ledger, verify_with_gateway=False), _ipn("paid"))
    assert out.ok and out.result["status"] == "pending_confirmation"
    assert gw.fetches == []


@pytest.mark.asyncio
async def test_ipn_without_order_is_skipped(store, clock):
    ledger = FakeLedger()
    out = await _run(store, clock, ProcessPaymentIPNHandler(FakeGateway(), ledger), _ipn("paid", order=None))
    assert out.ok and "skipped" in out.result
    assert ledger.payments == {}


@pytest.mark.asyncio
async def test_gateway_response_without_order_is_permanent(store, clock):
    gw = FakeGateway(requests={"req-9": _ipn("paid", order=None)})
    out = await _run(store, clock, ProcessPaymentIPNHandler(gw, FakeLedger()), _ipn("paid"))
    assert out.kind == OutcomeKind.fatal_failure


@pytest.mark.asyncio
async def test_metadata_failure_is_reported(store, clock):
    gw = FakeGateway(requests={"req-9": _ipn("confirmed")}, metadata_outcome=Outcome.transient("gateway 502"))
    out = await _run(store, clock, ProcessPaymentIPNHandler(gw, FakeLedger()), _ipn("confirmed"))
    assert out.kind == OutcomeKind.transient_failure
    assert out.detail == "gateway 502"


@pytest.mark.asyncio
async def test_malformed_ipn(store, clock):
    out = await _run(store, clock, ProcessPaymentIPNHandler(FakeGateway(), FakeLedger()), {"status": "paid"})
    assert out.error_kind == ErrorKind.VALIDATION
