from __future__ import annotations

import pytest

from actionkit.adapters.communication_queue import ActionCommunicationQueue
from actionkit.ports.communications import CommType, CommunicationMessage
from actionkit.ports.entities import (
    AbandonedCart,
    EventSnapshot,
    Fan,
    SourceOrDestination,
    TicketCountReport,
    TransferMessageType,
    TransferSnapshot,
)
from actionkit.protocol.actions import ActionStatus, ActionType, OutcomeKind
from actionkit.runtime.recurrence import RecurrenceGuard
from actionkit.storage.actions import ActionFilter
from actionkit.worker.handlers.genres import UpdateGenresHandler
from actionkit.worker.handlers.marketing import REPEAT_AFTER_MS, BulkFanListImportHandler
from actionkit.worker.handlers.marketing import correlation_key as fan_import_key
from actionkit.worker.handlers.reports import CORRELATION_KEY as REPORTS_KEY
from actionkit.worker.handlers.reports import SendAutomaticReportEmailsHandler
from actionkit.worker.handlers.retargeting import CORRELATION_KEY as RETARGET_KEY
from actionkit.worker.handlers.retargeting import RetargetAbandonedOrdersHandler
from actionkit.worker.handlers.transfers import ProcessTransferDripHandler
from tests.conftest import T0
from tests.helpers.context import claimed_context
from tests.helpers.fakes import (
    FakeCarts,
    FakeContacts,
    FakeFans,
    FakeGenres,
    FakeReports,
    FakeTransfers,
    RecordingQueue,
)

pytestmark = [pytest.mark.handlers]

HOUR = 60 * 60 * 1000
DAY = 24 * HOUR


async def _run(store, clock, handler, params):
    ctx = await claimed_context(store, clock, handler.action_type, params)
    return await handler.execute(params, ctx)


async def _pending(store, action_type: ActionType):
    return await store.list(ActionFilter(statuses=[ActionStatus.pending], action_types=[action_type]))


# ---- BulkFanListImport ------------------------------------------------------


def _fans(on_sale: bool = True) -> FakeFans:
    return FakeFans(
        events={"ev1": EventSnapshot("ev1", "org1", "Show", on_sale=on_sale, marketing_list_id="list-1")},
        by_event={"ev1": [Fan("u1", "u1@example.com"), Fan("u2", None), Fan("u3", "u3@example.com")]},
    )


@pytest.mark.asyncio
async def test_fan_import_adds_emails_and_repeats(store, clock):
    contacts = FakeContacts(credentials={"org1"})
    h = BulkFanListImportHandler(_fans(), contacts, RecurrenceGuard(store, clock=clock))
    out = await _run(store, clock, h, {"event_id": "ev1", "execution_count": 2})

    assert out.ok and out.result["imported"] == 2
    assert contacts.imports == [("org1", "list-1", ["u1", "u3"])]
    (nxt,) = await _pending(store, ActionType.BULK_FAN_LIST_IMPORT)
    assert nxt.id == out.result["next_action_id"]
    assert nxt.parameters == {"event_id": "ev1", "execution_count": 3}
    assert nxt.correlation_key == fan_import_key("ev1") == "fan_list_import:ev1"
    assert nxt.scheduled_at_ms == T0 + REPEAT_AFTER_MS == T0 + 12 * HOUR


@pytest.mark.asyncio
async def test_fan_import_retry_does_not_duplicate_follow_up(store, clock):
    contacts = FakeContacts(credentials={"org1"})
    h = BulkFanListImportHandler(_fans(), contacts, RecurrenceGuard(store, clock=clock))
    params = {"event_id": "ev1"}
    ctx = await claimed_context(store, clock, h.action_type, params)

    # same claim executed twice, as after a timeout that raced the first run
    first = await h.execute(params, ctx)
    second = await h.execute(params, ctx)

    assert first.result["next_action_id"] == second.result["next_action_id"]
    pending = await _pending(store, ActionType.BULK_FAN_LIST_IMPORT)
    assert [a.id for a in pending] == [first.result["next_action_id"]]


@pytest.mark.asyncio
async def test_fan_import_stops_when_off_sale(store, clock):
    contacts = FakeContacts(credentials={"org1"})
    h = BulkFanListImportHandler(_fans(on_sale=False), contacts, RecurrenceGuard(store, clock=clock))
    out = await _run(store, clock, h, {"event_id": "ev1"})
    assert out.ok and out.result["next_action_id"] is None
    assert await _pending(store, ActionType.BULK_FAN_LIST_IMPORT) == []


@pytest.mark.asyncio
async def test_fan_import_without_credentials_is_skipped(store, clock):
    contacts = FakeContacts()
    h = BulkFanListImportHandler(_fans(), contacts, RecurrenceGuard(store, clock=clock))
    out = await _run(store, clock, h, {"event_id": "ev1"})
    assert out.ok and out.result == {"skipped": "no marketing credentials"}
    assert contacts.imports == []


@pytest.mark.asyncio
async def test_fan_import_unknown_event_is_fatal(store, clock):
    h = BulkFanListImportHandler(FakeFans(), FakeContacts(), RecurrenceGuard(store, clock=clock))
    out = await _run(store, clock, h, {"event_id": "nope"})
    assert out.kind == OutcomeKind.fatal_failure


# ---- ProcessTransferDrip ----------------------------------------------------


def _transfers(**kw) -> FakeTransfers:
    t = TransferSnapshot(
        transfer_id="t1",
        event_name="Show",
        source_email=kw.pop("source_email", "src@example.com"),
        transfer_address=kw.pop("transfer_address", "+15550001111"),
        message_type=kw.pop("message_type", TransferMessageType.phone),
        **kw,
    )
    return FakeTransfers(transfers={"t1": t})


def _drip(side: SourceOrDestination) -> dict:
    return {"transfer_id": "t1", "event_id": "ev1", "source_or_destination": side.value}


@pytest.mark.asyncio
async def test_source_drip_emails_sender(store, clock):
    transfers, comms = _transfers(), RecordingQueue()
    out = await _run(store, clock, ProcessTransferDripHandler(transfers, comms), _drip(SourceOrDestination.source))
    assert out.ok and out.result == {"queued": True, "side": "source"}
    (msg,) = comms.queued
    assert msg.comm_type == CommType.email and msg.destinations == ["src@example.com"]
    assert transfers.drips == [("t1", SourceOrDestination.source)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message_type, address, comm_type",
    [
        (TransferMessageType.phone, "+15550001111", CommType.sms),
        (TransferMessageType.email, "dst@example.com", CommType.email),
    ],
)
async def test_destination_drip_uses_transfer_channel(store, clock, message_type, address, comm_type):
    comms = RecordingQueue()
    h = ProcessTransferDripHandler(_transfers(message_type=message_type, transfer_address=address), comms)
    out = await _run(store, clock, h, _drip(SourceOrDestination.destination))
    assert out.ok
    assert [(m.comm_type, m.destinations) for m in comms.queued] == [(comm_type, [address])]


@pytest.mark.asyncio
async def test_destination_without_address_is_skipped(store, clock):
    transfers, comms = _transfers(transfer_address=None), RecordingQueue()
    out = await _run(store, clock, ProcessTransferDripHandler(transfers, comms), _drip(SourceOrDestination.destination))
    assert out.ok and out.result == {"skipped": "no destination address"}
    assert comms.queued == [] and transfers.drips == []


@pytest.mark.asyncio
async def test_source_without_email_still_logs_drip(store, clock):
    transfers, comms = _transfers(source_email=None), RecordingQueue()
    out = await _run(store, clock, ProcessTransferDripHandler(transfers, comms), _drip(SourceOrDestination.source))
    assert out.ok and out.result["queued"] is False
    assert transfers.drips == [("t1", SourceOrDestination.source)]


@pytest.mark.asyncio
async def test_transfer_no_longer_accepting_drips(store, clock):
    transfers, comms = _transfers(accepts_drips=False), RecordingQueue()
    out = await _run(store, clock, ProcessTransferDripHandler(transfers, comms), _drip(SourceOrDestination.source))
    assert out.ok and "skipped" in out.result
    assert comms.queued == []


# ---- SendAutomaticReportEmails ----------------------------------------------


def _reports() -> FakeReports:
    return FakeReports(
        reports=[
            TicketCountReport("ev1", "Show", subscribers=["a@example.com", "bad@example.com"], counts={"GA": 10}),
            TicketCountReport("ev2", "Other", subscribers=["c@example.com"], counts={"VIP": 2, "GA": 5}),
        ]
    )


@pytest.mark.asyncio
async def test_reports_queue_per_subscriber_and_schedule_next(store, clock):
    comms = RecordingQueue(fail_for={"bad@example.com"})
    h = SendAutomaticReportEmailsHandler(_reports(), comms, RecurrenceGuard(store, clock=clock))
    out = await _run(store, clock, h, {})

    assert out.ok
    assert (out.result["queued"], out.result["failed"]) == (2, 1)
    assert [m.destinations for m in comms.queued] == [["a@example.com"], ["c@example.com"]]
    assert comms.queued[1].body == "Ticket counts for Other:\n  GA: 5\n  VIP: 2"
    nxt = await store.get(out.result["next_action_id"])
    assert nxt.correlation_key == REPORTS_KEY
    # 04:00 Los Angeles the next day
    assert nxt.scheduled_at_ms == T0 + DAY


@pytest.mark.asyncio
async def test_reports_do_not_double_schedule(store, clock):
    h = SendAutomaticReportEmailsHandler(FakeReports(), RecordingQueue(), RecurrenceGuard(store, clock=clock))
    first = await _run(store, clock, h, {})
    second = await _run(store, clock, h, {})
    assert first.result["next_action_id"] == second.result["next_action_id"]
    upcoming = [a for a in await _pending(store, ActionType.SEND_AUTOMATIC_REPORT_EMAILS) if a.correlation_key]
    assert len(upcoming) == 1


# ---- RetargetAbandonedOrders ------------------------------------------------


@pytest.mark.asyncio
async def test_retargeting_marks_carts_and_schedules_next(store, clock):
    carts = FakeCarts(
        carts=[
            AbandonedCart("o1", "u1", "u1@example.com", "Show"),
            AbandonedCart("o2", "u2", "u2@example.com", "Other"),
        ]
    )
    comms = RecordingQueue()
    h = RetargetAbandonedOrdersHandler(carts, comms, RecurrenceGuard(store, clock=clock))
    out = await _run(store, clock, h, {})

    assert out.ok and out.result["retargeted"] == 2
    assert carts.marked == ["o1", "o2"]
    assert [m.destinations for m in comms.queued] == [["u1@example.com"], ["u2@example.com"]]
    nxt = await store.get(out.result["next_action_id"])
    assert nxt.correlation_key == RETARGET_KEY
    # T0 is 04:00 PST; next 10:00 local is the same day
    assert nxt.scheduled_at_ms == T0 + 6 * HOUR

    again = await _run(store, clock, h, {})
    assert again.result["retargeted"] == 0
    assert again.result["next_action_id"] == nxt.id


# ---- UpdateGenres -----------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "target, expected",
    [
        ("artist", ("artist", "x1", "u1")),
        ("event", ("event", "x1", "u1")),
        ("user", ("user", "x1", None)),
    ],
)
async def test_genre_refresh_by_target(store, clock, target, expected):
    genres = FakeGenres()
    out = await _run(store, clock, UpdateGenresHandler(genres), {"user_id": "u1", "target": target, "target_id": "x1"})
    assert out.ok
    assert genres.calls == [expected]


@pytest.mark.asyncio
async def test_genre_unknown_target_is_invalid(store, clock):
    genres = FakeGenres()
    out = await _run(store, clock, UpdateGenresHandler(genres), {"user_id": "u1", "target": "venue", "target_id": "x"})
    assert out.kind == OutcomeKind.fatal_failure
    assert genres.calls == []


# ---- ActionCommunicationQueue -----------------------------------------------


@pytest.mark.asyncio
async def test_queue_defers_messages_as_actions(store):
    q = ActionCommunicationQueue(store, max_attempts=5)
    await q.queue(CommunicationMessage(comm_type=CommType.sms, title="t", destinations=["+1555"]))
    (a,) = await _pending(store, ActionType.SEND_COMMUNICATION)
    assert a.parameters == {"comm_type": "sms", "title": "t", "destinations": ["+1555"]}
    assert a.max_attempts == 5
