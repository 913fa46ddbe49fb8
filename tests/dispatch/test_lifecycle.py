"""
Running dispatcher: worker pool, graceful shutdown, store outages.
These use the system clock; handler sleeps are real.
"""

from __future__ import annotations

import asyncio
import logging
import time

import pytest
import pytest_asyncio

from actionkit.core.time import SystemClock
from actionkit.protocol.actions import ActionStatus, ActionType, Outcome
from actionkit.runtime.dispatcher import Dispatcher
from actionkit.storage.actions import ActionFilter
from actionkit.storage.mongo import MongoActionStore
from actionkit.worker.handlers.base import ActionHandler
from tests.helpers import ScriptedHandler

pytestmark = [pytest.mark.dispatch]


@pytest_asyncio.fixture
async def live_store(db):
    return MongoActionStore(db, clock=SystemClock())


async def _wait_until(pred, *, timeout: float = 3.0, tick: float = 0.01) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await pred():
            return
        await asyncio.sleep(tick)
    raise AssertionError("condition not met before timeout")


async def _all_in(store, status: ActionStatus, n: int) -> bool:
    return len(await store.list(ActionFilter(statuses=[status], limit=1_000))) == n


class _Gauge(ActionHandler):
    action_type = ActionType.SEND_COMMUNICATION

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.active = 0
        self.peak = 0

    async def run(self, params, ctx):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return Outcome.success()


@pytest.mark.asyncio
@pytest.mark.cfg(concurrency=4)
async def test_pool_processes_everything_within_concurrency_bound(live_store, registry, cfg):
    h = _Gauge(0.03)
    registry.register(h)
    for i in range(16):
        await live_store.enqueue(ActionType.SEND_COMMUNICATION, {"i": i})

    d = Dispatcher(live_store, registry, cfg=cfg)
    await d.start()
    try:
        assert d.running
        await _wait_until(lambda: _all_in(live_store, ActionStatus.success, 16))
    finally:
        await d.stop()
    assert not d.running
    assert 1 < h.peak <= 4


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(live_store, registry, cfg):
    d = Dispatcher(live_store, registry, cfg=cfg)
    await d.start()
    await d.start()
    assert len(d._workers) == cfg.concurrency
    await d.stop()
    await d.stop()


@pytest.mark.asyncio
@pytest.mark.cfg(concurrency=1, shutdown_grace_sec=2.0)
async def test_stop_drains_in_flight_work(live_store, registry, cfg):
    h = ScriptedHandler(ActionType.SEND_WEBHOOK, 0.2)
    registry.register(h)
    a = await live_store.enqueue(ActionType.SEND_WEBHOOK, {})
    d = Dispatcher(live_store, registry, cfg=cfg)
    await d.start()
    await asyncio.wait_for(h.started.wait(), timeout=2.0)
    await d.stop()
    got = await live_store.get(a.id)
    assert got.status == ActionStatus.success


@pytest.mark.asyncio
@pytest.mark.cfg(concurrency=1, shutdown_grace_sec=0.1, action_timeout_sec=30.0)
async def test_stop_releases_stragglers(live_store, registry, cfg, caplog):
    h = ScriptedHandler(ActionType.SEND_WEBHOOK, 10.0)
    registry.register(h)
    a = await live_store.enqueue(ActionType.SEND_WEBHOOK, {}, max_attempts=1)
    d = Dispatcher(live_store, registry, cfg=cfg)
    await d.start()
    await asyncio.wait_for(h.started.wait(), timeout=2.0)

    t0 = time.monotonic()
    with caplog.at_level(logging.DEBUG, logger="actionkit"):
        await d.stop()
    assert time.monotonic() - t0 < 2.0

    got = await live_store.get(a.id)
    assert got.status == ActionStatus.pending
    assert got.attempt_count == 0
    assert got.worker_id is None
    assert any(getattr(r, "event", "") == "dispatch.release" for r in caplog.records)


@pytest.mark.asyncio
@pytest.mark.cfg(concurrency=1)
async def test_store_outage_backs_off_and_recovers(live_store, registry, db, cfg, caplog, metrics, metrics_registry):
    registry.register(ScriptedHandler(ActionType.SEND_WEBHOOK))
    a = await live_store.enqueue(ActionType.SEND_WEBHOOK, {})
    db.fail_next(3, ops={"find_one_and_update"})

    d = Dispatcher(live_store, registry, cfg=cfg, metrics=metrics)
    with caplog.at_level(logging.DEBUG, logger="actionkit"):
        await d.start()
        try:
            await _wait_until(lambda: _all_in(live_store, ActionStatus.success, 1))
        finally:
            await d.stop()

    backoffs = [r for r in caplog.records if getattr(r, "event", "") == "dispatch.store_backoff"]
    assert len(backoffs) == 3
    assert metrics_registry.get_sample_value("actionkit_store_backoff_total") == 3
    assert (await live_store.get(a.id)).attempt_count == 1


@pytest.mark.asyncio
@pytest.mark.cfg(concurrency=3)
async def test_two_dispatchers_share_one_store(live_store, registry, db, cfg):
    h = ScriptedHandler(ActionType.SEND_WEBHOOK)
    registry.register(h)
    for i in range(30):
        await live_store.enqueue(ActionType.SEND_WEBHOOK, {"i": i})

    other_store = MongoActionStore(db, clock=SystemClock())
    d1 = Dispatcher(live_store, registry, cfg=cfg)
    d2 = Dispatcher(other_store, registry, cfg=cfg)
    await d1.start()
    await d2.start()
    try:
        await _wait_until(lambda: _all_in(live_store, ActionStatus.success, 30))
    finally:
        await d1.stop()
        await d2.stop()
    # every action executed exactly once
    assert sorted(c["i"] for c in h.calls) == list(range(30))
