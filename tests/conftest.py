# conftest.py
from __future__ import annotations

import os
import uuid

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from actionkit.core.config import DispatcherConfig
from actionkit.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from actionkit.core.time import ManualClock
from actionkit.runtime.backoff import BackoffPolicy
from actionkit.runtime.dispatcher import Dispatcher
from actionkit.runtime.metrics import DispatcherMetrics
from actionkit.storage.mongo import MongoActionStore
from actionkit.worker.registry import ExecutorRegistry
from tests.helpers import InMemDB, reset_broker

# 2026-03-02T12:00:00Z
T0 = 1_772_452_800_000


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit actionkit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_actionkit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    # human-readable by default unless the env already attached a handler
    if os.getenv("ACTIONKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.fixture(autouse=True)
def _fresh_broker():
    reset_broker()
    yield
    reset_broker()


# Fast timings; individual tests override via @pytest.mark.cfg(...)
_FAST = {
    "concurrency": 2,
    "poll_interval_sec": 0.01,
    "action_timeout_sec": 1.0,
    "stale_after_sec": 60.0,
    "sweep_interval_sec": 0.05,
    "shutdown_grace_sec": 0.5,
    "store_backoff_sec": 0.01,
    "backoff_jitter_pct": 0.0,
}


@pytest.fixture
def cfg(request) -> DispatcherConfig:
    m = request.node.get_closest_marker("cfg")
    overrides = {**_FAST, **(m.kwargs if m else {})}
    return DispatcherConfig(**overrides)


@pytest.fixture
def tlog():
    return get_logger("test")


@pytest.fixture
def db() -> InMemDB:
    """Single injection point for the database."""
    return InMemDB()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start_ms=T0)


@pytest_asyncio.fixture
async def store(db, clock) -> MongoActionStore:
    s = MongoActionStore(db, clock=clock)
    await s.ensure_indexes()
    return s


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry) -> DispatcherMetrics:
    """Per-test metric set; read values back through `metrics_registry`."""
    return DispatcherMetrics.create(metrics_registry)


@pytest.fixture
def registry() -> ExecutorRegistry:
    return ExecutorRegistry()


@pytest.fixture
def make_dispatcher(store, registry, cfg, clock, metrics):
    """Dispatcher on the shared store/clock; not started."""

    def _make(**kw) -> Dispatcher:
        kw.setdefault("cfg", cfg)
        kw.setdefault("clock", clock)
        kw.setdefault("backoff", BackoffPolicy.from_config(kw["cfg"]))
        kw.setdefault("metrics", metrics)
        return Dispatcher(store, registry, **kw)

    return _make
