from __future__ import annotations

"""
actionkit.core.config
=====================

Strongly-typed configuration for the dispatch subsystem.
- No external deps; optional JSON file loading.
- Derives millisecond fields from seconds to avoid repeated conversions.
- Provides small env overrides for container deployments.

If a config file path is not provided or not found, sane defaults are used.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .log import get_logger, swallow

_log = get_logger("config")

_TRUTHY = ("1", "true", "yes", "on")


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path or not path.exists():
        return {}
    with swallow(logger=_log, code="config.load", msg="unreadable config file ignored", extra={"path": str(path)}):
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            return data
    return {}


def _env_int(name: str) -> int | None:
    val = os.getenv(name)
    return int(val) if val else None


def _env_float(name: str) -> float | None:
    val = os.getenv(name)
    return float(val) if val else None


# ---------------------------------------------------------------------------


@dataclass
class DispatcherConfig:
    """Dispatcher, backoff and pub/sub settings with derived millisecond fields."""

    # ---- Workers
    concurrency: int = 4
    worker_id_prefix: str = "actions"

    # ---- Timings (seconds)
    poll_interval_sec: float = 1.0
    action_timeout_sec: float = 55.0
    stale_after_sec: float = 300.0
    sweep_interval_sec: float = 30.0
    shutdown_grace_sec: float = 10.0
    store_backoff_sec: float = 5.0

    # ---- Retry policy
    default_max_attempts: int = 5
    backoff_base_ms: int = 1_000
    backoff_max_ms: int = 300_000
    backoff_jitter_pct: float = 0.2

    # ---- Pub/sub
    kafka_bootstrap: str = "kafka:9092"
    topic_event_fmt: str = "events.{channel}.v1"
    publish_max_in_flight: int = 64
    notify_on_success: bool = False

    # ---- Outbound communications
    block_external_comms: bool = False

    # ---- Derived (ms)
    poll_interval_ms: int = 0
    action_timeout_ms: int = 0
    stale_after_ms: int = 0
    sweep_interval_ms: int = 0
    shutdown_grace_ms: int = 0
    store_backoff_ms: int = 0

    # ---- Methods ------------------------------------------------------------

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        if self.backoff_base_ms <= 0 or self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError("backoff requires 0 < backoff_base_ms <= backoff_max_ms")
        if not 0.0 <= self.backoff_jitter_pct <= 1.0:
            raise ValueError("backoff_jitter_pct must be within [0, 1]")
        if self.publish_max_in_flight < 1:
            raise ValueError("publish_max_in_flight must be >= 1")
        if "{channel}" not in self.topic_event_fmt:
            raise ValueError("topic_event_fmt must contain '{channel}'")
        for name in ("poll_interval_sec", "action_timeout_sec", "stale_after_sec", "sweep_interval_sec"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.stale_after_sec <= self.action_timeout_sec:
            raise ValueError("stale_after_sec must exceed action_timeout_sec")
        self._derive_ms()

    def _derive_ms(self) -> None:
        """Populate millisecond fields derived from second-based values."""
        self.poll_interval_ms = int(self.poll_interval_sec * 1000)
        self.action_timeout_ms = int(self.action_timeout_sec * 1000)
        self.stale_after_ms = int(self.stale_after_sec * 1000)
        self.sweep_interval_ms = int(self.sweep_interval_sec * 1000)
        self.shutdown_grace_ms = int(self.shutdown_grace_sec * 1000)
        self.store_backoff_ms = int(self.store_backoff_sec * 1000)

    # Loader
    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> DispatcherConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - ACTIONKIT_CONCURRENCY
          - ACTIONKIT_POLL_INTERVAL_SEC
          - KAFKA_BOOTSTRAP_SERVERS
          - ACTIONKIT_BLOCK_EXTERNAL_COMMS
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        concurrency = _env_int("ACTIONKIT_CONCURRENCY")
        if concurrency is not None:
            data["concurrency"] = concurrency
        poll = _env_float("ACTIONKIT_POLL_INTERVAL_SEC")
        if poll is not None:
            data["poll_interval_sec"] = poll
        if os.getenv("KAFKA_BOOTSTRAP_SERVERS"):
            data["kafka_bootstrap"] = os.environ["KAFKA_BOOTSTRAP_SERVERS"]
        if os.getenv("ACTIONKIT_BLOCK_EXTERNAL_COMMS"):
            data["block_external_comms"] = os.environ["ACTIONKIT_BLOCK_EXTERNAL_COMMS"].lower() in _TRUTHY

        if overrides:
            data.update(overrides)
        return cls(**data)
