# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Low-cardinality Prometheus metrics for dispatch, fan-out and publishing.

Labels stay conservative (action_type, result, channel) and never carry IDs.
`DispatcherMetrics.create()` registers on the process-wide default registry;
pass a fresh `CollectorRegistry` to keep several sets apart (tests).
"""

from dataclasses import dataclass
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

_default: DispatcherMetrics | None = None


@dataclass
class DispatcherMetrics:
    claimed_total: Any
    completed_total: Any
    timeouts_total: Any
    store_backoff_total: Any
    stale_reclaimed_total: Any
    expired_total: Any
    inflight: Any
    execution_ms: Any
    published_total: Any
    fanout_events_total: Any

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> DispatcherMetrics:
        reg = registry if registry is not None else REGISTRY
        return cls(
            claimed_total=Counter(
                "actionkit_actions_claimed_total", "Actions claimed", ["action_type"], registry=reg
            ),
            # result: success | retry | failed | fenced
            completed_total=Counter(
                "actionkit_actions_completed_total", "Action completions", ["action_type", "result"], registry=reg
            ),
            timeouts_total=Counter(
                "actionkit_actions_timeouts_total", "Executions cut off by the action timeout", ["action_type"],
                registry=reg,
            ),
            store_backoff_total=Counter(
                "actionkit_store_backoff_total", "Worker cycles backed off on store errors", registry=reg
            ),
            # result: pending | failed
            stale_reclaimed_total=Counter(
                "actionkit_stale_reclaimed_total", "Stale claims reclaimed by the sweep", ["action_type", "result"],
                registry=reg,
            ),
            expired_total=Counter("actionkit_actions_expired_total", "Pending actions expired", registry=reg),
            inflight=Gauge("actionkit_actions_inflight", "Actions currently executing", registry=reg),
            execution_ms=Histogram(
                "actionkit_action_execution_ms",
                "Handler execution time (ms)",
                ["action_type"],
                buckets=(5, 25, 100, 250, 1000, 5000, 15000, 60000),
                registry=reg,
            ),
            # result: ok | invalid | failed
            published_total=Counter(
                "actionkit_events_published_total", "Fan-out publishes", ["channel", "result"], registry=reg
            ),
            # result: queued | filtered
            fanout_events_total=Counter(
                "actionkit_domain_events_fanned_out_total", "Domain events processed per subscriber", ["result"],
                registry=reg,
            ),
        )


def default_metrics() -> DispatcherMetrics:
    """Shared set on the default registry, created on first use."""
    global _default
    if _default is None:
        _default = DispatcherMetrics.create()
    return _default
