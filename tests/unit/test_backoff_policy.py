"""
Unit tests for the retry backoff policy: exponential growth, bounded
deterministic jitter and the retryability decision.
"""

from __future__ import annotations

import pytest

from actionkit.api.errors import ErrorKind
from actionkit.core.config import DispatcherConfig
from actionkit.runtime.backoff import BackoffPolicy

pytestmark = [pytest.mark.unit]


def test_exponential_without_jitter():
    p = BackoffPolicy(base_ms=1_000, max_ms=300_000, jitter_pct=0.0)
    assert [p.next_delay_ms(n) for n in (1, 2, 3, 4)] == [1_000, 2_000, 4_000, 8_000]


def test_capped_at_max():
    p = BackoffPolicy(base_ms=1_000, max_ms=10_000, jitter_pct=0.2)
    assert p.next_delay_ms(5, jitter_key="a") == 10_000
    assert p.next_delay_ms(50, jitter_key="a") == 10_000


def test_attempt_zero_treated_as_first():
    p = BackoffPolicy(jitter_pct=0.0)
    assert p.next_delay_ms(0) == p.next_delay_ms(1) == 1_000


def test_jitter_is_bounded_and_deterministic():
    p = BackoffPolicy(base_ms=1_000, max_ms=300_000, jitter_pct=0.2)
    for key in ("a", "b", "action-123"):
        d = p.next_delay_ms(1, jitter_key=key)
        assert 1_000 <= d <= 1_200
        assert d == p.next_delay_ms(1, jitter_key=key)


def test_jitter_spreads_across_keys():
    p = BackoffPolicy(base_ms=10_000, max_ms=300_000, jitter_pct=0.5)
    delays = {p.next_delay_ms(2, jitter_key=f"k{i}") for i in range(20)}
    assert len(delays) > 1


@pytest.mark.parametrize("pct", [0.0, 0.2, 1.0])
def test_non_decreasing_in_attempts(pct):
    p = BackoffPolicy(base_ms=500, max_ms=60_000, jitter_pct=pct)
    seq = [p.next_delay_ms(n, jitter_key="x") for n in range(1, 15)]
    assert seq == sorted(seq)
    assert all(500 <= d <= 60_000 for d in seq)


def test_retryable_decision():
    p = BackoffPolicy()
    assert p.is_retryable(ErrorKind.TRANSIENT, 1, 3)
    assert p.is_retryable(ErrorKind.TIMEOUT, 2, 3)
    assert p.is_retryable("stale", 1, 3)
    assert p.is_retryable(None, 1, 3)
    assert not p.is_retryable(ErrorKind.TRANSIENT, 3, 3)
    for kind in (ErrorKind.VALIDATION, ErrorKind.UNKNOWN_ACTION_TYPE, ErrorKind.FATAL, ErrorKind.EXPIRED):
        assert not p.is_retryable(kind, 1, 5)


@pytest.mark.parametrize(
    "kwargs",
    [{"base_ms": 0}, {"base_ms": 2_000, "max_ms": 1_000}, {"jitter_pct": -0.1}, {"jitter_pct": 1.5}],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)


def test_from_config():
    cfg = DispatcherConfig(backoff_base_ms=250, backoff_max_ms=4_000, backoff_jitter_pct=0.1)
    p = BackoffPolicy.from_config(cfg)
    assert (p.base_ms, p.max_ms, p.jitter_pct) == (250, 4_000, 0.1)
