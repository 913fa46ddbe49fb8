# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Retry backoff policy.

Pure and deterministic: the same inputs always give the same delay. Jitter is
derived from a hash of ``(jitter_key, attempt)`` rather than an RNG, so retries
of different actions spread out while a single action's schedule stays
reproducible in tests.
"""

from dataclasses import dataclass

from ..api.errors import FATAL_KINDS, ErrorKind
from ..core.utils import unit_fraction


@dataclass(frozen=True)
class BackoffPolicy:
    base_ms: int = 1_000
    max_ms: int = 300_000
    jitter_pct: float = 0.2

    def __post_init__(self) -> None:
        if self.base_ms <= 0:
            raise ValueError("base_ms must be positive")
        if self.max_ms < self.base_ms:
            raise ValueError("max_ms must be >= base_ms")
        # <= 1 keeps next_delay_ms non-decreasing in the attempt number
        if not 0.0 <= self.jitter_pct <= 1.0:
            raise ValueError("jitter_pct must be within [0, 1]")

    def next_delay_ms(self, attempt_count: int, *, jitter_key: str = "") -> int:
        """
        Delay before the next attempt after `attempt_count` attempts.

        ``base * 2**(n-1)`` plus up to ``jitter_pct`` of that, clamped to
        ``[base_ms, max_ms]``.
        """
        n = max(1, int(attempt_count))
        raw = self.base_ms * (2 ** (n - 1))
        if raw >= self.max_ms:
            return self.max_ms
        jitter = int(raw * self.jitter_pct * unit_fraction([jitter_key, n]))
        return max(self.base_ms, min(self.max_ms, raw + jitter))

    def is_retryable(self, error_kind: ErrorKind | str | None, attempt_count: int, max_attempts: int) -> bool:
        if attempt_count >= max_attempts:
            return False
        if error_kind is None:
            return True
        return ErrorKind(error_kind) not in FATAL_KINDS

    @classmethod
    def from_config(cls, cfg) -> BackoffPolicy:
        return cls(base_ms=cfg.backoff_base_ms, max_ms=cfg.backoff_max_ms, jitter_pct=cfg.backoff_jitter_pct)
