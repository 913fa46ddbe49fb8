from __future__ import annotations

"""
actionkit.core.types
====================

Narrow aliases and constants shared by the store, clock and hashing helpers.
"""

from typing import Final

Millis = int
TimestampMs = int  # wall-clock epoch timestamp (ms)
MonotonicMs = int  # process-local monotonic time (ms)

# Default digest size used by stable_hash (BLAKE2b).
DEFAULT_BLAKE2_DIGEST_SIZE: Final[int] = 20

# Name of the durable collection holding action records.
DEFAULT_ACTIONS_COLLECTION: Final[str] = "domain_actions"
