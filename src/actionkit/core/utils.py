from __future__ import annotations

"""
actionkit.core.utils
====================

Low-level helpers with **no external dependencies**:
- Stable hashing for JSON-like payloads.
- Compact JSON (de)serialization helpers.
- Deterministic fractions for hash-derived jitter.
- Action id generation.
"""

import json
import uuid
from hashlib import blake2b
from typing import Any

from .types import DEFAULT_BLAKE2_DIGEST_SIZE


def stable_hash(payload: Any, *, digest_size: int = DEFAULT_BLAKE2_DIGEST_SIZE) -> str:
    """
    Compute a stable hash of an arbitrary JSON-like payload.
    - Uses UTF-8 JSON with sorted keys and no whitespace for deterministic encoding.
    - BLAKE2b with configurable digest size (default 20 bytes -> 40 hex chars).

    NOTE: This is **not** a cryptographic signature; use it for idempotency keys, jitter seeds, etc.
    """
    data = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return blake2b(data, digest_size=digest_size).hexdigest()


def unit_fraction(payload: Any) -> float:
    """
    Map a JSON-like payload to a float in [0.0, 1.0) deterministically.

    Used where randomness must be reproducible from inputs (e.g. backoff jitter).
    """
    h = stable_hash(payload, digest_size=8)
    return int(h, 16) / float(1 << 64)


def dumps(x: Any) -> bytes:
    """
    Compact JSON dump to UTF-8 bytes (ensure_ascii=False, no spaces).
    Prefer this for message payloads sent to Kafka.
    """
    return json.dumps(x, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def loads(b: bytes) -> Any:
    """Inverse of dumps(): parse UTF-8 JSON bytes back to Python objects."""
    return json.loads(b.decode("utf-8"))


def _check_keys(value: Any, path: str = "$") -> None:
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"non-string key {k!r} at {path}")
            _check_keys(v, f"{path}.{k}")
    elif isinstance(value, (list, tuple)):
        for i, v in enumerate(value):
            _check_keys(v, f"{path}[{i}]")


def ensure_json(payload: Any) -> Any:
    """
    Return a deep, JSON-normalized copy of `payload`.

    Raises TypeError/ValueError when the payload is not JSON-serializable, so
    callers can reject it before it reaches the store. Non-string dict keys are
    rejected too: json would silently stringify them.
    """
    _check_keys(payload)
    return json.loads(json.dumps(payload, ensure_ascii=False, allow_nan=False))


def new_action_id() -> str:
    """Unique, URL-safe action identifier (uuid4 hex)."""
    return uuid.uuid4().hex
