# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Transport abstraction over a message bus.

This module defines:
- `Bus` protocol: lifecycle + send + consumer factory.
- `Consumer` protocol: async-iterable stream of `Received` messages.
- `Received`: parsed envelope + delivery metadata.

Concrete implementations (Kafka) live in their own modules.
"""

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..protocol.messages import Envelope


@dataclass(frozen=True)
class Received:
    """
    A single message fetched from the bus.

    Attributes:
        topic: Source topic name.
        partition: Partition index when the backend has partitions.
        offset: Offset within the partition.
        key: Raw message key.
        headers: Message headers, if any.
        envelope: Parsed `Envelope`.
    """

    topic: str
    partition: int | None
    offset: int | None
    key: bytes | None
    headers: Mapping[str, bytes] | None
    envelope: Envelope


@runtime_checkable
class Consumer(Protocol):
    async def stop(self) -> None: ...
    async def commit(self) -> None: ...
    def __aiter__(self) -> AsyncIterator[Received]: ...


@runtime_checkable
class Bus(Protocol):
    """
    Implementations should provide idempotent `start()`/`stop()` and must be
    safe for concurrent `send()` calls from many coroutines.
    """

    async def start(self) -> None: ...
    async def stop(self) -> None: ...

    async def send(self, topic: str, key: bytes | None, env: Envelope) -> None: ...

    async def new_consumer(self, topics: list[str], group_id: str, *, manual_commit: bool = True) -> Consumer: ...
