# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Kafka-backed implementation of the transport bus using aiokafka.

- JSON (de)serialization via actionkit.core.utils.dumps/loads
- one shared idempotent producer (aiokafka producers are safe for concurrent sends)
- consumer factory with manual commit by default
"""

import logging
from collections.abc import AsyncIterator, Mapping
from typing import cast

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from ..core.config import DispatcherConfig
from ..core.log import get_logger, swallow
from ..core.utils import dumps, loads
from ..protocol.messages import Envelope
from .bus import Received


class _KafkaConsumer:
    """Adapter over AIOKafkaConsumer yielding `Received`; undecodable records are skipped."""

    def __init__(self, inner: AIOKafkaConsumer, *, log) -> None:
        self._c = inner
        self._log = log

    async def stop(self) -> None:
        with swallow(
            logger=self._log, code="bus.kafka.consumer.stop", msg="consumer stop failed", level=logging.WARNING
        ):
            await self._c.stop()

    async def commit(self) -> None:
        with swallow(logger=self._log, code="bus.kafka.consumer.commit", msg="commit failed", level=logging.WARNING):
            await self._c.commit()

    def __aiter__(self) -> AsyncIterator[Received]:
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[Received]:
        async for rec in self._c:
            try:
                env = Envelope.model_validate(cast(Mapping[str, object], rec.value))
            except Exception:
                self._log.warning("failed to decode envelope", exc_info=True, topic=rec.topic)
                continue
            headers = None
            if getattr(rec, "headers", None):
                headers = {k: v for (k, v) in rec.headers if isinstance(k, str)}
            yield Received(
                topic=rec.topic,
                partition=getattr(rec, "partition", None),
                offset=getattr(rec, "offset", None),
                key=getattr(rec, "key", None),
                headers=headers,
                envelope=env,
            )


class KafkaBus:
    def __init__(self, bootstrap: str) -> None:
        self.bootstrap = bootstrap
        self._producer: AIOKafkaProducer | None = None
        self._consumers: list[_KafkaConsumer] = []
        self.log = get_logger("transport.kafka")

    @classmethod
    def from_config(cls, cfg: DispatcherConfig) -> KafkaBus:
        return cls(cfg.kafka_bootstrap)

    # ---- lifecycle

    async def start(self) -> None:
        if self._producer is not None:
            return
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap,
            value_serializer=dumps,
            enable_idempotence=True,
        )
        await self._producer.start()

    async def stop(self) -> None:
        for c in list(self._consumers):
            await c.stop()
        self._consumers.clear()
        if self._producer:
            with swallow(
                logger=self.log, code="bus.kafka.producer.stop", msg="producer stop failed", level=logging.WARNING
            ):
                await self._producer.stop()
        self._producer = None

    # ---- consumer factory

    async def new_consumer(self, topics: list[str], group_id: str, *, manual_commit: bool = True) -> _KafkaConsumer:
        c = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.bootstrap,
            group_id=group_id,
            value_deserializer=loads,
            enable_auto_commit=not manual_commit,
            auto_offset_reset="latest",
        )
        await c.start()
        wrapper = _KafkaConsumer(c, log=self.log)
        self._consumers.append(wrapper)
        return wrapper

    # ---- send

    async def send(self, topic: str, key: bytes | None, env: Envelope) -> None:
        if self._producer is None:
            raise RuntimeError("KafkaBus producer is not initialized; call start() first")
        await self._producer.send_and_wait(topic, env.model_dump(mode="json"), key=key)
