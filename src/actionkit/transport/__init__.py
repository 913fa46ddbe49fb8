# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from .bus import Bus, Consumer, Received
from .kafka_bus import KafkaBus
from .publisher import EventPublisher

__all__ = ["Bus", "Consumer", "EventPublisher", "KafkaBus", "Received"]
