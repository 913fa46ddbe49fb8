from .inmemory_db import InMemDB
from .kafka import BROKER, AIOKafkaConsumerMock, AIOKafkaProducerMock, reset_broker
from .scripted import ScriptedHandler, always

__all__ = [
    "BROKER",
    "AIOKafkaConsumerMock",
    "AIOKafkaProducerMock",
    "InMemDB",
    "ScriptedHandler",
    "always",
    "reset_broker",
]
