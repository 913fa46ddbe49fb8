# src/actionkit/protocol/messages.py
from __future__ import annotations

"""
actionkit protocol messages
===========================

Wire-level envelopes for the real-time fan-out channels. One topic per
channel; every message is an `Envelope` whose `payload` shape is owned by the
channel (validated on publish when a model is registered for it).

Design principles:
- Pydantic v2 models with `extra="forbid"` to fail fast on unknown fields.
- All timestamps are **epoch milliseconds** (UTC).
- Delivery is fire-and-forget; consumers must tolerate duplicates and gaps.
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .actions import ActionCompletedPayload


class EventChannel(str, Enum):
    """Named fan-out channels."""

    ticket_redemption = "ticket_redemption"
    action_completed = "action_completed"


class TicketRedemption(BaseModel):
    """A ticket was scanned at the door."""

    model_config = ConfigDict(extra="forbid")

    ticket_id: str
    redeemer_id: str
    event_id: str


# Payload schema per channel.
CHANNEL_MODELS: dict[EventChannel, type[BaseModel]] = {
    EventChannel.ticket_redemption: TicketRedemption,
    EventChannel.action_completed: ActionCompletedPayload,
}


class Envelope(BaseModel):
    """Routing metadata plus an opaque payload."""

    model_config = ConfigDict(extra="forbid")

    v: int = 1
    channel: EventChannel
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    ts_ms: int
    payload: dict[str, Any] = Field(default_factory=dict)


def build_envelope(channel: EventChannel | str, payload: dict[str, Any] | BaseModel, *, ts_ms: int) -> Envelope:
    """
    Validate `payload` against the channel's model (if any) and wrap it.
    Raises pydantic.ValidationError / ValueError on a malformed payload or unknown channel.
    """
    ch = EventChannel(channel)
    model = CHANNEL_MODELS.get(ch)
    if isinstance(payload, BaseModel):
        body = payload.model_dump(mode="json")
    else:
        body = dict(payload)
    if model is not None:
        body = model.model_validate(body).model_dump(mode="json")
    return Envelope(channel=ch, ts_ms=ts_ms, payload=body)
