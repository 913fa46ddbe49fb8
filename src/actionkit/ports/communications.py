# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class CommType(str, Enum):
    email = "email"
    email_template = "email_template"
    sms = "sms"
    push_notification = "push_notification"


class CommunicationMessage(BaseModel):
    """One outbound email/SMS/push, addressed to one or more destinations."""

    model_config = ConfigDict(extra="forbid")

    comm_type: CommType
    title: str
    body: str | None = None
    source: str | None = None
    destinations: list[str] = Field(min_length=1)
    template_id: str | None = None
    template_data: list[dict[str, Any]] | None = None
    categories: list[str] | None = None


@runtime_checkable
class CommunicationSender(Protocol):
    """Concrete channel client (email provider, SMS gateway, push service)."""

    async def send(self, message: CommunicationMessage) -> None: ...


@runtime_checkable
class CommunicationQueue(Protocol):
    """Deferred send: handlers queue messages instead of sending inline."""

    async def queue(self, message: CommunicationMessage) -> None: ...
