# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from ..ports.communications import CommunicationMessage
from ..protocol.actions import ActionType
from ..storage.actions import ActionStore


class ActionCommunicationQueue:
    """CommunicationQueue that defers each message as a SendCommunication action."""

    def __init__(self, store: ActionStore, *, max_attempts: int | None = None) -> None:
        self.store = store
        self.max_attempts = max_attempts

    async def queue(self, message: CommunicationMessage) -> None:
        await self.store.enqueue(
            ActionType.SEND_COMMUNICATION,
            message.model_dump(mode="json", exclude_none=True),
            max_attempts=self.max_attempts,
        )
