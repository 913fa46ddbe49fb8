from __future__ import annotations

from collections.abc import Mapping

from ...api.errors import PermanentError
from ...ports.communications import CommType, CommunicationMessage, CommunicationSender
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext
from .base import ActionHandler


class SendCommunicationHandler(ActionHandler):
    """Delivers one queued message through the sender registered for its channel."""

    action_type = ActionType.SEND_COMMUNICATION
    Params = CommunicationMessage

    def __init__(self, senders: Mapping[CommType, CommunicationSender], *, block_external_comms: bool = False) -> None:
        self.senders = dict(senders)
        self.block_external_comms = block_external_comms

    async def run(self, params: CommunicationMessage, ctx: ActionContext) -> Outcome:
        if self.block_external_comms:
            ctx.log.info(
                "external communications blocked",
                event="comms.blocked",
                comm_type=params.comm_type.value,
                destinations=len(params.destinations),
            )
            return Outcome.success({"blocked": True})

        sender = self.senders.get(params.comm_type)
        if sender is None:
            raise PermanentError(f"no sender configured for {params.comm_type.value}")
        await sender.send(params)
        return Outcome.success({"comm_type": params.comm_type.value, "sent": len(params.destinations)})
