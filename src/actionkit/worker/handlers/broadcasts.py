from __future__ import annotations

from pydantic import BaseModel

from ...api.errors import PermanentError
from ...ports.communications import CommType, CommunicationMessage, CommunicationQueue
from ...ports.entities import Broadcasts, BroadcastStatus, BroadcastType
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext
from .base import ActionHandler

LAST_CALL_MESSAGE = "LAST CALL! The bar is closing soon, grab something now before it's too late!"


class BroadcastParams(BaseModel):
    broadcast_id: str
    event_id: str


class BroadcastPushNotificationHandler(ActionHandler):
    """
    Queues one push per checked-in attendee that has device tokens.

    A cancelled broadcast is a successful no-op. Users without tokens are
    counted in the audience but get nothing queued.
    """

    action_type = ActionType.BROADCAST_PUSH_NOTIFICATION
    Params = BroadcastParams

    def __init__(self, broadcasts: Broadcasts, comms: CommunicationQueue, *, template_id: str | None = None) -> None:
        self.broadcasts = broadcasts
        self.comms = comms
        self.template_id = template_id

    async def run(self, params: BroadcastParams, ctx: ActionContext) -> Outcome:
        broadcast = await self.broadcasts.get_broadcast(params.broadcast_id)
        if broadcast is None:
            raise PermanentError(f"broadcast {params.broadcast_id} not found")
        if broadcast.status == BroadcastStatus.cancelled:
            ctx.log.info("broadcast cancelled; nothing sent", event="broadcast.skip", broadcast_id=broadcast.broadcast_id)
            return Outcome.success({"skipped": "cancelled"})

        await self.broadcasts.mark_in_progress(broadcast.broadcast_id)
        if broadcast.notification_type == BroadcastType.last_call:
            text = LAST_CALL_MESSAGE
        else:
            text = broadcast.message or ""

        audience = await self.broadcasts.checked_in_audience(broadcast.event_id)
        await self.broadcasts.set_sent_count(broadcast.broadcast_id, len(audience))

        queued = 0
        for member in audience:
            if not member.push_tokens:
                continue
            await self.comms.queue(
                CommunicationMessage(
                    comm_type=CommType.push_notification,
                    title=text,
                    destinations=list(member.push_tokens),
                    template_id=self.template_id,
                    template_data=[{"broadcast_id": broadcast.broadcast_id, "event_id": broadcast.event_id}],
                    categories=["broadcast"],
                )
            )
            queued += 1
        ctx.log.info(
            "broadcast queued",
            event="broadcast.queued",
            broadcast_id=broadcast.broadcast_id,
            audience=len(audience),
            queued=queued,
        )
        return Outcome.success({"audience": len(audience), "queued": queued})
