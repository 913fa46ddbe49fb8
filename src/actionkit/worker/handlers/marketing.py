from __future__ import annotations

from pydantic import BaseModel, Field

from ...api.errors import PermanentError
from ...ports.entities import FanDirectory, MarketingContacts
from ...protocol.actions import ActionType, Outcome
from ...runtime.recurrence import RecurrenceGuard
from ..context import ActionContext
from .base import ActionHandler

REPEAT_AFTER_MS = 12 * 60 * 60 * 1000


def correlation_key(event_id: str) -> str:
    return f"fan_list_import:{event_id}"


class FanImportParams(BaseModel):
    event_id: str
    execution_count: int = Field(default=0, ge=0)


class BulkFanListImportHandler(ActionHandler):
    """
    Pushes an event's fans (those with an email) into the organization's
    marketing list, then schedules the next import 12h out while the event is on
    sale. The follow-up goes through the recurrence guard under a per-event
    correlation key, so a retried execution finds it instead of adding another.
    """

    action_type = ActionType.BULK_FAN_LIST_IMPORT
    Params = FanImportParams

    def __init__(
        self,
        fans: FanDirectory,
        contacts: MarketingContacts,
        guard: RecurrenceGuard,
        *,
        repeat_after_ms: int = REPEAT_AFTER_MS,
    ) -> None:
        self.fans = fans
        self.contacts = contacts
        self.guard = guard
        self.repeat_after_ms = repeat_after_ms

    async def run(self, params: FanImportParams, ctx: ActionContext) -> Outcome:
        event = await self.fans.get_event(params.event_id)
        if event is None:
            raise PermanentError(f"event {params.event_id} not found")
        ctx.log.info(
            "fan list import starting",
            event="fans.import.start",
            event_id=event.event_id,
            execution_count=params.execution_count,
        )

        if not await self.contacts.has_credentials(event.organization_id):
            ctx.log.info("no marketing credentials", event="fans.import.skip", organization_id=event.organization_id)
            return Outcome.success({"skipped": "no marketing credentials"})

        fans = [f for f in await self.fans.fans(event.event_id) if f.email]
        added = 0
        if fans:
            if event.marketing_list_id is None:
                raise PermanentError(f"event {event.event_id} has no marketing list")
            added = await self.contacts.import_contacts(event.organization_id, event.marketing_list_id, fans)

        next_id = None
        if event.on_sale:
            nxt = await self.guard.ensure_scheduled(
                ActionType.BULK_FAN_LIST_IMPORT,
                correlation_key(event.event_id),
                lambda now: now + self.repeat_after_ms,
                parameters={"event_id": event.event_id, "execution_count": params.execution_count + 1},
            )
            next_id = nxt.id
        else:
            ctx.log.info("event no longer on sale; not rescheduling", event="fans.import.done", event_id=event.event_id)

        return Outcome.success({"imported": added, "next_action_id": next_id})
