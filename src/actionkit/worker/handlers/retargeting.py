from __future__ import annotations

from functools import partial

from ...ports.communications import CommType, CommunicationMessage, CommunicationQueue
from ...ports.entities import AbandonedCarts
from ...protocol.actions import ActionType, Outcome
from ...runtime.recurrence import REPORTS_TZ, NextRun, RecurrenceGuard, next_daily_run
from ..context import ActionContext
from .base import ActionHandler

CORRELATION_KEY = "retarget_abandoned_orders"

default_next_run: NextRun = partial(next_daily_run, hour=10, tz=REPORTS_TZ)


class RetargetAbandonedOrdersHandler(ActionHandler):
    """One reminder per abandoned cart; carts are marked so they are never retargeted twice."""

    action_type = ActionType.RETARGET_ABANDONED_ORDERS

    def __init__(
        self,
        carts: AbandonedCarts,
        comms: CommunicationQueue,
        guard: RecurrenceGuard,
        *,
        next_run: NextRun = default_next_run,
    ) -> None:
        self.carts = carts
        self.comms = comms
        self.guard = guard
        self.next_run = next_run

    async def run(self, params, ctx: ActionContext) -> Outcome:
        now = ctx.now_ms()
        carts = await self.carts.find_unretargeted(now_ms=now)
        for cart in carts:
            await self.comms.queue(
                CommunicationMessage(
                    comm_type=CommType.email,
                    title=f"Your tickets for {cart.event_name} are still in your cart",
                    body=f"Complete your order {cart.order_id} before the tickets are gone.",
                    destinations=[cart.email],
                    categories=["retargeting"],
                )
            )
            await self.carts.mark_retargeted(cart.order_id, now_ms=now)

        nxt = await self.guard.ensure_scheduled(ActionType.RETARGET_ABANDONED_ORDERS, CORRELATION_KEY, self.next_run)
        return Outcome.success({"retargeted": len(carts), "next_action_id": nxt.id})
