from __future__ import annotations

from pydantic import BaseModel

from ...api.errors import PermanentError
from ...ports.communications import CommType, CommunicationMessage, CommunicationQueue
from ...ports.entities import SourceOrDestination, TransferDirectory, TransferMessageType, TransferSnapshot
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext
from .base import ActionHandler


class TransferDripParams(BaseModel):
    transfer_id: str
    event_id: str
    source_or_destination: SourceOrDestination


def _reminder(
    transfer: TransferSnapshot, side: SourceOrDestination, comm_type: CommType, to: str
) -> CommunicationMessage:
    if side == SourceOrDestination.source:
        title = f"Your transferred tickets for {transfer.event_name} haven't been claimed yet"
    else:
        title = f"You have tickets waiting for {transfer.event_name}"
    return CommunicationMessage(
        comm_type=comm_type,
        title=title,
        body=title,
        destinations=[to],
        categories=["transfer_drip"],
    )


class ProcessTransferDripHandler(ActionHandler):
    """Reminds one side of a pending ticket transfer and records the drip."""

    action_type = ActionType.PROCESS_TRANSFER_DRIP
    Params = TransferDripParams

    def __init__(self, transfers: TransferDirectory, comms: CommunicationQueue) -> None:
        self.transfers = transfers
        self.comms = comms

    async def run(self, params: TransferDripParams, ctx: ActionContext) -> Outcome:
        transfer = await self.transfers.get_transfer(params.transfer_id)
        if transfer is None:
            raise PermanentError(f"transfer {params.transfer_id} not found")
        if not transfer.accepts_drips:
            return Outcome.success({"skipped": "transfer no longer accepts drips"})

        side = params.source_or_destination
        msg: CommunicationMessage | None = None
        if side == SourceOrDestination.source:
            if transfer.source_email:
                msg = _reminder(transfer, side, CommType.email, transfer.source_email)
        elif transfer.transfer_address and transfer.message_type is not None:
            comm_type = CommType.sms if transfer.message_type == TransferMessageType.phone else CommType.email
            msg = _reminder(transfer, side, comm_type, transfer.transfer_address)
        else:
            # no address to remind; nothing to log either
            return Outcome.success({"skipped": "no destination address"})

        if msg is not None:
            await self.comms.queue(msg)
        await self.transfers.log_drip(transfer.transfer_id, side)
        return Outcome.success({"queued": msg is not None, "side": side.value})
