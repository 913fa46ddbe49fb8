from __future__ import annotations

from ...ports.communications import CommType, CommunicationMessage, CommunicationQueue
from ...ports.entities import ReportSource, TicketCountReport
from ...protocol.actions import ActionType, Outcome
from ...runtime.recurrence import RecurrenceGuard, next_automatic_report_run
from ..context import ActionContext
from .base import ActionHandler

CORRELATION_KEY = "automatic_report_emails"


def _render(report: TicketCountReport) -> str:
    lines = [f"Ticket counts for {report.event_name}:"]
    lines += [f"  {name}: {count}" for name, count in sorted(report.counts.items())]
    return "\n".join(lines)


class SendAutomaticReportEmailsHandler(ActionHandler):
    """
    Queues the ticket-count report to every subscriber, then makes sure the
    next run is scheduled. A failing subscriber is logged and skipped; it does
    not fail the action (the rest of the batch has already been queued).
    """

    action_type = ActionType.SEND_AUTOMATIC_REPORT_EMAILS

    def __init__(self, reports: ReportSource, comms: CommunicationQueue, guard: RecurrenceGuard) -> None:
        self.reports = reports
        self.comms = comms
        self.guard = guard

    async def run(self, params, ctx: ActionContext) -> Outcome:
        queued = failed = 0
        for report in await self.reports.ticket_count_reports():
            body = _render(report)
            for email in report.subscribers:
                msg = CommunicationMessage(
                    comm_type=CommType.email,
                    title=f"Ticket counts: {report.event_name}",
                    body=body,
                    destinations=[email],
                    categories=["reports"],
                )
                try:
                    await self.comms.queue(msg)
                    queued += 1
                except Exception as e:
                    failed += 1
                    ctx.log.error(
                        "failed to queue report for subscriber",
                        event="reports.subscriber_failed",
                        event_id=report.event_id,
                        email=email,
                        error=str(e),
                    )

        nxt = await self.guard.ensure_scheduled(
            ActionType.SEND_AUTOMATIC_REPORT_EMAILS, CORRELATION_KEY, next_automatic_report_run
        )
        return Outcome.success({"queued": queued, "failed": failed, "next_action_id": nxt.id})
