from __future__ import annotations

"""
actionkit.protocol.actions
==========================

Closed vocabulary shared by producers, the store, handlers and the dispatcher:

- `ActionType`   - every kind of deferred work the system knows how to run.
- `ActionStatus` - persisted lifecycle state of an action record.
- `Outcome`      - the only thing a handler reports back to the dispatcher.

The dispatcher interprets an `Outcome` purely by its `kind`; `result` and
`detail` are opaque and persisted verbatim for audit.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..api.errors import ErrorKind


class ActionType(str, Enum):
    """Closed set of action kinds. Values are the persisted type tags."""

    PROCESS_PAYMENT_IPN = "ProcessPaymentIPN"
    SEND_COMMUNICATION = "SendCommunication"
    SEND_WEBHOOK = "SendWebhook"
    BULK_FAN_LIST_IMPORT = "BulkFanListImport"
    PROCESS_TRANSFER_DRIP = "ProcessTransferDrip"
    SEND_AUTOMATIC_REPORT_EMAILS = "SendAutomaticReportEmails"
    RETARGET_ABANDONED_ORDERS = "RetargetAbandonedOrders"
    UPDATE_GENRES = "UpdateGenres"
    BROADCAST_PUSH_NOTIFICATION = "BroadcastPushNotification"


class ActionStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    success = "success"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (ActionStatus.success, ActionStatus.failed, ActionStatus.cancelled)


class OutcomeKind(str, Enum):
    success = "success"
    transient_failure = "transient_failure"
    fatal_failure = "fatal_failure"


class Outcome(BaseModel):
    """Result of one handler execution."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: OutcomeKind
    result: dict[str, Any] | None = None
    detail: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def success(cls, result: dict[str, Any] | None = None) -> Outcome:
        return cls(kind=OutcomeKind.success, result=result)

    @classmethod
    def transient(cls, detail: str, *, error_kind: ErrorKind = ErrorKind.TRANSIENT) -> Outcome:
        return cls(kind=OutcomeKind.transient_failure, detail=detail, error_kind=error_kind)

    @classmethod
    def fatal(cls, detail: str, *, error_kind: ErrorKind = ErrorKind.FATAL) -> Outcome:
        return cls(kind=OutcomeKind.fatal_failure, detail=detail, error_kind=error_kind)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.success

    def last_error(self) -> dict[str, Any] | None:
        """Persistable ``{kind, message}`` for failures; None on success."""
        if self.ok:
            return None
        kind = self.error_kind or (
            ErrorKind.FATAL if self.kind == OutcomeKind.fatal_failure else ErrorKind.TRANSIENT
        )
        return {"kind": kind.value, "message": self.detail or ""}


class ActionCompletedPayload(BaseModel):
    """Body of the `action_completed` notification."""

    model_config = ConfigDict(extra="forbid")

    action_id: str
    action_type: str
    attempt_count: int = Field(ge=1)
    correlation_key: str | None = None
    result: dict[str, Any] | None = None
