# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for actionkit.

Handlers, gateway clients and adapters raise these; the handler base class maps
them onto an `Outcome` and the dispatcher maps outcomes onto record state
(retry with backoff, or dead-letter). The dispatcher itself never looks inside
an exception beyond this hierarchy.
"""

from enum import Enum


class ActionkitError(Exception):
    """Base class for all actionkit errors."""

    ...


class RetryableError(ActionkitError):
    """
    The operation failed due to a transient condition (timeouts, network hiccups,
    gateway temporarily unavailable, store contention). Retried per backoff policy.
    """

    ...


class PermanentError(ActionkitError):
    """
    The operation failed due to a permanent condition (declined charge, permanent
    client error from a webhook endpoint). Retrying would be pointless.
    """

    ...


class ValidationError(PermanentError):
    """Malformed action parameters or enqueue arguments."""

    ...


class UnknownActionType(PermanentError):
    """No handler is registered for the action's type tag."""

    def __init__(self, action_type: str) -> None:
        super().__init__(f"no handler registered for action type {action_type!r}")
        self.action_type = action_type


class StoreUnavailable(RetryableError):
    """The durable action store could not be reached or rejected the operation."""

    ...


class GatewayUnavailable(RetryableError):
    """A payment gateway or outbound integration is temporarily unreachable."""

    ...


class GatewayDeclined(PermanentError):
    """A payment gateway refused the operation (e.g. charge declined)."""

    ...


class RegistryError(ActionkitError):
    """Invalid handler registration (bad tag, duplicate)."""

    ...


class ErrorKind(str, Enum):
    """Cause recorded in a record's ``last_error.kind``."""

    VALIDATION = "validation"
    UNKNOWN_ACTION_TYPE = "unknown_action_type"
    TRANSIENT = "transient"
    FATAL = "fatal"
    TIMEOUT = "timeout"
    STALE = "stale"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Kinds that are never retried, regardless of remaining attempts.
FATAL_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.VALIDATION, ErrorKind.UNKNOWN_ACTION_TYPE, ErrorKind.FATAL, ErrorKind.EXPIRED}
)
