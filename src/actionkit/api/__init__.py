# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
actionkit public extension API.

Re-exports the stable contracts for writing action handlers and the adapters
they depend on.
"""

from .errors import (
    FATAL_KINDS,
    ActionkitError,
    ErrorKind,
    GatewayDeclined,
    GatewayUnavailable,
    PermanentError,
    RegistryError,
    RetryableError,
    StoreUnavailable,
    UnknownActionType,
    ValidationError,
)

__all__ = [
    "FATAL_KINDS",
    "ActionkitError",
    "ErrorKind",
    "GatewayDeclined",
    "GatewayUnavailable",
    "PermanentError",
    "RegistryError",
    "RetryableError",
    "StoreUnavailable",
    "UnknownActionType",
    "ValidationError",
]
