# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Durable action storage: the DB-agnostic contract and its Mongo implementation.
"""

from .actions import ActionFilter, ActionStore, DomainAction, RetryAt
from .mongo import MongoActionStore

__all__ = [
    "ActionFilter",
    "ActionStore",
    "DomainAction",
    "MongoActionStore",
    "RetryAt",
]
