# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Action execution: handler contract, per-execution context and the registry.
"""

from .context import ActionContext
from .handlers.base import ActionHandler, NoParams
from .registry import ExecutorRegistry, build_registry

__all__ = ["ActionContext", "ActionHandler", "ExecutorRegistry", "NoParams", "build_registry"]
