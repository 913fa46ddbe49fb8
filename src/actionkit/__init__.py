from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("actionkit")
except Exception:  # pragma: no cover
    # running from a source checkout without an install
    __version__ = "0.0.0"

from .core.config import DispatcherConfig
from .protocol.actions import ActionStatus, ActionType, Outcome
from .runtime.dispatcher import Dispatcher
from .runtime.event_fanout import DomainEventFanout
from .runtime.metrics import DispatcherMetrics
from .storage.mongo import MongoActionStore
from .worker.registry import ExecutorRegistry, build_registry

__all__ = [
    "ActionStatus",
    "ActionType",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherMetrics",
    "DomainEventFanout",
    "ExecutorRegistry",
    "MongoActionStore",
    "Outcome",
    "__version__",
    "build_registry",
]
