# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from ..protocol.actions import Outcome


@runtime_checkable
class WebhookAdapter(Protocol):
    """
    Outbound webhook integration. `initialize` receives the per-action adapter
    config; `send` reports delivery as an `Outcome` (transient vs fatal decided
    by the adapter, which knows the wire semantics).
    """

    def initialize(self, config: dict[str, Any]) -> None: ...
    async def send(self, urls: list[str], payload: dict[str, Any]) -> Outcome: ...


# Fresh adapter per execution: initialize() mutates adapter state.
WebhookAdapterFactory = Callable[[], WebhookAdapter]
