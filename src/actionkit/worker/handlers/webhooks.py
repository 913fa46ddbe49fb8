from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ...api.errors import ErrorKind
from ...ports.webhooks import WebhookAdapterFactory
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext
from .base import ActionHandler


class WebhookParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    adapter: str
    adapter_config: dict[str, Any] = Field(default_factory=dict)
    urls: list[str] = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class SendWebhookHandler(ActionHandler):
    action_type = ActionType.SEND_WEBHOOK
    Params = WebhookParams

    def __init__(self, adapters: Mapping[str, WebhookAdapterFactory]) -> None:
        self.adapters = dict(adapters)

    async def run(self, params: WebhookParams, ctx: ActionContext) -> Outcome:
        factory = self.adapters.get(params.adapter)
        if factory is None:
            return Outcome.fatal(f"unknown webhook adapter {params.adapter!r}", error_kind=ErrorKind.VALIDATION)
        adapter = factory()
        adapter.initialize(params.adapter_config)
        outcome = await adapter.send(params.urls, params.payload)
        ctx.log.debug("webhook sent", event="webhook.sent", adapter=params.adapter, outcome=outcome.kind.value)
        return outcome
