# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Generic JSON-over-HTTP webhook adapter.

Each URL receives one POST of the payload. Results fold into one `Outcome`:
any permanent rejection makes the whole delivery fatal, otherwise any
transient problem makes it transient (the retry re-posts to every URL, so
receivers must be idempotent).

Classification:
    2xx                        -> delivered
    408, 429, 5xx, network     -> transient
    other 4xx / 3xx            -> fatal
"""

import hashlib
import hmac
import json
from typing import Any

import httpx

from ..core.log import get_logger
from ..protocol.actions import Outcome

_RETRYABLE_STATUS = frozenset({408, 425, 429})


def sign_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class HttpWebhookAdapter:
    """
    Config keys accepted by `initialize`:
      - site_id / api_key  basic auth credentials
      - secret             HMAC-SHA256 signature in ``X-Webhook-Signature``
      - headers            extra request headers
      - timeout_sec        per-request timeout (default 10s)
      - environment        stamped into the payload when present
    """

    def __init__(self, *, client: httpx.AsyncClient | None = None, user_agent: str = "actionkit-webhooks/1") -> None:
        self._client = client
        self.user_agent = user_agent
        self.auth: tuple[str, str] | None = None
        self.secret: str | None = None
        self.headers: dict[str, str] = {}
        self.timeout_sec: float = 10.0
        self.environment: str | None = None
        self.log = get_logger("webhooks.http")

    def initialize(self, config: dict[str, Any]) -> None:
        if config.get("site_id") and config.get("api_key"):
            self.auth = (str(config["site_id"]), str(config["api_key"]))
        self.secret = config.get("secret") or None
        self.headers = {str(k): str(v) for k, v in (config.get("headers") or {}).items()}
        self.timeout_sec = float(config.get("timeout_sec", self.timeout_sec))
        self.environment = config.get("environment") or None

    async def send(self, urls: list[str], payload: dict[str, Any]) -> Outcome:
        if not urls:
            return Outcome.fatal("no webhook urls supplied")
        body_obj = dict(payload)
        if self.environment:
            body_obj.setdefault("environment", self.environment)
        body = json.dumps(body_obj, separators=(",", ":"), sort_keys=True).encode("utf-8")

        headers = {"Content-Type": "application/json", "User-Agent": self.user_agent, **self.headers}
        if self.secret:
            headers["X-Webhook-Signature"] = sign_payload(body, self.secret)

        transient: list[str] = []
        fatal: list[str] = []
        if self._client is not None:
            for url in urls:
                self._classify(url, await self._post(self._client, url, body, headers), transient, fatal)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_sec)) as client:
                for url in urls:
                    self._classify(url, await self._post(client, url, body, headers), transient, fatal)

        if fatal:
            return Outcome.fatal("; ".join(fatal))
        if transient:
            return Outcome.transient("; ".join(transient))
        return Outcome.success({"delivered": len(urls)})

    async def _post(
        self, client: httpx.AsyncClient, url: str, body: bytes, headers: dict[str, str]
    ) -> httpx.Response | Exception:
        try:
            return await client.post(url, content=body, headers=headers, auth=self.auth or httpx.USE_CLIENT_DEFAULT)
        except httpx.HTTPError as e:
            return e

    def _classify(self, url: str, res: httpx.Response | Exception, transient: list[str], fatal: list[str]) -> None:
        if isinstance(res, Exception):
            self.log.warning("webhook request error", event="webhook.error", url=url, error=str(res))
            transient.append(f"{url}: {type(res).__name__}")
            return
        code = res.status_code
        self.log.debug("webhook response", event="webhook.response", url=url, status=code)
        if 200 <= code < 300:
            return
        if code in _RETRYABLE_STATUS or code >= 500:
            transient.append(f"{url}: HTTP {code}")
        else:
            fatal.append(f"{url}: HTTP {code}")
