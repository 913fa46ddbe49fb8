# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""Built-in implementations of handler ports."""

from .communication_queue import ActionCommunicationQueue
from .http_webhook import HttpWebhookAdapter, sign_payload

__all__ = ["ActionCommunicationQueue", "HttpWebhookAdapter", "sign_payload"]
