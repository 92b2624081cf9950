from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac
import json
from typing import Any

import requests

from settlement.core.config import settings
from settlement.notifications.senders.base import NotificationSender


def _encode_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


def _sign_payload(secret: str, timestamp: str, body: str) -> str:
    message = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class WebhookSender(NotificationSender):
    channel_type = "webhook"

    def send(
        self,
        *,
        payload: dict[str, Any],
        event_type: str,
        recipient: str | None,
    ) -> None:
        url = settings.NOTIFICATION_WEBHOOK_URL
        if not url:
            raise ValueError("Notification webhook URL not configured")
        body = _encode_payload({"event_type": event_type, "recipient": recipient, "payload": payload})
        headers = {"Content-Type": "application/json"}
        secret = settings.NOTIFICATION_WEBHOOK_SECRET
        if secret:
            timestamp = str(int(datetime.now(timezone.utc).timestamp()))
            headers["X-Timestamp"] = timestamp
            headers["X-Signature"] = _sign_payload(secret, timestamp, body)
        resp = requests.post(
            url,
            data=body,
            headers=headers,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
        if resp.status_code >= 400:
            raise ValueError(f"Webhook failed with status {resp.status_code}")
