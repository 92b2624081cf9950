from __future__ import annotations

import logging
from typing import Any

from settlement.notifications.senders.base import NotificationSender


logger = logging.getLogger(__name__)


class EmailSender(NotificationSender):
    channel_type = "email"

    def send(
        self,
        *,
        payload: dict[str, Any],
        event_type: str,
        recipient: str | None,
    ) -> None:
        # Mail delivery is handled by the hosting platform; we only log here.
        logger.info(
            "Email stub: event_type=%s provider=%s invoice=%s payload=%s",
            event_type,
            recipient,
            payload.get("invoice_number"),
            payload,
        )
