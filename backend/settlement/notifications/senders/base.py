from __future__ import annotations

from typing import Any


class NotificationSender:
    channel_type = "base"

    def send(
        self,
        *,
        payload: dict[str, Any],
        event_type: str,
        recipient: str | None,
    ) -> None:
        raise NotImplementedError
