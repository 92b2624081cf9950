from settlement.notifications.senders.base import NotificationSender
from settlement.notifications.senders.email import EmailSender
from settlement.notifications.senders.webhook import WebhookSender


_SENDER_REGISTRY: dict[str, NotificationSender] = {
    "webhook": WebhookSender(),
    "email": EmailSender(),
}


def get_sender(channel_type: str) -> NotificationSender | None:
    if not channel_type:
        return None
    return _SENDER_REGISTRY.get(str(channel_type).strip().lower())
