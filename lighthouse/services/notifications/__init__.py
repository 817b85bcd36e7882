from lighthouse.services.notifications.dispatcher import (
    ChannelOutcome,
    DispatchResult,
    NotificationDispatcher,
)
from lighthouse.services.notifications.mail import (
    AlertEmail,
    EmailSender,
    SendGridTransport,
    SmtpTransport,
    build_alert_email,
    select_email_transport,
)
from lighthouse.services.notifications.queue import enqueue_alert_notification
from lighthouse.services.notifications.webhook import WebhookSender, build_webhook_payload

__all__ = [
    "AlertEmail",
    "ChannelOutcome",
    "DispatchResult",
    "EmailSender",
    "NotificationDispatcher",
    "SendGridTransport",
    "SmtpTransport",
    "WebhookSender",
    "build_alert_email",
    "build_webhook_payload",
    "enqueue_alert_notification",
    "select_email_transport",
]
