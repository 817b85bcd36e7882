from __future__ import annotations


class LighthouseError(Exception):
    """Base error for Lighthouse."""


class InvalidCheckError(LighthouseError):
    """Check definition rejected at write time."""


class InvalidAILevelError(LighthouseError):
    """AI tier level outside 1-3."""


class NotificationError(LighthouseError):
    """Notification delivery failure."""


class EmailNotConfiguredError(NotificationError):
    """No email provider configured for the current environment."""


class EmailDeliveryError(NotificationError):
    """Email provider rejected or failed to send a message."""


class WebhookDeliveryError(NotificationError):
    """Webhook endpoint unreachable or returned an error status."""
