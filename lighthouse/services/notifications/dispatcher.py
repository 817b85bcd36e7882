from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.domain.models import Alert, Check
from lighthouse.persistence.db import SessionFactory, SessionLocal
from lighthouse.persistence.repos.alerts import get_alert
from lighthouse.persistence.repos.checks import get_check
from lighthouse.persistence.repos.notification_settings import get_notification_settings
from lighthouse.services.notifications.mail import EmailSender, build_alert_email
from lighthouse.services.notifications.webhook import WebhookSender, build_webhook_payload
from lighthouse.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_WEBHOOK = "webhook"


@dataclass(frozen=True)
class ChannelOutcome:
    channel: str
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    outcomes: list[ChannelOutcome] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def attempted(self) -> bool:
        return bool(self.outcomes)

    @property
    def failed(self) -> bool:
        # Failed only when every configured channel failed; one configured channel failing counts.
        return self.attempted and all(not outcome.ok for outcome in self.outcomes)


class NotificationDispatcher:
    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        email_sender: EmailSender | None = None,
        webhook_sender: WebhookSender | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._email_sender = email_sender or EmailSender()
        self._webhook_sender = webhook_sender or WebhookSender()

    async def send_all(self, session: AsyncSession, alert: Alert, check: Check) -> DispatchResult:
        settings = await get_notification_settings(session, check.org_id)
        if settings is None:
            logger.info("alert_notification_skipped org_id=%s reason=no_settings", check.org_id)
            return DispatchResult(skipped_reason="no_settings")

        outcomes: list[ChannelOutcome] = []
        # Channels run independently; one failing never stops the other.
        recipients = [r for r in (settings.email_recipients or []) if r]
        if recipients:
            message = build_alert_email(
                alert_type=alert.alert_type,
                check_name=check.name,
                check_url=check.url,
                status_code=alert.status_code,
                error_message=alert.error_message,
                created_at=alert.created_at,
            )
            try:
                await self._email_sender.send(recipients, message)
                outcomes.append(ChannelOutcome(CHANNEL_EMAIL, True))
            except Exception as exc:  # noqa: BLE001 - one channel failing must not stop the other.
                logger.warning(
                    "alert_email_failed check_id=%s alert_id=%s error=%s", check.id, alert.id, exc, exc_info=exc
                )
                outcomes.append(ChannelOutcome(CHANNEL_EMAIL, False, str(exc)))

        if settings.webhook_url:
            payload = build_webhook_payload(
                check_id=check.id,
                check_name=check.name,
                alert_type=alert.alert_type,
                status_code=alert.status_code,
                error_message=alert.error_message,
                created_at=alert.created_at,
            )
            try:
                await self._webhook_sender.send(settings.webhook_url, payload)
                outcomes.append(ChannelOutcome(CHANNEL_WEBHOOK, True))
            except Exception as exc:  # noqa: BLE001 - one channel failing must not stop the other.
                logger.warning(
                    "alert_webhook_failed check_id=%s alert_id=%s error=%s", check.id, alert.id, exc, exc_info=exc
                )
                outcomes.append(ChannelOutcome(CHANNEL_WEBHOOK, False, str(exc)))

        result = DispatchResult(outcomes=outcomes)
        if result.failed:
            increment_counter("notifications_failed")
            logger.error("alert_notification_failed alert_id=%s channels=%s", alert.id, len(outcomes))
        elif result.attempted:
            increment_counter("notifications_sent")
        return result

    async def deliver_alert(self, alert_id: int) -> DispatchResult:
        # Entry point for detached and queued delivery of an already-stored alert.
        async with self._session_factory() as session:
            alert = await get_alert(session, alert_id)
            if alert is None:
                logger.warning("alert_notification_skipped alert_id=%s reason=missing_alert", alert_id)
                return DispatchResult(skipped_reason="missing_alert")
            check = await get_check(session, alert.check_id)
            if check is None:
                logger.warning("alert_notification_skipped alert_id=%s reason=missing_check", alert_id)
                return DispatchResult(skipped_reason="missing_check")
            return await self.send_all(session, alert, check)
