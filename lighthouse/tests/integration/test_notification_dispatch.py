from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from lighthouse.core.config import get_settings
from lighthouse.core.errors import EmailNotConfiguredError, WebhookDeliveryError
from lighthouse.domain.models import Alert
from lighthouse.persistence.db import SessionLocal
from lighthouse.services.notifications.dispatcher import NotificationDispatcher
from lighthouse.services.notifications.mail import (
    EmailSender,
    SendGridTransport,
    SmtpTransport,
    build_alert_email,
    select_email_transport,
)
from lighthouse.services.notifications.webhook import WebhookSender
from lighthouse.tests.utils.fakes import (
    NOW,
    FakeEmailSender,
    RecordingTransport,
    seed_check,
    seed_notification_settings,
    seed_org,
)


async def _seed_alert(check_id: str, *, alert_type: str = "DOWN", status_code: int = 503) -> int:
    async with SessionLocal() as session:
        alert = Alert(
            org_id="org-1",
            check_id=check_id,
            alert_type=alert_type,
            status_code=status_code,
            error_message=None,
            created_at=NOW,
        )
        session.add(alert)
        await session.commit()
        return alert.id


def _webhook(status_code: int) -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(status_code))


def _dispatcher(*, email: FakeEmailSender, webhook: RecordingTransport) -> NotificationDispatcher:
    return NotificationDispatcher(email_sender=email, webhook_sender=WebhookSender(transport=webhook))


def test_build_alert_email() -> None:
    message = build_alert_email(
        alert_type="DOWN",
        check_name="API",
        check_url="https://api.test",
        status_code=503,
        error_message="bad gateway",
        created_at=datetime(2026, 1, 2, 15, 4, 5, tzinfo=timezone.utc),
    )
    assert message.subject == "[DOWN] API is DOWN"
    assert message.body == (
        "API is DOWN (503)\n\nError: bad gateway\n\n"
        "URL: https://api.test\nTime: Fri, 02 Jan 2026 15:04:05 UTC"
    )


def test_build_alert_email_omits_zero_status_and_empty_error() -> None:
    message = build_alert_email(
        alert_type="RECOVERY",
        check_name="API",
        check_url="https://api.test",
        status_code=0,
        error_message=None,
        created_at=NOW,
    )
    assert message.body.startswith("API is RECOVERY\n\nURL: https://api.test")


@pytest.mark.asyncio
async def test_missing_settings_is_silent_noop() -> None:
    await seed_org()
    check = await seed_check()
    alert_id = await _seed_alert(check.id)
    email = FakeEmailSender()
    result = await _dispatcher(email=email, webhook=_webhook(200)).deliver_alert(alert_id)
    assert result.skipped_reason == "no_settings"
    assert result.failed is False
    assert email.sent == []


@pytest.mark.asyncio
async def test_both_channels_delivered() -> None:
    await seed_org()
    check = await seed_check(name="Checkout")
    await seed_notification_settings(recipients=["a@x.test", "b@x.test"], webhook_url="https://hooks.test/in")
    alert_id = await _seed_alert(check.id)
    email = FakeEmailSender()
    webhook = _webhook(202)

    result = await _dispatcher(email=email, webhook=webhook).deliver_alert(alert_id)

    assert result.failed is False
    assert [o.ok for o in result.outcomes] == [True, True]
    recipients, message = email.sent[0]
    assert recipients == ["a@x.test", "b@x.test"]
    assert message.subject == "[DOWN] Checkout is DOWN"
    body = json.loads(webhook.requests[0].content)
    assert body["check_id"] == check.id
    assert body["check_name"] == "Checkout"
    assert body["event"] == "DOWN"
    assert body["status_code"] == 503
    assert body["timestamp"].startswith("2026-03-15T12:00:00")
    assert "error_message" not in body


@pytest.mark.asyncio
async def test_one_channel_failing_is_not_overall_failure() -> None:
    await seed_org()
    check = await seed_check()
    await seed_notification_settings(recipients=["a@x.test"], webhook_url="https://hooks.test/in")
    alert_id = await _seed_alert(check.id)

    result = await _dispatcher(email=FakeEmailSender(fail=True), webhook=_webhook(200)).deliver_alert(alert_id)

    assert result.failed is False
    assert [(o.channel, o.ok) for o in result.outcomes] == [("email", False), ("webhook", True)]


@pytest.mark.asyncio
async def test_all_channels_failing_is_overall_failure() -> None:
    await seed_org()
    check = await seed_check()
    await seed_notification_settings(recipients=["a@x.test"], webhook_url="https://hooks.test/in")
    alert_id = await _seed_alert(check.id)

    result = await _dispatcher(email=FakeEmailSender(fail=True), webhook=_webhook(500)).deliver_alert(alert_id)

    assert result.failed is True
    assert "webhook returned status 500" in result.outcomes[1].error


@pytest.mark.asyncio
async def test_single_configured_channel_failure_is_overall_failure() -> None:
    await seed_org()
    check = await seed_check()
    await seed_notification_settings(webhook_url="https://hooks.test/in")
    alert_id = await _seed_alert(check.id)
    email = FakeEmailSender()

    result = await _dispatcher(email=email, webhook=_webhook(404)).deliver_alert(alert_id)

    assert result.failed is True
    assert [o.channel for o in result.outcomes] == ["webhook"]
    assert email.sent == []


@pytest.mark.asyncio
async def test_webhook_transport_error_is_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    sender = WebhookSender(transport=httpx.MockTransport(handler))
    with pytest.raises(WebhookDeliveryError) as excinfo:
        await sender.send("https://hooks.test/in", {"event": "DOWN"})
    assert "webhook request failed" in str(excinfo.value)


@pytest.mark.asyncio
async def test_sendgrid_sends_one_message_per_recipient() -> None:
    transport = RecordingTransport(lambda request: httpx.Response(202))
    sendgrid = SendGridTransport(
        api_key="sg-key",
        from_address="alerts@lighthouse.test",
        from_name="Light House",
        transport=transport,
    )
    await sendgrid.send(["a@x.test", "b@x.test"], "[DOWN] API is DOWN", "body")
    assert len(transport.requests) == 2
    first = json.loads(transport.requests[0].content)
    assert first["personalizations"] == [{"to": [{"email": "a@x.test"}]}]
    assert transport.requests[0].headers["Authorization"] == "Bearer sg-key"


def test_email_transport_selection(monkeypatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
    get_settings.cache_clear()
    with pytest.raises(EmailNotConfiguredError):
        select_email_transport()

    monkeypatch.setenv("SMTP_HOST", "localhost")
    monkeypatch.setenv("SENDGRID_API_KEY", "sg-key")
    get_settings.cache_clear()
    assert isinstance(select_email_transport(), SmtpTransport)

    monkeypatch.setenv("ENVIRONMENT", "production")
    get_settings.cache_clear()
    assert isinstance(select_email_transport(), SendGridTransport)

    monkeypatch.delenv("SENDGRID_API_KEY")
    get_settings.cache_clear()
    with pytest.raises(EmailNotConfiguredError):
        select_email_transport()


@pytest.mark.asyncio
async def test_unexpected_email_error_does_not_block_webhook() -> None:
    await seed_org()
    check = await seed_check()
    # A header-injecting recipient makes the message builder itself raise ValueError.
    await seed_notification_settings(recipients=["ops\n@example.com"], webhook_url="https://hooks.test/in")
    alert_id = await _seed_alert(check.id)
    webhook = _webhook(200)
    dispatcher = NotificationDispatcher(
        email_sender=EmailSender(
            transport=SmtpTransport(host="smtp.invalid", port=2525, from_address="alerts@lighthouse.test")
        ),
        webhook_sender=WebhookSender(transport=webhook),
    )

    result = await dispatcher.deliver_alert(alert_id)

    assert len(webhook.requests) == 1
    assert [(o.channel, o.ok) for o in result.outcomes] == [("email", False), ("webhook", True)]
    assert result.failed is False


@pytest.mark.asyncio
async def test_unexpected_webhook_error_is_recorded_as_channel_failure() -> None:
    class _ExplodingWebhookSender:
        async def send(self, url: str, payload: dict) -> int:
            raise RuntimeError("sender bug")

    await seed_org()
    check = await seed_check()
    await seed_notification_settings(recipients=["a@x.test"], webhook_url="https://hooks.test/in")
    alert_id = await _seed_alert(check.id)
    email = FakeEmailSender()
    dispatcher = NotificationDispatcher(email_sender=email, webhook_sender=_ExplodingWebhookSender())

    result = await dispatcher.deliver_alert(alert_id)

    assert len(email.sent) == 1
    assert [(o.channel, o.ok, o.error) for o in result.outcomes] == [
        ("email", True, None),
        ("webhook", False, "sender bug"),
    ]
