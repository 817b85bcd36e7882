from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
import logging
import smtplib
import time
from typing import Protocol, Sequence

import httpx

from lighthouse.core.config import Settings, get_settings
from lighthouse.core.errors import EmailDeliveryError, EmailNotConfiguredError
from lighthouse.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertEmail:
    subject: str
    body: str


def format_alert_time(value: datetime) -> str:
    # RFC 1123 in UTC, e.g. "Mon, 02 Jan 2006 15:04:05 UTC".
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S UTC")


def build_alert_email(
    *,
    alert_type: str,
    check_name: str,
    check_url: str,
    status_code: int,
    error_message: str | None,
    created_at: datetime,
) -> AlertEmail:
    subject = f"[{alert_type}] {check_name} is {alert_type}"
    body = f"{check_name} is {alert_type}"
    if status_code > 0:
        body = f"{body} ({status_code})"
    if error_message:
        body = f"{body}\n\nError: {error_message}"
    body = f"{body}\n\nURL: {check_url}\nTime: {format_alert_time(created_at)}"
    return AlertEmail(subject=subject, body=body)


class EmailTransport(Protocol):
    name: str

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None: ...


class SmtpTransport:
    name = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        from_address: str,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        timeout_s: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._from_address = from_address
        self._user = user
        self._password = password
        self._use_tls = use_tls
        self._timeout_s = timeout_s

    def _send_one(self, recipient: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self._from_address
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout_s) as server:
            if self._use_tls:
                server.starttls()
            # Local catchers such as Mailpit accept unauthenticated mail.
            if self._user and self._password:
                server.login(self._user, self._password)
            server.send_message(message)

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        for recipient in recipients:
            started = time.perf_counter()
            try:
                # smtplib blocks; keep it off the event loop.
                await asyncio.to_thread(self._send_one, recipient, subject, body)
            except (smtplib.SMTPException, OSError) as exc:
                record_external_call(
                    integration="smtp",
                    latency_ms=(time.perf_counter() - started) * 1000,
                    success=False,
                )
                raise EmailDeliveryError(f"smtp error: {exc}") from exc
            record_external_call(
                integration="smtp",
                latency_ms=(time.perf_counter() - started) * 1000,
                success=True,
            )
            logger.info("alert_email_sent transport=smtp recipient=%s", recipient)


class SendGridTransport:
    name = "sendgrid"

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str,
        from_name: str,
        api_url: str = "https://api.sendgrid.com/v3/mail/send",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_address = from_address
        self._from_name = from_name
        self._api_url = api_url
        self._timeout_s = timeout_s
        self._transport = transport

    def _payload(self, recipient: str, subject: str, body: str) -> dict:
        return {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self._from_address, "name": self._from_name},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
            # One message per recipient so addresses are not disclosed to each other.
            for recipient in recipients:
                started = time.perf_counter()
                try:
                    response = await client.post(
                        self._api_url,
                        json=self._payload(recipient, subject, body),
                        headers=headers,
                    )
                except httpx.HTTPError as exc:
                    record_external_call(
                        integration="sendgrid",
                        latency_ms=(time.perf_counter() - started) * 1000,
                        success=False,
                    )
                    raise EmailDeliveryError(f"sendgrid error: {exc}") from exc
                ok = response.status_code < 400
                record_external_call(
                    integration="sendgrid",
                    latency_ms=(time.perf_counter() - started) * 1000,
                    success=ok,
                )
                if not ok:
                    raise EmailDeliveryError(
                        f"sendgrid returned status {response.status_code}: {response.text[:512]}"
                    )
                logger.info("alert_email_sent transport=sendgrid recipient=%s", recipient)


def select_email_transport(settings: Settings | None = None) -> EmailTransport:
    """Pick the email transport for the current environment.

    Production always uses SendGrid. Elsewhere SMTP wins when a host is set,
    then SendGrid when a key is set.
    """
    settings = settings or get_settings()
    if settings.environment == "production":
        if not settings.sendgrid_api_key:
            raise EmailNotConfiguredError("SendGrid API key required in production")
        return _sendgrid(settings)
    if settings.smtp_host:
        return SmtpTransport(
            host=settings.smtp_host,
            port=int(settings.smtp_port),
            from_address=settings.smtp_from,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=bool(settings.smtp_use_tls),
        )
    if settings.sendgrid_api_key:
        return _sendgrid(settings)
    raise EmailNotConfiguredError(
        "no email provider configured (set SMTP_HOST for dev or SENDGRID_API_KEY)"
    )


def _sendgrid(settings: Settings) -> SendGridTransport:
    return SendGridTransport(
        api_key=settings.sendgrid_api_key or "",
        from_address=settings.smtp_from,
        from_name=settings.sendgrid_from_name,
        api_url=settings.sendgrid_api_url,
    )


class EmailSender:
    # Resolves the transport lazily so an unconfigured provider only fails email delivery.
    def __init__(self, transport: EmailTransport | None = None) -> None:
        self._transport = transport

    async def send(self, recipients: Sequence[str], message: AlertEmail) -> None:
        transport = self._transport or select_email_transport()
        await transport.send(list(recipients), message.subject, message.body)
