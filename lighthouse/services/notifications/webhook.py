from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Any

import httpx

from lighthouse.core.config import get_settings
from lighthouse.core.errors import WebhookDeliveryError
from lighthouse.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


def build_webhook_payload(
    *,
    check_id: str,
    check_name: str,
    alert_type: str,
    status_code: int,
    error_message: str | None,
    created_at: datetime,
) -> dict[str, Any]:
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    payload: dict[str, Any] = {
        "check_id": check_id,
        "check_name": check_name,
        "event": alert_type,
        "status_code": status_code,
        "timestamp": created_at.astimezone(timezone.utc).isoformat(),
    }
    if error_message:
        payload["error_message"] = error_message
    return payload


class WebhookSender:
    def __init__(
        self,
        *,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_s = float(
            timeout_s if timeout_s is not None else get_settings().notify_webhook_timeout_s
        )
        self._transport = transport

    async def send(self, url: str, payload: dict[str, Any]) -> int:
        # Any status >= 400 counts as a failed delivery.
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            record_external_call(
                integration="webhook",
                latency_ms=(time.perf_counter() - started) * 1000,
                success=False,
            )
            raise WebhookDeliveryError(f"webhook request failed: {exc}") from exc
        ok = response.status_code < 400
        record_external_call(
            integration="webhook",
            latency_ms=(time.perf_counter() - started) * 1000,
            success=ok,
        )
        if not ok:
            raise WebhookDeliveryError(f"webhook returned status {response.status_code}")
        logger.info("alert_webhook_sent status=%s", response.status_code)
        return response.status_code
