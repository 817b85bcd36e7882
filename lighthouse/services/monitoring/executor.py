from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import time
from typing import Awaitable, Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError

from lighthouse.core.config import get_settings
from lighthouse.persistence.db import SessionFactory, SessionLocal
from lighthouse.persistence.repos import checks as checks_repo
from lighthouse.persistence.repos.checks import DueCheck
from lighthouse.services.background import BackgroundTaskPool
from lighthouse.services.monitoring.alerting import (
    AlertType,
    record_transition,
    should_trigger_alert,
)
from lighthouse.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

AlertNotifier = Callable[[int], Awaitable[object]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProbeOutcome:
    # status_code is 0 when no HTTP response was received.
    status_code: int
    response_time_ms: int
    success: bool
    error_message: str | None = None


@dataclass(frozen=True)
class ExecutionReport:
    check_id: str
    outcome: ProbeOutcome
    stored: bool
    alert_id: int | None = None
    alert_type: AlertType | None = None
    suppressed: bool = False


class CheckExecutor:
    """Run one HTTP probe for a due check and record its consequences.

    Per execution the order is fixed: the result row and the check's status
    fields are written together, then the alert transition is evaluated, then
    any notification is handed to the background pool without being awaited.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        notifier: AlertNotifier | None = None,
        notification_pool: BackgroundTaskPool | None = None,
        timeout_s: float | None = None,
        max_redirects: int | None = None,
        suppression_window: timedelta | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory or SessionLocal
        self._transport = transport
        self._notifier = notifier
        self._notification_pool = notification_pool
        self._timeout_s = float(timeout_s if timeout_s is not None else settings.check_timeout_s)
        self._max_redirects = int(max_redirects if max_redirects is not None else settings.check_max_redirects)
        self._suppression_window = suppression_window or timedelta(
            seconds=int(settings.alert_suppression_window_s)
        )
        self._time_provider = time_provider or _utc_now

    async def _get_with_redirects(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        # Follow at most max_redirects hops; past that the redirect response itself is the answer.
        response = await client.send(client.build_request("GET", url), stream=True)
        await response.aclose()
        hops = 0
        while response.next_request is not None and hops < self._max_redirects:
            hops += 1
            response = await client.send(response.next_request, stream=True)
            await response.aclose()
        return response

    async def probe(self, url: str) -> ProbeOutcome:
        started = time.perf_counter()
        status_code = 0
        error_message: str | None = None
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                # Bound the whole redirect chain, not just each hop.
                response = await asyncio.wait_for(
                    self._get_with_redirects(client, url), timeout=self._timeout_s
                )
            status_code = response.status_code
        except asyncio.TimeoutError:
            error_message = f"request timed out after {self._timeout_s:g}s"
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error_message = str(exc) or exc.__class__.__name__
        latency_ms = int((time.perf_counter() - started) * 1000)
        success = 200 <= status_code <= 299
        record_external_call(integration="probe", latency_ms=float(latency_ms), success=success)
        return ProbeOutcome(
            status_code=status_code,
            response_time_ms=latency_ms,
            success=success,
            error_message=error_message,
        )

    async def execute(self, check: DueCheck) -> ExecutionReport:
        outcome = await self.probe(check.url)
        now = self._time_provider()
        increment_counter("checks_probed")
        if outcome.error_message:
            increment_counter("probe_errors")
            logger.info("check_probe_failed check_id=%s error=%s", check.id, outcome.error_message)
        else:
            logger.debug(
                "check_probe_completed check_id=%s status=%s latency_ms=%s",
                check.id,
                outcome.status_code,
                outcome.response_time_ms,
            )

        async with self._session_factory() as session:
            try:
                await checks_repo.insert_check_result(
                    session,
                    check_id=check.id,
                    status_code=outcome.status_code,
                    response_time_ms=outcome.response_time_ms,
                    success=outcome.success,
                    error_message=outcome.error_message,
                    created_at=now,
                )
                await checks_repo.update_check_status(
                    session, check.id, status_code=outcome.status_code, checked_at=now
                )
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception("check_result_store_failed check_id=%s", check.id)
                return ExecutionReport(check_id=check.id, outcome=outcome, stored=False)

            decision = should_trigger_alert(
                check.last_status,
                outcome.status_code,
                check.last_alert_at,
                now=now,
                suppression_window=self._suppression_window,
            )
            if decision.suppressed:
                increment_counter("alerts_suppressed")
                logger.info("check_alert_suppressed check_id=%s status=%s", check.id, outcome.status_code)
            if not decision.fire or decision.alert_type is None:
                return ExecutionReport(
                    check_id=check.id,
                    outcome=outcome,
                    stored=True,
                    suppressed=decision.suppressed,
                )

            try:
                alert_id = await record_transition(
                    session,
                    org_id=check.org_id,
                    check_id=check.id,
                    alert_type=decision.alert_type,
                    status_code=outcome.status_code,
                    error_message=outcome.error_message,
                    now=now,
                )
            except SQLAlchemyError:
                await session.rollback()
                logger.exception("check_alert_store_failed check_id=%s", check.id)
                return ExecutionReport(check_id=check.id, outcome=outcome, stored=True)

        increment_counter("alerts_fired")
        logger.info(
            "check_alert_fired check_id=%s alert_id=%s type=%s status=%s",
            check.id,
            alert_id,
            decision.alert_type.value,
            outcome.status_code,
        )
        self._dispatch_notification(alert_id)
        return ExecutionReport(
            check_id=check.id,
            outcome=outcome,
            stored=True,
            alert_id=alert_id,
            alert_type=decision.alert_type,
        )

    def _dispatch_notification(self, alert_id: int) -> None:
        # Best-effort: delivery runs detached, is never retried, and its failure never reaches this execution.
        if self._notifier is None:
            return
        notifier = self._notifier
        if self._notification_pool is None:
            logger.warning("alert_notification_dropped alert_id=%s reason=no_pool", alert_id)
            return
        self._notification_pool.submit(lambda: notifier(alert_id), label=f"alert:{alert_id}")
