from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.core.config import get_settings
from lighthouse.domain.models import Organization
from lighthouse.domain.plans import PLAN_FREE
from lighthouse.persistence.db import SessionFactory, SessionLocal
from lighthouse.persistence.repos import organizations as orgs_repo
from lighthouse.services.audit import (
    EVENT_TRIAL_CONVERTED,
    EVENT_TRIAL_EXPIRED,
    record_event,
)
from lighthouse.services.entitlements import has_paid_subscription
from lighthouse.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

REASON_WORKER = "trial_expired_worker"
REASON_NO_SUBSCRIPTION = "trial_expired_no_subscription"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TrialSweepSummary:
    scanned: int
    downgraded: int
    converted: int
    errors: int = 0
    failed: bool = False


async def _audit_downgrade(session: AsyncSession, org_id: str, *, reason: str, now: datetime) -> None:
    await record_event(
        session=session,
        org_id=org_id,
        event_type=EVENT_TRIAL_EXPIRED,
        resource_type="organization",
        resource_id=org_id,
        metadata={"reason": reason, "plan": PLAN_FREE},
        occurred_at=now,
        commit=True,
    )


async def expire_trial_if_due(
    session: AsyncSession, org: Organization, *, now: datetime | None = None
) -> bool:
    """Downgrade an org whose trial ended without a paid subscription.

    Applied on the request path before plan-dependent reads. Uses the same
    conditional update as the sweeper, so whichever runs first wins and the
    other is a no-op. Returns True when this call changed the row.
    """
    current = now or _utc_now()
    if not org.is_trialing or org.trial_end_at is None or org.trial_end_at >= current:
        return False
    if has_paid_subscription(org.stripe_subscription_status):
        return False
    changed = await orgs_repo.downgrade_expired_trial(session, org.id, now=current)
    await session.commit()
    if not changed:
        return False
    increment_counter("trials_downgraded")
    logger.info("trial_downgraded org_id=%s reason=%s", org.id, REASON_NO_SUBSCRIPTION)
    await _audit_downgrade(session, org.id, reason=REASON_NO_SUBSCRIPTION, now=current)
    await session.refresh(org)
    return True


async def expire_trials(
    session_factory: SessionFactory | None = None, *, now: datetime | None = None
) -> TrialSweepSummary:
    # Idempotent sweep; every write is guarded by is_trialing so reruns and rivals are safe.
    factory = session_factory or SessionLocal
    current = now or _utc_now()
    async with factory() as session:
        try:
            expired = await orgs_repo.list_expired_trials(session, now=current)
        except SQLAlchemyError:
            logger.exception("trial_sweep_query_failed")
            return TrialSweepSummary(scanned=0, downgraded=0, converted=0, failed=True)

        if expired:
            logger.info("trial_sweep_found count=%s", len(expired))
        downgraded = 0
        converted = 0
        errors = 0
        # Snapshot plain values; a rollback below would expire the ORM rows.
        candidates = [(org.id, org.stripe_subscription_status) for org in expired]
        for org_id, subscription_status in candidates:
            paid = has_paid_subscription(subscription_status)
            try:
                if paid:
                    # Converted orgs keep their plan; only the trial flag is cleared.
                    changed = await orgs_repo.clear_trial_flag(session, org_id)
                else:
                    changed = await orgs_repo.downgrade_expired_trial(session, org_id, now=current)
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                errors += 1
                logger.exception("trial_expire_failed org_id=%s", org_id)
                continue
            if not changed:
                continue
            if paid:
                converted += 1
                logger.info("trial_converted org_id=%s", org_id)
                await record_event(
                    session=session,
                    org_id=org_id,
                    event_type=EVENT_TRIAL_CONVERTED,
                    resource_type="organization",
                    resource_id=org_id,
                    metadata={"subscription_status": subscription_status},
                    occurred_at=current,
                    commit=True,
                )
            else:
                downgraded += 1
                logger.info("trial_downgraded org_id=%s reason=%s", org_id, REASON_WORKER)
                await _audit_downgrade(session, org_id, reason=REASON_WORKER, now=current)

    increment_counter("trials_downgraded", downgraded)
    increment_counter("trials_converted", converted)
    return TrialSweepSummary(
        scanned=len(expired),
        downgraded=downgraded,
        converted=converted,
        errors=errors,
    )


async def run_trial_expiry_loop(
    *,
    session_factory: SessionFactory | None = None,
    interval_s: float | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    # Sweep at startup, then hourly; a failed sweep never stops the loop.
    period = float(interval_s if interval_s is not None else get_settings().trial_sweep_interval_s)
    logger.info("trial_sweeper_started interval_s=%s", period)
    while stop_event is None or not stop_event.is_set():
        try:
            await expire_trials(session_factory)
        except Exception:  # noqa: BLE001 - keep the sweeper alive while surfacing failures in logs.
            logger.exception("trial_sweep_failed")
        if stop_event is None:
            await asyncio.sleep(period)
            continue
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=period)
        except asyncio.TimeoutError:
            pass
    logger.info("trial_sweeper_stopped")
