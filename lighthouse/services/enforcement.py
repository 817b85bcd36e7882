from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.core.errors import InvalidCheckError
from lighthouse.domain.models import Check, Organization
from lighthouse.persistence.repos import checks as checks_repo
from lighthouse.persistence.repos import usage as usage_repo
from lighthouse.services.entitlements import (
    RESOURCE_API_KEYS,
    RESOURCE_CHECKS,
    RESOURCE_LOG_VOLUME,
    RESOURCE_STATUS_PAGES,
    LogIngestDecision,
    can_create_api_key,
    can_create_check,
    can_create_status_page,
    can_ingest_logs,
    can_use_ai,
    can_use_check_interval,
    effective_plan,
)
from lighthouse.services.usage import get_usage_accounting


logger = logging.getLogger(__name__)

UPGRADE_URL = "/settings?tab=billing"
LIMIT_TYPE_CHECK_INTERVAL = "check_interval"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def entitlement_error(message: str, limit_type: str, **extra: Any) -> HTTPException:
    # Use a stable 403 payload so clients can render an upgrade prompt.
    detail: dict[str, Any] = {
        "code": "ENTITLEMENT_LIMIT",
        "message": message,
        "limit_type": limit_type,
        "upgrade_url": UPGRADE_URL,
    }
    detail.update(extra)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def _usage_unavailable_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "USAGE_UNAVAILABLE", "message": "Failed to check usage limits"},
    )


def require_check_interval(org: Organization, interval_seconds: int, *, now: datetime | None = None) -> None:
    plan = effective_plan(org, now=now)
    decision = can_use_check_interval(plan, interval_seconds)
    if not decision.allowed:
        raise entitlement_error(decision.message, LIMIT_TYPE_CHECK_INTERVAL)


async def register_check(
    session: AsyncSession,
    org: Organization,
    *,
    name: str,
    url: str,
    interval_seconds: int,
    service_name: str | None = None,
    environment: str | None = None,
    region: str | None = None,
    tags: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Check:
    # Gate on plan capacity and interval before any write, then persist.
    plan = effective_plan(org, now=now or _utc_now())
    current = await usage_repo.count_checks(session, org.id)
    decision = can_create_check(plan, current)
    if not decision.allowed:
        raise entitlement_error(decision.message, RESOURCE_CHECKS)
    require_check_interval(org, interval_seconds, now=now)
    try:
        check = await checks_repo.create_check(
            session,
            org_id=org.id,
            name=name,
            url=url,
            interval_seconds=interval_seconds,
            service_name=service_name,
            environment=environment,
            region=region,
            tags=tags,
        )
    except InvalidCheckError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_CHECK", "message": str(exc)},
        ) from exc
    await session.commit()
    logger.info("check_registered org_id=%s check_id=%s plan=%s", org.id, check.id, plan)
    return check


async def require_api_key_capacity(session: AsyncSession, org: Organization) -> None:
    plan = effective_plan(org)
    current = await usage_repo.count_api_keys(session, org.id)
    decision = can_create_api_key(plan, current)
    if not decision.allowed:
        raise entitlement_error(decision.message, RESOURCE_API_KEYS)


async def require_status_page_capacity(session: AsyncSession, org: Organization) -> None:
    plan = effective_plan(org)
    current = await usage_repo.count_status_pages(session, org.id)
    decision = can_create_status_page(plan, current)
    if not decision.allowed:
        raise entitlement_error(decision.message, RESOURCE_STATUS_PAGES)


async def require_ai_access(session: AsyncSession, org: Organization, level: int) -> None:
    # Invalid levels are caller errors, not plan denials.
    if level not in (1, 2, 3):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_AI_LEVEL", "message": "Invalid AI level"},
        )
    plan = effective_plan(org)
    calls = await get_usage_accounting().get_ai_calls(session, org.id, level)
    decision = can_use_ai(plan, level, calls)
    if not decision.allowed:
        raise entitlement_error(decision.message, f"ai_level{level}")


async def admit_log_ingestion(
    session: AsyncSession, org: Organization, incoming_bytes: int
) -> LogIngestDecision:
    """Decide whether a log batch of ``incoming_bytes`` may be ingested.

    Hard rejects raise 403. Allowed decisions are returned so the caller can
    surface ``decision.message`` as an ``X-Usage-Warning`` header. A failure
    to read current volume fails closed with 503.
    """
    plan = effective_plan(org)
    try:
        current = await get_usage_accounting().get_current_log_volume(session, org.id)
    except SQLAlchemyError as exc:
        logger.warning("log_volume_read_failed org_id=%s", org.id, exc_info=exc)
        raise _usage_unavailable_error() from exc
    decision = can_ingest_logs(plan, current, incoming_bytes)
    if not decision.allowed:
        raise entitlement_error(decision.message, RESOURCE_LOG_VOLUME)
    return decision
