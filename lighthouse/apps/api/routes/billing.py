from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.apps.api.deps import get_db
from lighthouse.domain.plans import get_plan_config, list_plans
from lighthouse.persistence.repos.organizations import get_organization
from lighthouse.services.entitlements import check_entitlements, effective_plan
from lighthouse.services.trial_expiry import expire_trial_if_due
from lighthouse.services.usage import get_usage_accounting

router = APIRouter(prefix="/orgs", tags=["billing"])

_GB = 1024 * 1024 * 1024


class PlanInfo(BaseModel):
    id: str
    name: str
    price_cents: int
    max_checks: int
    log_retention_days: int
    log_volume_gb: float
    check_interval_seconds: int
    is_current: bool


class BillingOverview(BaseModel):
    plan: str
    effective_plan: str
    plan_config: dict[str, Any]
    usage: dict[str, Any]
    entitlements: dict[str, Any]
    subscription_status: str | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool
    is_trialing: bool
    trial_end_at: datetime | None = None
    available_plans: list[PlanInfo]


def _plan_list(current: str) -> list[PlanInfo]:
    return [
        PlanInfo(
            id=config.id,
            name=config.name,
            price_cents=config.monthly_price_cents,
            max_checks=config.max_checks,
            log_retention_days=config.log_retention_days,
            log_volume_gb=config.log_volume_bytes_per_month / _GB,
            check_interval_seconds=config.check_interval_min_seconds,
            is_current=config.id == current,
        )
        for config in list_plans()
    ]


@router.get("/{org_id}/billing", response_model=BillingOverview)
async def get_billing(org_id: str, db: AsyncSession = Depends(get_db)) -> BillingOverview:
    org = await get_organization(db, org_id)
    if org is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "ORG_NOT_FOUND", "message": "Organization not found"},
        )
    # Apply a lapsed trial before computing limits so the response reflects the downgrade.
    await expire_trial_if_due(db, org)
    try:
        usage = await get_usage_accounting().get_usage_snapshot(db, org.id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "USAGE_UNAVAILABLE", "message": "failed to load usage"},
        ) from exc
    plan = effective_plan(org)
    result = check_entitlements(plan, usage)
    return BillingOverview(
        plan=org.plan,
        effective_plan=plan,
        plan_config=asdict(get_plan_config(plan)),
        usage=asdict(usage),
        entitlements=asdict(result),
        subscription_status=org.stripe_subscription_status,
        current_period_end=org.current_period_end,
        cancel_at_period_end=org.cancel_at_period_end,
        is_trialing=org.is_trialing,
        trial_end_at=org.trial_end_at,
        available_plans=_plan_list(plan),
    )
