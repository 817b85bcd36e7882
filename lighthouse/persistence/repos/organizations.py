from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.domain.models import Organization
from lighthouse.domain.plans import PLAN_FREE


async def get_organization(session: AsyncSession, org_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == org_id))
    return result.scalar_one_or_none()


async def list_expired_trials(session: AsyncSession, *, now: datetime) -> list[Organization]:
    result = await session.execute(
        select(Organization)
        .where(Organization.is_trialing.is_(True), Organization.trial_end_at < now)
        .order_by(Organization.trial_end_at, Organization.id)
    )
    return list(result.scalars().all())


async def clear_trial_flag(session: AsyncSession, org_id: str) -> bool:
    # Converted orgs keep their plan; only the trial flag flips.
    result = await session.execute(
        update(Organization)
        .where(Organization.id == org_id, Organization.is_trialing.is_(True))
        .values(is_trialing=False)
    )
    return bool(result.rowcount)


async def downgrade_expired_trial(session: AsyncSession, org_id: str, *, now: datetime) -> bool:
    # Compare-and-swap on the expiry predicate so concurrent sweepers apply it once.
    result = await session.execute(
        update(Organization)
        .where(
            Organization.id == org_id,
            Organization.is_trialing.is_(True),
            Organization.trial_end_at < now,
        )
        .values(is_trialing=False, plan=PLAN_FREE)
    )
    return bool(result.rowcount)
