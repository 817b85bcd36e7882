from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.domain.models import ApiKey, Check, StatusPage, UsageCounter


_AI_COLUMNS = {
    1: UsageCounter.ai_level1_calls,
    2: UsageCounter.ai_level2_calls,
    3: UsageCounter.ai_level3_calls,
}


def month_start(now: datetime) -> datetime:
    # Normalize to the UTC month boundary for monthly metering.
    now = now.astimezone(timezone.utc)
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


async def get_usage_counter(
    session: AsyncSession, org_id: str, *, period_start: datetime
) -> UsageCounter | None:
    result = await session.execute(
        select(UsageCounter).where(
            UsageCounter.org_id == org_id,
            UsageCounter.period_start == period_start,
        )
    )
    return result.scalar_one_or_none()


async def increment_usage_counter(
    session: AsyncSession,
    org_id: str,
    *,
    period_start: datetime,
    log_bytes: int = 0,
    ai_level: int | None = None,
    ai_calls: int = 0,
) -> None:
    # Atomic in-place increment with insert-on-miss; a lost insert race falls back to the update.
    values: dict = {}
    if log_bytes:
        values["log_bytes"] = UsageCounter.log_bytes + log_bytes
    if ai_level is not None and ai_calls:
        column = _AI_COLUMNS[ai_level]
        values[column.key] = column + ai_calls
    if not values:
        return

    stmt = (
        update(UsageCounter)
        .where(UsageCounter.org_id == org_id, UsageCounter.period_start == period_start)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount:
        return

    row = UsageCounter(org_id=org_id, period_start=period_start, log_bytes=0)
    if log_bytes:
        row.log_bytes = log_bytes
    if ai_level is not None and ai_calls:
        setattr(row, _AI_COLUMNS[ai_level].key, ai_calls)
    try:
        async with session.begin_nested():
            session.add(row)
    except IntegrityError:
        await session.execute(stmt)


async def count_api_keys(session: AsyncSession, org_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ApiKey)
        .where(ApiKey.org_id == org_id, ApiKey.revoked_at.is_(None))
    )
    return int(result.scalar() or 0)


async def count_status_pages(session: AsyncSession, org_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(StatusPage)
        .where(StatusPage.org_id == org_id, StatusPage.deleted_at.is_(None))
    )
    return int(result.scalar() or 0)


async def count_checks(session: AsyncSession, org_id: str) -> int:
    # Soft-deleted checks no longer consume plan capacity.
    result = await session.execute(
        select(func.count())
        .select_from(Check)
        .where(Check.org_id == org_id, Check.deleted_at.is_(None))
    )
    return int(result.scalar() or 0)
