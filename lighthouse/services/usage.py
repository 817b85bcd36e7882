from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.core.errors import InvalidAILevelError
from lighthouse.persistence.repos import usage as usage_repo
from lighthouse.services.entitlements import UsageSnapshot


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    # Use UTC for consistent billing period boundaries.
    return datetime.now(timezone.utc)


class UsageAccounting:
    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow time injection for deterministic period rollover tests.
        self._time_provider = time_provider or _utc_now

    def current_period_start(self) -> datetime:
        return usage_repo.month_start(self._time_provider())

    async def get_usage_snapshot(self, session: AsyncSession, org_id: str) -> UsageSnapshot:
        # Aggregate counts plus metered counters for the current month.
        period_start = self.current_period_start()
        counter = await usage_repo.get_usage_counter(session, org_id, period_start=period_start)
        return UsageSnapshot(
            check_count=await usage_repo.count_checks(session, org_id),
            log_volume_bytes=int(counter.log_bytes) if counter else 0,
            status_page_count=await usage_repo.count_status_pages(session, org_id),
            api_key_count=await usage_repo.count_api_keys(session, org_id),
            ai_level1_calls=int(counter.ai_level1_calls) if counter else 0,
            ai_level2_calls=int(counter.ai_level2_calls) if counter else 0,
            ai_level3_calls=int(counter.ai_level3_calls) if counter else 0,
            period_start=period_start,
        )

    async def get_current_log_volume(self, session: AsyncSession, org_id: str) -> int:
        counter = await usage_repo.get_usage_counter(
            session, org_id, period_start=self.current_period_start()
        )
        return int(counter.log_bytes) if counter else 0

    async def get_ai_calls(self, session: AsyncSession, org_id: str, level: int) -> int:
        if level not in (1, 2, 3):
            raise InvalidAILevelError(f"invalid AI level {level}")
        counter = await usage_repo.get_usage_counter(
            session, org_id, period_start=self.current_period_start()
        )
        if counter is None:
            return 0
        return int(getattr(counter, f"ai_level{level}_calls") or 0)

    async def record_log_ingestion(self, session: AsyncSession, org_id: str, num_bytes: int) -> bool:
        # Best-effort: accepted logs are never rolled back because metering failed.
        if num_bytes <= 0:
            return True
        try:
            await usage_repo.increment_usage_counter(
                session, org_id, period_start=self.current_period_start(), log_bytes=num_bytes
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("log_volume_increment_failed org_id=%s bytes=%s", org_id, num_bytes, exc_info=exc)
            return False
        return True

    async def record_ai_call(self, session: AsyncSession, org_id: str, level: int, calls: int = 1) -> None:
        if level not in (1, 2, 3):
            raise InvalidAILevelError(f"invalid AI level {level}")
        await usage_repo.increment_usage_counter(
            session,
            org_id,
            period_start=self.current_period_start(),
            ai_level=level,
            ai_calls=calls,
        )
        await session.commit()


_usage_accounting: UsageAccounting | None = None


def get_usage_accounting() -> UsageAccounting:
    # Cache the accounting service for reuse across requests.
    global _usage_accounting
    if _usage_accounting is None:
        _usage_accounting = UsageAccounting()
    return _usage_accounting


def reset_usage_accounting() -> None:
    global _usage_accounting
    _usage_accounting = None
