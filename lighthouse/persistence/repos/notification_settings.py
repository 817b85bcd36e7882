from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.domain.models import NotificationSettings


async def get_notification_settings(session: AsyncSession, org_id: str) -> NotificationSettings | None:
    # Missing settings are a normal state for orgs that never configured alerts.
    result = await session.execute(
        select(NotificationSettings).where(NotificationSettings.org_id == org_id)
    )
    return result.scalar_one_or_none()
