from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.domain.models import Alert


async def create_alert(
    session: AsyncSession,
    *,
    org_id: str,
    check_id: str,
    alert_type: str,
    status_code: int,
    error_message: str | None,
    created_at: datetime,
) -> Alert:
    alert = Alert(
        org_id=org_id,
        check_id=check_id,
        alert_type=alert_type,
        status_code=status_code,
        error_message=error_message[:1024] if error_message else None,
        created_at=created_at,
    )
    session.add(alert)
    await session.flush()
    return alert


async def get_alert(session: AsyncSession, alert_id: int) -> Alert | None:
    result = await session.execute(select(Alert).where(Alert.id == alert_id))
    return result.scalar_one_or_none()

