from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.domain.models import AuditEvent
from lighthouse.persistence.db import SessionFactory, SessionLocal


logger = logging.getLogger(__name__)

EVENT_TRIAL_EXPIRED = "billing.trial_expired"
EVENT_TRIAL_CONVERTED = "billing.trial_converted"

ACTOR_SYSTEM = "system"


async def record_event(
    *,
    session: AsyncSession | None = None,
    session_factory: SessionFactory | None = None,
    org_id: str | None,
    event_type: str,
    actor_type: str = ACTOR_SYSTEM,
    actor_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
    commit: bool = False,
) -> None:
    # Write audit rows best-effort; failures are logged and never reach the caller.
    event = AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        org_id=org_id,
        actor_type=actor_type,
        actor_id=actor_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata_json=dict(metadata or {}),
    )

    if session is None:
        factory = session_factory or SessionLocal
        async with factory() as audit_session:
            try:
                audit_session.add(event)
                await audit_session.commit()
            except SQLAlchemyError as exc:
                await audit_session.rollback()
                logger.warning("audit_event_write_failed event_type=%s org_id=%s", event_type, org_id, exc_info=exc)
        return

    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        logger.warning("audit_event_write_failed event_type=%s org_id=%s", event_type, org_id, exc_info=exc)
