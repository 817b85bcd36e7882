from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.persistence.repos import alerts as alerts_repo
from lighthouse.persistence.repos import checks as checks_repo


logger = logging.getLogger(__name__)

DEFAULT_SUPPRESSION_WINDOW = timedelta(minutes=15)


class AlertType(str, Enum):
    DOWN = "DOWN"
    RECOVERY = "RECOVERY"


@dataclass(frozen=True)
class AlertDecision:
    fire: bool
    alert_type: AlertType | None = None
    # True when a transition happened but the suppression window swallowed it.
    suppressed: bool = False


def is_status_up(status_code: int | None) -> bool:
    # No prior status counts as UP so the first probe can still raise DOWN.
    if status_code is None:
        return True
    return 200 <= status_code <= 299


def should_trigger_alert(
    prev_status: int | None,
    new_status: int,
    last_alert_at: datetime | None,
    *,
    now: datetime,
    suppression_window: timedelta = DEFAULT_SUPPRESSION_WINDOW,
) -> AlertDecision:
    prev_up = is_status_up(prev_status)
    new_up = is_status_up(new_status)
    if prev_up == new_up:
        return AlertDecision(fire=False)
    if last_alert_at is not None and now - last_alert_at < suppression_window:
        return AlertDecision(fire=False, suppressed=True)
    return AlertDecision(fire=True, alert_type=AlertType.DOWN if prev_up else AlertType.RECOVERY)


async def record_transition(
    session: AsyncSession,
    *,
    org_id: str,
    check_id: str,
    alert_type: AlertType,
    status_code: int,
    error_message: str | None,
    now: datetime,
) -> int:
    """Persist the alert, then stamp the check's last alert time. Returns the alert id.

    The alert row is committed first. A failure to stamp ``last_alert_at`` is
    logged and left in place; the alert is never rolled back for it.
    """
    alert = await alerts_repo.create_alert(
        session,
        org_id=org_id,
        check_id=check_id,
        alert_type=alert_type.value,
        status_code=status_code,
        error_message=error_message,
        created_at=now,
    )
    await session.commit()
    alert_id = int(alert.id)
    try:
        await checks_repo.mark_check_alerted(session, check_id, alerted_at=now)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("check_last_alert_update_failed check_id=%s alert_id=%s", check_id, alert_id, exc_info=exc)
    return alert_id
