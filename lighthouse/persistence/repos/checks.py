from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import ColumnElement, Integer, Interval, cast, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lighthouse.core.config import get_settings
from lighthouse.core.errors import InvalidCheckError
from lighthouse.domain.models import Check, CheckResult


@dataclass(frozen=True)
class DueCheck:
    # Detached view of a check row handed from the scheduler to executors.
    id: str
    org_id: str
    name: str
    url: str
    interval_seconds: int
    last_status: int | None
    last_checked_at: datetime | None
    last_alert_at: datetime | None

    @classmethod
    def from_row(cls, row: Check) -> "DueCheck":
        return cls(
            id=row.id,
            org_id=row.org_id,
            name=row.name,
            url=row.url,
            interval_seconds=int(row.interval_seconds),
            last_status=row.last_status,
            last_checked_at=row.last_checked_at,
            last_alert_at=row.last_alert_at,
        )


def is_check_due(
    *, last_checked_at: datetime | None, interval_seconds: int, now: datetime
) -> bool:
    # Due when never checked or when last_checked_at + interval <= now.
    if last_checked_at is None:
        return True
    return last_checked_at + timedelta(seconds=interval_seconds) <= now


def _interval_elapsed(dialect_name: str, now: datetime) -> ColumnElement[bool]:
    # Stored intervals are trusted as-is; the write-time floor is never reapplied here.
    if dialect_name == "sqlite":
        # Whole-second epoch math; truncation only widens the match, the row filter below is exact.
        checked_epoch = cast(func.strftime("%s", Check.last_checked_at), Integer)
        return checked_epoch + Check.interval_seconds <= int(now.timestamp())
    elapsed_at = Check.last_checked_at + func.make_interval(
        0, 0, 0, 0, 0, 0, Check.interval_seconds, type_=Interval
    )
    return elapsed_at <= now


async def list_due_checks(session: AsyncSession, *, now: datetime) -> list[DueCheck]:
    dialect_name = session.get_bind().dialect.name
    result = await session.execute(
        select(Check)
        .where(
            Check.is_active.is_(True),
            Check.deleted_at.is_(None),
            or_(Check.last_checked_at.is_(None), _interval_elapsed(dialect_name, now)),
        )
        .order_by(Check.last_checked_at.is_not(None), Check.last_checked_at, Check.id)
    )
    return [
        DueCheck.from_row(row)
        for row in result.scalars().all()
        if is_check_due(
            last_checked_at=row.last_checked_at,
            interval_seconds=int(row.interval_seconds),
            now=now,
        )
    ]


def validate_check_interval(interval_seconds: int) -> None:
    floor = int(get_settings().check_min_interval_s)
    if interval_seconds < floor:
        raise InvalidCheckError(f"interval_seconds must be at least {floor}")


async def create_check(
    session: AsyncSession,
    *,
    org_id: str,
    name: str,
    url: str,
    interval_seconds: int,
    service_name: str | None = None,
    environment: str | None = None,
    region: str | None = None,
    tags: dict[str, Any] | None = None,
) -> Check:
    # Enforce the interval floor on every write path; reads never re-validate.
    validate_check_interval(interval_seconds)
    if not url.startswith(("http://", "https://")):
        raise InvalidCheckError("url must be an http(s) URL")
    check = Check(
        org_id=org_id,
        name=name,
        url=url,
        interval_seconds=interval_seconds,
        is_active=True,
        service_name=service_name,
        environment=environment,
        region=region,
        tags_json=tags,
    )
    session.add(check)
    await session.flush()
    return check


async def insert_check_result(
    session: AsyncSession,
    *,
    check_id: str,
    status_code: int,
    response_time_ms: int,
    success: bool,
    error_message: str | None,
    created_at: datetime,
) -> CheckResult:
    result = CheckResult(
        check_id=check_id,
        status_code=status_code,
        response_time_ms=response_time_ms,
        success=success,
        error_message=error_message[:1024] if error_message else None,
        created_at=created_at,
    )
    session.add(result)
    await session.flush()
    return result


async def update_check_status(
    session: AsyncSession, check_id: str, *, status_code: int, checked_at: datetime
) -> None:
    # Row-level update; concurrent writers resolve as last-write-wins.
    await session.execute(
        update(Check)
        .where(Check.id == check_id)
        .values(last_status=status_code, last_checked_at=checked_at)
    )


async def mark_check_alerted(session: AsyncSession, check_id: str, *, alerted_at: datetime) -> None:
    await session.execute(update(Check).where(Check.id == check_id).values(last_alert_at=alerted_at))


async def get_check(session: AsyncSession, check_id: str) -> Check | None:
    result = await session.execute(select(Check).where(Check.id == check_id))
    return result.scalar_one_or_none()

