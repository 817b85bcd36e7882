from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from lighthouse.domain.models import ApiKey, Check, Organization, StatusPage, UsageCounter
from lighthouse.persistence.db import SessionLocal
from lighthouse.persistence.repos.usage import month_start
from lighthouse.services import enforcement
from lighthouse.services.enforcement import (
    UPGRADE_URL,
    admit_log_ingestion,
    register_check,
    require_ai_access,
    require_api_key_capacity,
    require_status_page_capacity,
)
from lighthouse.services.usage import UsageAccounting
from lighthouse.tests.utils.fakes import NOW, FakeClock, seed_check, seed_org

_MB = 1024 * 1024


async def _get_org(session, org_id: str = "org-1") -> Organization:  # noqa: ANN001
    return await session.get(Organization, org_id)


def test_month_start_normalizes_to_utc() -> None:
    local = datetime(2026, 4, 1, 1, 30, tzinfo=timezone(timedelta(hours=3)))
    assert month_start(local) == datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_usage_snapshot_aggregates_counts_and_counters() -> None:
    await seed_org()
    await seed_check(check_id="live")
    await seed_check(check_id="gone", deleted_at=NOW)
    accounting = UsageAccounting(time_provider=FakeClock())
    async with SessionLocal() as session:
        session.add(ApiKey(org_id="org-1", name="ci", key_hash="h1", key_prefix="lh_1"))
        session.add(ApiKey(org_id="org-1", name="old", key_hash="h2", key_prefix="lh_2", revoked_at=NOW))
        session.add(StatusPage(org_id="org-1", name="public"))
        await session.commit()
        assert await accounting.record_log_ingestion(session, "org-1", 10 * _MB) is True
        assert await accounting.record_log_ingestion(session, "org-1", 5 * _MB) is True
        await accounting.record_ai_call(session, "org-1", 2)
        await accounting.record_ai_call(session, "org-1", 2, calls=3)

        snapshot = await accounting.get_usage_snapshot(session, "org-1")

    assert snapshot.check_count == 1
    assert snapshot.api_key_count == 1
    assert snapshot.status_page_count == 1
    assert snapshot.log_volume_bytes == 15 * _MB
    assert snapshot.ai_level2_calls == 4
    assert snapshot.ai_level1_calls == 0
    assert snapshot.period_start == datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_counters_roll_over_each_month() -> None:
    await seed_org()
    clock = FakeClock()
    accounting = UsageAccounting(time_provider=clock)
    async with SessionLocal() as session:
        await accounting.record_log_ingestion(session, "org-1", 100)
        clock.advance(31 * 24 * 3600)
        assert await accounting.get_current_log_volume(session, "org-1") == 0
        await accounting.record_log_ingestion(session, "org-1", 7)
        assert await accounting.get_current_log_volume(session, "org-1") == 7
        rows = (await session.execute(select(UsageCounter))).scalars().all()
    assert len(rows) == 2


@pytest.mark.asyncio
async def test_register_check_enforces_plan_limit() -> None:
    await seed_org(plan="free")
    for i in range(5):
        await seed_check(check_id=f"c{i}", interval_seconds=300)
    async with SessionLocal() as session:
        org = await _get_org(session)
        with pytest.raises(HTTPException) as excinfo:
            await register_check(session, org, name="sixth", url="https://x.test", interval_seconds=300)
    assert excinfo.value.status_code == 403
    detail = excinfo.value.detail
    assert detail["code"] == "ENTITLEMENT_LIMIT"
    assert detail["limit_type"] == "checks"
    assert detail["upgrade_url"] == UPGRADE_URL
    assert "5/5" in detail["message"]


@pytest.mark.asyncio
async def test_register_check_enforces_plan_interval() -> None:
    await seed_org(plan="free")
    async with SessionLocal() as session:
        org = await _get_org(session)
        with pytest.raises(HTTPException) as excinfo:
            await register_check(session, org, name="fast", url="https://x.test", interval_seconds=60)
    assert excinfo.value.detail["limit_type"] == "check_interval"
    assert "Free" in excinfo.value.detail["message"]


@pytest.mark.asyncio
async def test_register_check_uses_trial_plan_and_persists() -> None:
    await seed_org(plan="free", is_trialing=True, trial_end_at=datetime.now(timezone.utc) + timedelta(days=7))
    async with SessionLocal() as session:
        org = await _get_org(session)
        check = await register_check(
            session, org, name="fast", url="https://x.test", interval_seconds=60, tags={"team": "core"}
        )
    async with SessionLocal() as session:
        row = await session.get(Check, check.id)
    assert row.interval_seconds == 60
    assert row.tags_json == {"team": "core"}
    assert row.last_checked_at is None


@pytest.mark.asyncio
async def test_register_check_rejects_invalid_url() -> None:
    await seed_org(plan="agency", subscription_status="active")
    async with SessionLocal() as session:
        org = await _get_org(session)
        with pytest.raises(HTTPException) as excinfo:
            await register_check(session, org, name="bad", url="ftp://x.test", interval_seconds=60)
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_api_key_and_status_page_capacity() -> None:
    await seed_org(plan="free")
    async with SessionLocal() as session:
        session.add(ApiKey(org_id="org-1", name="a", key_hash="k1", key_prefix="lh_a"))
        await session.commit()
        org = await _get_org(session)
        await require_api_key_capacity(session, org)
        session.add(ApiKey(org_id="org-1", name="b", key_hash="k2", key_prefix="lh_b"))
        await session.commit()
        with pytest.raises(HTTPException) as excinfo:
            await require_api_key_capacity(session, org)
        assert excinfo.value.detail["limit_type"] == "api_keys"
        with pytest.raises(HTTPException) as excinfo:
            await require_status_page_capacity(session, org)
        assert excinfo.value.detail["limit_type"] == "status_pages"


@pytest.mark.asyncio
async def test_require_ai_access() -> None:
    await seed_org(plan="free")
    async with SessionLocal() as session:
        org = await _get_org(session)
        await require_ai_access(session, org, 1)
        with pytest.raises(HTTPException) as excinfo:
            await require_ai_access(session, org, 2)
        assert excinfo.value.status_code == 403
        assert "not available" in excinfo.value.detail["message"]
        with pytest.raises(HTTPException) as excinfo:
            await require_ai_access(session, org, 7)
        assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_admit_log_ingestion_tiers() -> None:
    await seed_org(plan="free")
    async with SessionLocal() as session:
        org = await _get_org(session)
        quiet = await admit_log_ingestion(session, org, 10 * _MB)
        assert quiet.warning is False

        await UsageAccounting().record_log_ingestion(session, "org-1", 450 * _MB)
        warned = await admit_log_ingestion(session, org, 10 * _MB)
        assert warned.allowed is True
        assert warned.message.startswith("Approaching log limit")

        with pytest.raises(HTTPException) as excinfo:
            await admit_log_ingestion(session, org, 400 * _MB)
    assert excinfo.value.status_code == 403
    assert excinfo.value.detail["limit_type"] == "log_volume"


@pytest.mark.asyncio
async def test_admit_log_ingestion_fails_closed(monkeypatch) -> None:
    await seed_org(plan="free")

    class _BrokenAccounting:
        async def get_current_log_volume(self, session, org_id):  # noqa: ANN001, ANN201
            raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(enforcement, "get_usage_accounting", lambda: _BrokenAccounting())
    async with SessionLocal() as session:
        org = await _get_org(session)
        with pytest.raises(HTTPException) as excinfo:
            await admit_log_ingestion(session, org, 1)
    assert excinfo.value.status_code == 503
