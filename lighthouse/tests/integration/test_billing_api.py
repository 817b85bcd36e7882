from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from lighthouse.apps.api.main import create_app
from lighthouse.domain.models import AuditEvent
from lighthouse.persistence.db import SessionLocal
from lighthouse.services.telemetry import increment_counter
from lighthouse.tests.utils.fakes import seed_check, seed_org


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


@pytest.mark.asyncio
async def test_health() -> None:
    async with _client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_billing_overview_for_active_trial() -> None:
    trial_end = datetime.now(timezone.utc) + timedelta(days=5)
    await seed_org(plan="free", is_trialing=True, trial_end_at=trial_end)
    await seed_check(check_id="c1")

    async with _client() as client:
        response = await client.get("/v1/orgs/org-1/billing")

    assert response.status_code == 200
    body = response.json()
    assert body["plan"] == "free"
    assert body["effective_plan"] == "team"
    assert body["is_trialing"] is True
    assert body["usage"]["check_count"] == 1
    assert body["entitlements"]["within_limits"] is True
    assert body["entitlements"]["thresholds"]["checks"] == pytest.approx(1 / 75)
    assert [p["id"] for p in body["available_plans"]] == ["free", "indie_pro", "team", "agency"]
    assert [p["is_current"] for p in body["available_plans"]] == [False, False, True, False]


@pytest.mark.asyncio
async def test_billing_overview_applies_lapsed_trial() -> None:
    await seed_org(plan="team", is_trialing=True, trial_end_at=datetime.now(timezone.utc) - timedelta(hours=2))
    for i in range(6):
        await seed_check(check_id=f"c{i}")

    async with _client() as client:
        response = await client.get("/v1/orgs/org-1/billing")

    body = response.json()
    assert body["plan"] == "free"
    assert body["effective_plan"] == "free"
    assert body["is_trialing"] is False
    assert body["entitlements"]["within_limits"] is False
    assert body["entitlements"]["violations"][0]["resource"] == "checks"
    async with SessionLocal() as session:
        events = (await session.execute(select(AuditEvent))).scalars().all()
    assert [e.metadata_json["reason"] for e in events] == ["trial_expired_no_subscription"]


@pytest.mark.asyncio
async def test_billing_unknown_org_returns_structured_404() -> None:
    async with _client() as client:
        response = await client.get("/v1/orgs/missing/billing")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "ORG_NOT_FOUND"


@pytest.mark.asyncio
async def test_ops_metrics_exposes_counters() -> None:
    increment_counter("scheduler_ticks", 3)
    async with _client() as client:
        response = await client.get("/v1/ops/metrics")
    assert response.status_code == 200
    assert response.json()["counters"]["scheduler_ticks"] == 3
