from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from lighthouse.core.logging import configure_logging
from lighthouse.domain.models import NotificationSettings, Organization
from lighthouse.domain.plans import PLAN_FREE
from lighthouse.persistence.db import SessionLocal
from lighthouse.services.enforcement import register_check


DEMO_ORG_ID = "demo-org"
DEMO_CHECKS = (
    ("Example", "https://example.com", 300),
    ("HTTPBin 200", "https://httpbin.org/status/200", 300),
    ("HTTPBin 503", "https://httpbin.org/status/503", 300),
)


async def _seed() -> None:
    # Seed one trialing org with a few checks so the scheduler has work locally.
    configure_logging()
    async with SessionLocal() as session:
        existing = await session.scalar(select(Organization).where(Organization.id == DEMO_ORG_ID))
        if existing is not None:
            print(f"org_id={DEMO_ORG_ID} already seeded")
            return
        org = Organization(
            id=DEMO_ORG_ID,
            name="Demo Org",
            plan=PLAN_FREE,
            is_trialing=True,
            trial_end_at=datetime.now(timezone.utc) + timedelta(days=14),
        )
        session.add(org)
        session.add(NotificationSettings(org_id=DEMO_ORG_ID, email_recipients=["ops@example.com"]))
        await session.commit()
        for name, url, interval in DEMO_CHECKS:
            check = await register_check(session, org, name=name, url=url, interval_seconds=interval)
            print(f"check_id={check.id} url={url}")


if __name__ == "__main__":
    asyncio.run(_seed())
