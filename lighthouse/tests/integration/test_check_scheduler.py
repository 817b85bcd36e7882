from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select

from lighthouse.domain.models import CheckResult
from lighthouse.persistence.db import SessionLocal
from lighthouse.persistence.repos.checks import DueCheck, is_check_due, list_due_checks
from lighthouse.services.monitoring.executor import CheckExecutor
from lighthouse.services.monitoring.leases import LocalCheckLeaseStore
from lighthouse.services.monitoring.scheduler import CheckScheduler
from lighthouse.tests.utils.fakes import NOW, FakeClock, seed_check, seed_org


class _BlockingExecutor:
    # Holds every execution open until released so ticks can overlap.
    def __init__(self) -> None:
        self.started: list[str] = []
        self.release = asyncio.Event()

    async def execute(self, check: DueCheck) -> None:
        self.started.append(check.id)
        await self.release.wait()


def test_is_check_due() -> None:
    assert is_check_due(last_checked_at=None, interval_seconds=60, now=NOW) is True
    assert is_check_due(last_checked_at=NOW - timedelta(seconds=60), interval_seconds=60, now=NOW) is True
    assert is_check_due(last_checked_at=NOW - timedelta(seconds=59), interval_seconds=60, now=NOW) is False
    assert is_check_due(last_checked_at=NOW - timedelta(seconds=299), interval_seconds=300, now=NOW) is False


@pytest.mark.asyncio
async def test_list_due_checks_filters_inactive_deleted_and_recent() -> None:
    await seed_org()
    never = await seed_check(check_id="never")
    elapsed = await seed_check(check_id="elapsed", last_checked_at=NOW - timedelta(seconds=120))
    await seed_check(check_id="recent", last_checked_at=NOW - timedelta(seconds=30))
    await seed_check(check_id="slow", interval_seconds=600, last_checked_at=NOW - timedelta(seconds=120))
    await seed_check(check_id="inactive", is_active=False)
    await seed_check(check_id="deleted", deleted_at=NOW - timedelta(days=1))

    async with SessionLocal() as session:
        due = await list_due_checks(session, now=NOW)

    assert {c.id for c in due} == {never.id, elapsed.id}


@pytest.mark.asyncio
async def test_tick_dispatches_without_waiting() -> None:
    await seed_org()
    await seed_check(check_id="a")
    await seed_check(check_id="b")
    executor = _BlockingExecutor()
    scheduler = CheckScheduler(executor=executor, time_provider=FakeClock(), max_concurrency=10)

    summary = await scheduler.run_tick()

    assert summary.due == 2
    assert summary.dispatched == 2
    assert scheduler.in_flight == 2
    executor.release.set()
    await scheduler.drain(timeout_s=2)
    assert sorted(executor.started) == ["a", "b"]


@pytest.mark.asyncio
async def test_overlapping_tick_skips_in_flight_check() -> None:
    await seed_org()
    await seed_check(check_id="slow-check")
    executor = _BlockingExecutor()
    leases = LocalCheckLeaseStore(ttl_s=120)
    scheduler = CheckScheduler(executor=executor, lease_store=leases, time_provider=FakeClock())

    first = await scheduler.run_tick()
    await asyncio.sleep(0)
    second = await scheduler.run_tick()

    assert first.dispatched == 1
    assert second.dispatched == 0
    assert second.skipped == 1
    executor.release.set()
    await scheduler.drain(timeout_s=2)
    # Lease released once the execution finished.
    assert leases.held() == set()
    assert executor.started == ["slow-check"]


@pytest.mark.asyncio
async def test_concurrency_bound_limits_running_probes() -> None:
    await seed_org()
    for i in range(5):
        await seed_check(check_id=f"c{i}")
    executor = _BlockingExecutor()
    scheduler = CheckScheduler(executor=executor, max_concurrency=2, time_provider=FakeClock())

    summary = await scheduler.run_tick()
    for _ in range(5):
        await asyncio.sleep(0)

    assert summary.dispatched == 5
    assert len(executor.started) == 2
    executor.release.set()
    await scheduler.drain(timeout_s=2)
    assert len(executor.started) == 5


@pytest.mark.asyncio
async def test_failed_due_query_skips_tick() -> None:
    class _BrokenSession:
        async def __aenter__(self):  # noqa: ANN204
            raise_error()

        async def __aexit__(self, *exc):  # noqa: ANN002, ANN204
            return False

    def raise_error() -> None:
        from sqlalchemy.exc import OperationalError

        raise OperationalError("SELECT", {}, Exception("database is down"))

    scheduler = CheckScheduler(executor=_BlockingExecutor(), session_factory=lambda: _BrokenSession())
    summary = await scheduler.run_tick()
    assert summary.failed is True
    assert summary.dispatched == 0


@pytest.mark.asyncio
async def test_run_forever_ticks_immediately_and_stops() -> None:
    await seed_org()
    check = await seed_check()
    executor = CheckExecutor(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    scheduler = CheckScheduler(executor=executor, tick_interval_s=30)
    stop = asyncio.Event()

    task = asyncio.create_task(scheduler.run_forever(stop))
    for _ in range(50):
        await asyncio.sleep(0.01)
        if scheduler.in_flight == 0:
            async with SessionLocal() as session:
                count = await session.scalar(
                    select(func.count()).select_from(CheckResult).where(CheckResult.check_id == check.id)
                )
            if count:
                break
    stop.set()
    await asyncio.wait_for(task, timeout=2)
    await scheduler.drain(timeout_s=2)

    async with SessionLocal() as session:
        count = await session.scalar(
            select(func.count()).select_from(CheckResult).where(CheckResult.check_id == check.id)
        )
    assert count == 1


@pytest.mark.asyncio
async def test_list_due_checks_trusts_stored_interval_below_write_floor() -> None:
    await seed_org()
    await seed_check(check_id="fast", interval_seconds=30, last_checked_at=NOW - timedelta(seconds=45))
    await seed_check(check_id="fast-recent", interval_seconds=30, last_checked_at=NOW - timedelta(seconds=20))
    await seed_check(check_id="boundary", interval_seconds=90, last_checked_at=NOW - timedelta(seconds=90))

    async with SessionLocal() as session:
        due = await list_due_checks(session, now=NOW)

    assert [c.id for c in due] == ["boundary", "fast"]


@pytest.mark.asyncio
async def test_queued_check_is_not_redispatched_after_lease_expiry() -> None:
    await seed_org()
    await seed_check(check_id="a")
    await seed_check(check_id="b")
    executor = _BlockingExecutor()
    # Leases expire long before the queued check gets a probe slot.
    leases = LocalCheckLeaseStore(ttl_s=0.05)
    scheduler = CheckScheduler(
        executor=executor,
        lease_store=leases,
        max_concurrency=1,
        time_provider=FakeClock(),
    )

    first = await scheduler.run_tick()
    await asyncio.sleep(0.1)
    assert leases.held() == set()
    second = await scheduler.run_tick()

    assert first.dispatched == 2
    assert second.dispatched == 0
    assert second.skipped == 2
    assert len(executor.started) == 1

    executor.release.set()
    await scheduler.drain(timeout_s=2)
    assert sorted(executor.started) == ["a", "b"]

    # Finished checks become dispatchable again.
    third = await scheduler.run_tick()
    assert third.dispatched == 2
    await scheduler.drain(timeout_s=2)
