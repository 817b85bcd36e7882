from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from lighthouse.core.config import get_settings
from lighthouse.persistence.db import SessionFactory, SessionLocal
from lighthouse.persistence.repos.checks import DueCheck, list_due_checks
from lighthouse.services.monitoring.executor import CheckExecutor
from lighthouse.services.monitoring.leases import CheckLeaseStore, LocalCheckLeaseStore
from lighthouse.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TickSummary:
    due: int
    dispatched: int
    # Due checks whose previous execution still holds the lease.
    skipped: int
    failed: bool = False


class CheckScheduler:
    """Periodic scan for due checks with detached, bounded execution.

    ``run_tick`` never waits for probes: each due check becomes its own task,
    and a semaphore of ``max_concurrency`` bounds how many probe at once. A
    per-check lease keeps back-to-back ticks from running the same check twice.
    """

    def __init__(
        self,
        *,
        executor: CheckExecutor,
        session_factory: SessionFactory | None = None,
        lease_store: CheckLeaseStore | None = None,
        max_concurrency: int | None = None,
        tick_interval_s: float | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._executor = executor
        self._session_factory = session_factory or SessionLocal
        self._lease_store = lease_store or LocalCheckLeaseStore(ttl_s=float(settings.check_lease_ttl_s))
        limit = max_concurrency if max_concurrency is not None else settings.check_max_concurrency
        self._semaphore = asyncio.Semaphore(max(1, int(limit)))
        self._tick_interval_s = float(
            tick_interval_s if tick_interval_s is not None else settings.check_tick_interval_s
        )
        self._time_provider = time_provider or _utc_now
        self._tasks: set[asyncio.Task] = set()
        # Check ids dispatched by this process and not yet finished, queued or probing.
        self._in_flight_ids: set[str] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def run_tick(self) -> TickSummary:
        now = self._time_provider()
        increment_counter("scheduler_ticks")
        try:
            async with self._session_factory() as session:
                due = await list_due_checks(session, now=now)
        except SQLAlchemyError:
            # Skip this tick; the next one retries naturally.
            increment_counter("scheduler_tick_failures")
            logger.exception("check_due_query_failed")
            return TickSummary(due=0, dispatched=0, skipped=0, failed=True)

        dispatched = 0
        skipped = 0
        for check in due:
            # Queued tasks may outlive their lease TTL while waiting on the semaphore.
            if check.id in self._in_flight_ids:
                skipped += 1
                continue
            try:
                token = await self._lease_store.acquire(check.id)
            except Exception:  # noqa: BLE001 - a lease backend outage skips the check, not the tick.
                logger.exception("check_lease_acquire_failed check_id=%s", check.id)
                skipped += 1
                continue
            if token is None:
                skipped += 1
                continue
            self._in_flight_ids.add(check.id)
            task = asyncio.create_task(self._run_check(check, token))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            # Cleared on completion even when the task is cancelled before it starts.
            task.add_done_callback(lambda _task, check_id=check.id: self._in_flight_ids.discard(check_id))
            dispatched += 1

        increment_counter("checks_dispatched", dispatched)
        increment_counter("checks_skipped_in_flight", skipped)
        if due:
            logger.info("check_tick due=%s dispatched=%s skipped=%s", len(due), dispatched, skipped)
        return TickSummary(due=len(due), dispatched=dispatched, skipped=skipped)

    async def _run_check(self, check: DueCheck, token: str) -> None:
        try:
            async with self._semaphore:
                await self._executor.execute(check)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - one failing check must not affect siblings.
            logger.exception("check_execution_failed check_id=%s", check.id)
        finally:
            try:
                await self._lease_store.release(check.id, token)
            except Exception:  # noqa: BLE001 - lease TTL reclaims it eventually.
                logger.exception("check_lease_release_failed check_id=%s", check.id)

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        # Tick immediately at startup, then on a fixed cadence until stopped.
        logger.info("check_scheduler_started interval_s=%s", self._tick_interval_s)
        while stop_event is None or not stop_event.is_set():
            try:
                await self.run_tick()
            except Exception:  # noqa: BLE001 - keep the ticker alive across unexpected failures.
                logger.exception("check_tick_failed")
            if stop_event is None:
                await asyncio.sleep(self._tick_interval_s)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._tick_interval_s)
            except asyncio.TimeoutError:
                pass
        logger.info("check_scheduler_stopped")

    async def drain(self, timeout_s: float | None = None) -> None:
        # In-flight probes are abandoned (cancelled) once the timeout passes.
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
