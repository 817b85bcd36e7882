from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging

from lighthouse.core.config import Settings, get_settings
from lighthouse.persistence.db import SessionFactory, SessionLocal
from lighthouse.services.background import BackgroundTaskPool
from lighthouse.services.monitoring.executor import AlertNotifier, CheckExecutor
from lighthouse.services.monitoring.leases import build_lease_store
from lighthouse.services.monitoring.scheduler import CheckScheduler
from lighthouse.services.notifications.dispatcher import NotificationDispatcher
from lighthouse.services.notifications.queue import enqueue_alert_notification
from lighthouse.services.trial_expiry import run_trial_expiry_loop


logger = logging.getLogger(__name__)


@dataclass
class MonitoringRuntime:
    # Owns the long-lived loops plus the pools they hand work to.
    scheduler: CheckScheduler
    dispatcher: NotificationDispatcher
    notification_pool: BackgroundTaskPool
    session_factory: SessionFactory
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: list[asyncio.Task] = field(default_factory=list)


def select_alert_notifier(
    dispatcher: NotificationDispatcher, settings: Settings | None = None
) -> AlertNotifier:
    # queue mode hands alert ids to the ARQ worker, which owns retries.
    mode = (settings or get_settings()).notify_delivery_mode.lower()
    if mode == "queue":
        return enqueue_alert_notification
    return dispatcher.deliver_alert


def build_monitoring_runtime(
    *,
    session_factory: SessionFactory | None = None,
    dispatcher: NotificationDispatcher | None = None,
    executor: CheckExecutor | None = None,
) -> MonitoringRuntime:
    settings = get_settings()
    factory = session_factory or SessionLocal
    dispatcher = dispatcher or NotificationDispatcher(session_factory=factory)
    pool = BackgroundTaskPool(max_concurrency=settings.notify_max_concurrency, name="notifications")
    executor = executor or CheckExecutor(
        session_factory=factory,
        notifier=select_alert_notifier(dispatcher, settings),
        notification_pool=pool,
    )
    scheduler = CheckScheduler(
        executor=executor,
        session_factory=factory,
        lease_store=build_lease_store(),
    )
    return MonitoringRuntime(
        scheduler=scheduler,
        dispatcher=dispatcher,
        notification_pool=pool,
        session_factory=factory,
    )


def start_loops(runtime: MonitoringRuntime, *, scheduler: bool = True, trial_sweeper: bool = True) -> None:
    if scheduler:
        runtime.tasks.append(asyncio.create_task(runtime.scheduler.run_forever(runtime.stop_event)))
    if trial_sweeper:
        runtime.tasks.append(
            asyncio.create_task(
                run_trial_expiry_loop(
                    session_factory=runtime.session_factory,
                    stop_event=runtime.stop_event,
                )
            )
        )


async def stop_loops(runtime: MonitoringRuntime, *, drain_timeout_s: float = 5.0) -> None:
    # In-flight probes and deliveries get a short grace period, then are abandoned.
    runtime.stop_event.set()
    for task in runtime.tasks:
        task.cancel()
    if runtime.tasks:
        await asyncio.gather(*runtime.tasks, return_exceptions=True)
    runtime.tasks.clear()
    await runtime.scheduler.drain(drain_timeout_s)
    await runtime.notification_pool.drain(drain_timeout_s)
    logger.info("monitoring_runtime_stopped")
