from __future__ import annotations

import logging

from arq import Retry
from arq.connections import RedisSettings

from lighthouse.core.config import get_settings
from lighthouse.core.logging import configure_logging
from lighthouse.services.notifications.dispatcher import NotificationDispatcher
from lighthouse.services.runtime import build_monitoring_runtime, start_loops, stop_loops

logger = logging.getLogger(__name__)


async def deliver_alert_notification(ctx, alert_id: int) -> str:
    # Deliver a stored alert from the queue; a failed dispatch is retried with linear backoff.
    settings = get_settings()
    dispatcher: NotificationDispatcher = ctx.get("dispatcher") or NotificationDispatcher()
    result = await dispatcher.deliver_alert(int(alert_id))
    if result.skipped_reason:
        return "skipped"
    if not result.failed:
        return "delivered"
    job_try = int(ctx.get("job_try") or 1)
    if job_try < max(1, int(settings.notify_max_attempts)):
        logger.warning("alert_notification_retry alert_id=%s job_try=%s", alert_id, job_try)
        raise Retry(defer=job_try * max(1, int(settings.notify_retry_backoff_s)))
    logger.error("alert_notification_exhausted alert_id=%s job_try=%s", alert_id, job_try)
    return "failed"


async def _startup(ctx) -> None:
    # Host the check scheduler and trial sweeper with the worker process.
    configure_logging()
    runtime = build_monitoring_runtime()
    ctx["runtime"] = runtime
    ctx["dispatcher"] = runtime.dispatcher
    start_loops(runtime)
    logger.info("monitor_worker_started")


async def _shutdown(ctx) -> None:
    # Stop loops on shutdown to avoid dangling coroutines in tests and local runs.
    runtime = ctx.get("runtime")
    if runtime is not None:
        await stop_loops(runtime)


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.notify_queue_name
    max_tries = max(1, int(settings.notify_max_attempts))
    functions = [deliver_alert_notification]
    on_startup = _startup
    on_shutdown = _shutdown
