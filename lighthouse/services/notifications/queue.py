from __future__ import annotations

import asyncio
import logging

from arq import create_pool
from arq.connections import RedisSettings

from lighthouse.core.config import get_settings


logger = logging.getLogger(__name__)

DELIVER_ALERT_JOB = "deliver_alert_notification"

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()


async def get_redis_pool():
    # Cache the ARQ pool per event loop; tests and scripts may run several loops.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.notify_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def enqueue_alert_notification(alert_id: int) -> str | None:
    # One job per alert; the job id dedupes a re-enqueue of the same alert.
    redis = await get_redis_pool()
    job = await redis.enqueue_job(
        DELIVER_ALERT_JOB,
        int(alert_id),
        _job_id=f"alert:{alert_id}",
        _queue_name=get_settings().notify_queue_name,
    )
    if job is None:
        logger.info("alert_notification_already_queued alert_id=%s", alert_id)
        return None
    logger.info("alert_notification_queued alert_id=%s job_id=%s", alert_id, job.job_id)
    return job.job_id
