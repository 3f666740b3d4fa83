from __future__ import annotations

import asyncio
from typing import Any, Optional

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from storefront.core.config import settings

TASK_CLEANUP_REMOTE = "cleanup_remote_checkout_task"
TASK_NOTIFY_ORDER = "notify_order_created_task"

_redis_pool: Optional[ArqRedis] = None
_pool_lock = asyncio.Lock()


async def init_redis_pool() -> ArqRedis:
    global _redis_pool
    async with _pool_lock:
        if _redis_pool is None:
            _redis_pool = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        return _redis_pool


async def get_redis_pool() -> ArqRedis:
    if _redis_pool is None:
        return await init_redis_pool()
    return _redis_pool


async def close_redis_pool() -> None:
    global _redis_pool
    async with _pool_lock:
        if _redis_pool is None:
            return

        pool = _redis_pool
        _redis_pool = None

        if hasattr(pool, "aclose"):
            await pool.aclose()  # type: ignore[attr-defined]
        else:
            await pool.close()  # type: ignore[func-returns-value]


async def enqueue_remote_cleanup(checkout_id: str | None, plan_id: str | None) -> dict[str, Any]:
    """
    Enqueue deletion of a paid checkout's Whop session + plan.
    The worker resolves the API key itself so secrets never sit in Redis.
    """
    redis = await get_redis_pool()
    job = await redis.enqueue_job(TASK_CLEANUP_REMOTE, checkout_id, plan_id)

    return {
        "queued": True,
        "queue": "arq",
        "job_id": job.job_id if job else None,
    }


async def enqueue_order_notification(order: dict[str, Any], url: str) -> dict[str, Any]:
    redis = await get_redis_pool()
    job = await redis.enqueue_job(TASK_NOTIFY_ORDER, order, url)

    return {
        "queued": True,
        "queue": "arq",
        "job_id": job.job_id if job else None,
    }
