from __future__ import annotations

from typing import Any

from arq import Retry
from arq.connections import RedisSettings
from arq.cron import cron

from storefront.core.config import settings
from storefront.core.logging import get_logger, setup_logging
from storefront.core.secrets import SecretCache, SecretResolver
from storefront.db.session import async_session
from storefront.services.cleanup_service import cleanup_remote_checkout, sweep_expired
from storefront.services.notification_service import notify_order_created
from storefront.services.whop_client import make_client_factory

logger = get_logger(__name__)


def _should_retry(ctx) -> bool:
    job_try = int(ctx.get("job_try") or 1)
    return job_try < int(getattr(settings, "ARQ_MAX_TRIES", 3))


async def startup(ctx) -> None:
    setup_logging()
    ctx["secret_cache"] = SecretCache(ttl_seconds=settings.SECRET_CACHE_TTL_SECONDS)
    ctx["client_factory"] = make_client_factory(settings)


async def cleanup_remote_checkout_task(ctx, checkout_id: str | None, plan_id: str | None) -> dict[str, Any]:
    """
    ARQ task: delete a paid checkout's Whop session + plan.
    Retried while either delete failed; gives up quietly after the last try.
    """
    async with async_session() as db:
        resolver = SecretResolver(db, settings=settings, cache=ctx.get("secret_cache"))
        api_key = await resolver.api_key()

    result = await cleanup_remote_checkout(
        client_factory=ctx["client_factory"],
        api_key=api_key,
        checkout_id=checkout_id,
        plan_id=plan_id,
    )

    incomplete = not result.get("skipped") and (
        not result.get("session_deleted") or (plan_id and not result.get("plan_deleted"))
    )
    if incomplete:
        if _should_retry(ctx):
            raise Retry(defer=int(ctx.get("job_try") or 1) * 30)
        logger.error("Giving up on remote cleanup for %s (plan %s)", checkout_id, plan_id)

    return result


async def notify_order_created_task(ctx, order: dict[str, Any], url: str) -> bool:
    sent = await notify_order_created(order, url=url)
    if not sent:
        if _should_retry(ctx):
            raise Retry(defer=int(ctx.get("job_try") or 1) * 30)
        logger.error("Giving up on order.created for %s", order.get("order_id"))
    return sent


async def sweep_expired_checkouts(ctx) -> dict[str, Any]:
    """
    Cron: expire pending checkouts past their 15 minute window.
    """
    async with async_session() as db:
        resolver = SecretResolver(db, settings=settings, cache=ctx.get("secret_cache"))
        if not await resolver.api_key():
            logger.warning("Skipping expired checkout sweep: Whop API key not configured")
            return {"success": False, "skipped": True}
        return await sweep_expired(
            db,
            resolver=resolver,
            client_factory=ctx["client_factory"],
            settings=settings,
        )


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    functions = [cleanup_remote_checkout_task, notify_order_created_task]
    cron_jobs = [cron(sweep_expired_checkouts, minute={0, 10, 20, 30, 40, 50})]
    on_startup = startup

    max_jobs = 10
    job_timeout = 60 * 5
    max_tries = settings.ARQ_MAX_TRIES
