from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.errors import ConfigurationError
from storefront.core.logging import get_logger
from storefront.core.secrets import SecretResolver
from storefront.models.checkout_session import PLACEHOLDER_PREFIX
from storefront.services import checkout_session_store as store
from storefront.services.whop_client import WhopClient, WhopClientFactory

logger = get_logger(__name__)


def _is_placeholder(checkout_id: str | None) -> bool:
    # Never made it to Whop as a checkout session
    return bool(checkout_id) and checkout_id.startswith(PLACEHOLDER_PREFIX)


async def _delete_remote(
    whop: WhopClient,
    *,
    checkout_id: str | None,
    plan_id: str | None,
) -> dict[str, Any]:
    async def _session() -> bool:
        if not checkout_id or _is_placeholder(checkout_id):
            return True
        return await whop.delete_checkout_session(checkout_id)

    async def _plan() -> bool:
        if not plan_id:
            return True
        return await whop.delete_plan(plan_id)

    session_res, plan_res = await asyncio.gather(_session(), _plan(), return_exceptions=True)

    if isinstance(session_res, BaseException):
        logger.warning("Failed to delete Whop checkout session %s: %s", checkout_id, session_res)
    if isinstance(plan_res, BaseException):
        logger.warning("Failed to delete Whop plan %s: %s", plan_id, plan_res)

    return {
        "checkout_id": checkout_id,
        "plan_id": plan_id,
        "session_deleted": session_res is True,
        "plan_deleted": plan_res is True,
    }


async def cleanup_remote_checkout(
    *,
    client_factory: WhopClientFactory,
    api_key: str | None,
    checkout_id: str | None,
    plan_id: str | None,
) -> dict[str, Any]:
    """
    Delete the hosted checkout session and its one-time plan after payment.
    Resource hygiene only: never raises.
    """
    if not api_key:
        logger.warning("Skipping remote cleanup for %s: Whop API key not configured", checkout_id)
        return {"checkout_id": checkout_id, "plan_id": plan_id, "skipped": True}

    try:
        async with client_factory(api_key) as whop:
            result = await _delete_remote(whop, checkout_id=checkout_id, plan_id=plan_id)
    except Exception as e:
        logger.warning("Remote cleanup for %s failed: %s", checkout_id, e)
        return {"checkout_id": checkout_id, "plan_id": plan_id, "session_deleted": False, "plan_deleted": False}

    if result["session_deleted"]:
        logger.info("Checkout session deleted after payment: %s", checkout_id)
    if plan_id and result["plan_deleted"]:
        logger.info("Plan deleted after payment: %s", plan_id)
    return result


async def sweep_expired(
    db: AsyncSession,
    *,
    resolver: SecretResolver,
    client_factory: WhopClientFactory,
    settings: Settings,
    limit: int | None = None,
    batch_size: int = 5,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Expire pending checkouts past `expires_at`.

    Remote deletes run concurrently per batch (small batches keep us under
    Whop's rate limit); DB updates run one at a time on the shared session.
    A row is marked expired only when its remote session is gone.
    """
    api_key = await resolver.api_key()
    if not api_key:
        raise ConfigurationError("Whop API key not configured")

    rows = await store.list_expired_pending(
        db,
        now=now,
        limit=limit or settings.CLEANUP_BATCH_LIMIT,
    )
    if not rows:
        return {"success": True, "deleted": 0, "failed": 0, "message": "No expired checkouts"}

    targets = [(r.checkout_id, r.plan_id) for r in rows]
    deleted = 0
    failed = 0

    async with client_factory(api_key) as whop:
        for i in range(0, len(targets), batch_size):
            batch = targets[i:i + batch_size]
            results = await asyncio.gather(
                *(_delete_remote(whop, checkout_id=cid, plan_id=pid) for cid, pid in batch)
            )

            for res in results:
                if not res["session_deleted"]:
                    failed += 1
                    continue
                try:
                    await store.mark_expired(db, res["checkout_id"])
                    deleted += 1
                except Exception as e:
                    await db.rollback()
                    logger.warning("Could not mark %s expired: %s", res["checkout_id"], e)
                    failed += 1

    logger.info("Expired checkout sweep: deleted=%d failed=%d", deleted, failed)
    return {
        "success": True,
        "deleted": deleted,
        "failed": failed,
        "message": f"Cleaned up {deleted} expired checkouts",
    }
