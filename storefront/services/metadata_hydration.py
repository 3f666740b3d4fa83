from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.models.checkout_session import CheckoutSession, placeholder_checkout_id
from storefront.schemas.checkout import CartSnapshot
from storefront.services import checkout_session_store as store

logger = get_logger(__name__)


@dataclass
class HydrationResult:
    snapshot: CartSnapshot | None
    session: CheckoutSession | None
    hydrated: bool = False


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def needs_hydration(metadata: dict[str, Any]) -> bool:
    """
    Whop often echoes only part of the metadata, or none at all.
    """
    addons = metadata.get("addons")
    if not isinstance(addons, list) or not addons:
        return True
    return _is_missing(metadata.get("product_id"))


def fill_gaps(supplied: dict[str, Any], stored: dict[str, Any]) -> dict[str, Any]:
    """
    Copy stored values only where the payload left a hole.
    Anything the payload did send wins.
    """
    merged = dict(supplied)
    for key, value in stored.items():
        if _is_missing(merged.get(key)):
            merged[key] = value
    return merged


async def _find_session(
    db: AsyncSession,
    checkout_id: str | None,
    plan_id: str | None,
) -> CheckoutSession | None:
    if checkout_id:
        row = await store.get_session(db, checkout_id)
        if row:
            return row
    # The id rewrite may have failed; the row is then still under its placeholder
    if plan_id:
        return await store.get_session(db, placeholder_checkout_id(plan_id))
    return None


async def hydrate_metadata(
    db: AsyncSession,
    *,
    checkout_id: str | None,
    metadata: Any,
    plan_id: str | None = None,
) -> HydrationResult:
    supplied = metadata if isinstance(metadata, dict) else {}

    # Lookup errors propagate: the webhook must answer 500 so Whop redelivers
    session = await _find_session(db, checkout_id, plan_id)

    merged = supplied
    hydrated = False
    if session is not None and needs_hydration(supplied):
        stored = session.cart_metadata if isinstance(session.cart_metadata, dict) else {}
        if stored:
            merged = fill_gaps(supplied, stored)
            hydrated = True
            logger.info(
                "Hydrated webhook metadata for %s from stored session (%d addons)",
                session.checkout_id,
                len(merged.get("addons") or []),
            )

    snapshot = CartSnapshot.from_raw(merged)
    if snapshot is None:
        logger.warning("Webhook metadata for %s failed validation", checkout_id)

    return HydrationResult(snapshot=snapshot, session=session, hydrated=hydrated)
