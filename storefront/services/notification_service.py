from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from storefront.core.logging import get_logger

logger = get_logger(__name__)


def build_order_url(origin: str | None, order_id: str) -> str | None:
    base = (origin or "").strip().rstrip("/")
    if not base:
        return None
    return f"{base}/buyer-order.html?id={quote(order_id, safe='')}"


def build_order_notification(
    *,
    order_id: str,
    product_id: int,
    email: str,
    amount: float,
    origin: str | None,
) -> dict[str, Any]:
    """
    Fixed payload shape consumed by the order.created receiver.
    """
    base = (origin or "").strip().rstrip("/")
    return {
        "order_id": order_id,
        "product_id": product_id,
        "email": email,
        "name": None,
        "amount": amount,
        "status": "completed",
        "origin": base or None,
        "order_url": build_order_url(base, order_id),
    }


async def notify_order_created(
    order: dict[str, Any],
    *,
    url: str | None,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    POST {event: "order.created", order} to the configured receiver.
    Never raises; returns whether the receiver accepted it.
    """
    if not url:
        logger.debug("No order.created receiver configured; skipping %s", order.get("order_id"))
        return False

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(url, json={"event": "order.created", "order": order})
        if not resp.is_success:
            logger.warning("order.created receiver answered %s for %s", resp.status_code, order.get("order_id"))
            return False
    except Exception as e:
        logger.error("Failed to send order.created for %s: %s", order.get("order_id"), e)
        return False

    return True
