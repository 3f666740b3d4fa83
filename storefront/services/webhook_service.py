from __future__ import annotations

import secrets
import time
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.logging import get_logger
from storefront.core.secrets import SecretResolver
from storefront.models.order import Order
from storefront.models.webhook_event import WebhookEvent
from storefront.schemas.checkout import CartSnapshot, coerce_amount
from storefront.services import checkout_session_store as store
from storefront.services import job_queue
from storefront.services.cleanup_service import cleanup_remote_checkout
from storefront.services.metadata_hydration import hydrate_metadata
from storefront.services.notification_service import build_order_notification, notify_order_created
from storefront.services.whop_client import WhopClientFactory

logger = get_logger(__name__)

PAYMENT_SUCCEEDED = "payment.succeeded"
MEMBERSHIP_WENT_VALID = "membership.went_valid"

_ORDER_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_order_id(now_ms: int | None = None) -> str:
    """WHOP-<epochMillis>-<9 random base36 chars>"""
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(9))
    return f"WHOP-{ms}-{suffix}"


def _buyer_email(snapshot: CartSnapshot, data: dict[str, Any]) -> str:
    if snapshot.email:
        return snapshot.email
    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    return str(data.get("email") or user.get("email") or "")


def _order_amount(snapshot: CartSnapshot, data: dict[str, Any]) -> float:
    if snapshot.amount:
        return snapshot.amount
    return coerce_amount(data.get("final_amount")) or 0


async def record_event(db: AsyncSession, payload: dict[str, Any]) -> None:
    """Audit trail only; losing a row here must not fail the webhook."""
    try:
        db.add(
            WebhookEvent(
                event_id=str(payload.get("id") or payload.get("event_id") or "unknown"),
                event_type=str(payload.get("type") or ""),
                payload=payload,
            )
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.warning("Webhook event audit insert failed: %s", e)


async def _dispatch_remote_cleanup(
    *,
    resolver: SecretResolver,
    client_factory: WhopClientFactory,
    settings: Settings,
    checkout_id: str | None,
    plan_id: str | None,
) -> dict[str, Any]:
    try:
        if settings.USE_ARQ_WORKER:
            try:
                return await job_queue.enqueue_remote_cleanup(checkout_id, plan_id)
            except Exception as e:
                logger.warning("Could not enqueue cleanup for %s, running inline: %s", checkout_id, e)

        api_key = await resolver.api_key()
        return await cleanup_remote_checkout(
            client_factory=client_factory,
            api_key=api_key,
            checkout_id=checkout_id,
            plan_id=plan_id,
        )
    except Exception as e:
        logger.error("Remote cleanup dispatch failed for %s: %s", checkout_id, e)
        return {"queued": False, "error": str(e)}


async def _dispatch_notification(
    *,
    resolver: SecretResolver,
    settings: Settings,
    order: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    try:
        url = await resolver.notification_url()
        if not url:
            return {"queued": False, "sent": False}

        if settings.USE_ARQ_WORKER:
            try:
                return await job_queue.enqueue_order_notification(order, url)
            except Exception as e:
                logger.warning("Could not enqueue order.created for %s, sending inline: %s", order["order_id"], e)

        sent = await notify_order_created(order, url=url, transport=transport)
        return {"queued": False, "sent": sent}
    except Exception as e:
        logger.error("order.created dispatch failed for %s: %s", order.get("order_id"), e)
        return {"queued": False, "error": str(e)}


async def handle_payment_event(
    db: AsyncSession,
    *,
    payload: dict[str, Any],
    origin: str | None,
    resolver: SecretResolver,
    client_factory: WhopClientFactory,
    settings: Settings,
    notify_transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """
    Fulfil a Whop webhook delivery.

      A. hydrate metadata from the stored checkout session (fill gaps only)
      B. pending -> completed on the session (idempotent)
      C. delete the remote checkout session + plan (background, best-effort)
      D. create the order, only when a product_id survived hydration
      E. order.created notification (background, best-effort)

    Duplicate deliveries: B and C are idempotent, D is not. There is no
    processed-event ledger; webhook_events records every delivery.
    Unexpected errors propagate so the route can answer 500 and Whop retries.
    """
    await record_event(db, payload)

    event_type = payload.get("type")
    if event_type != PAYMENT_SUCCEEDED:
        if event_type == MEMBERSHIP_WENT_VALID:
            logger.info("Membership validated: %s", (payload.get("data") or {}).get("id"))
        else:
            logger.info("Ignoring Whop webhook type %s", event_type)
        return {"received": True, "ignored": True}

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    checkout_id = data.get("checkout_session_id")
    logger.info("Payment succeeded: checkout=%s membership=%s", checkout_id, data.get("id"))

    # A
    hydration = await hydrate_metadata(
        db,
        checkout_id=checkout_id,
        metadata=data.get("metadata"),
        plan_id=data.get("plan_id"),
    )
    session = hydration.session

    # B
    if session is not None:
        await store.mark_completed(db, session.checkout_id)
    elif checkout_id:
        await store.mark_completed(db, checkout_id)

    # C
    if checkout_id:
        await _dispatch_remote_cleanup(
            resolver=resolver,
            client_factory=client_factory,
            settings=settings,
            checkout_id=checkout_id,
            plan_id=session.plan_id if session is not None else None,
        )

    # D
    snapshot = hydration.snapshot
    product_id = snapshot.product_id_int if snapshot is not None else None
    if product_id is None:
        logger.warning("payment.succeeded for %s has no product_id; no order created", checkout_id)
        return {"received": True, "order_id": None}

    order_id = generate_order_id()
    email = _buyer_email(snapshot, data)
    amount = _order_amount(snapshot, data)
    addons = snapshot.addons_payload()

    db.add(
        Order(
            order_id=order_id,
            product_id=product_id,
            encrypted_data={
                "email": email,
                "amount": amount,
                "productId": snapshot.product_id,
                "addons": addons,
            },
            status="completed",
        )
    )
    await db.commit()
    logger.info("Order created: %s product=%s addons=%d", order_id, product_id, len(addons))

    # E
    await _dispatch_notification(
        resolver=resolver,
        settings=settings,
        order=build_order_notification(
            order_id=order_id,
            product_id=product_id,
            email=email,
            amount=amount,
            origin=origin,
        ),
        transport=notify_transport,
    )

    return {"received": True, "order_id": order_id}
