import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import (
    get_secret_resolver,
    get_settings,
    get_whop_client_factory,
    request_origin,
)
from storefront.core.config import Settings
from storefront.core.logging import get_logger
from storefront.core.secrets import SecretResolver
from storefront.db.session import get_async_db
from storefront.services.webhook_service import handle_payment_event
from storefront.services.webhook_signature import InvalidSignature, verify_signature
from storefront.services.whop_client import WhopClientFactory

router = APIRouter(prefix="/webhook")

logger = get_logger(__name__)


@router.post("/payment")
async def payment_webhook(
    request: Request,
    origin: str = Depends(request_origin),
    db: AsyncSession = Depends(get_async_db),
    resolver: SecretResolver = Depends(get_secret_resolver),
    client_factory: WhopClientFactory = Depends(get_whop_client_factory),
    settings: Settings = Depends(get_settings),
):
    body = await request.body()

    # Rejections before processing starts; after this point every failure is a 500
    secret = await resolver.webhook_secret()
    if secret:
        try:
            verify_signature(
                body,
                request.headers,
                secret,
                tolerance_seconds=settings.WEBHOOK_TOLERANCE_SECONDS,
            )
        except InvalidSignature as e:
            logger.warning("Rejected webhook: %s", e)
            return JSONResponse({"error": "Invalid webhook signature"}, status_code=401)
    else:
        logger.warning("Whop webhook secret not configured; accepting unsigned webhook")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)

    try:
        result = await handle_payment_event(
            db,
            payload=payload,
            origin=origin,
            resolver=resolver,
            client_factory=client_factory,
            settings=settings,
            notify_transport=getattr(request.app.state, "notify_transport", None),
        )
    except Exception:
        # Non-2xx makes Whop retry; a 4xx would drop a paid order
        logger.exception("Webhook processing failed")
        await db.rollback()
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    return result


@router.get("/test")
async def webhook_reachable():
    return {"success": True, "message": "Webhook endpoint reachable"}
