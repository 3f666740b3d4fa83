from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import (
    get_secret_resolver,
    get_settings,
    get_whop_client_factory,
    request_origin,
)
from storefront.core.config import Settings
from storefront.core.errors import ClientInputError
from storefront.core.secrets import SecretResolver
from storefront.db.session import get_async_db
from storefront.schemas.checkout import (
    CreateCheckoutRequest,
    CreateStaticCheckoutRequest,
    DynamicCheckoutResult,
    StaticCheckoutResult,
)
from storefront.schemas.intent import load_intent
from storefront.services.checkout_service import create_dynamic_checkout, create_static_checkout
from storefront.services.whop_client import WhopClientFactory

router = APIRouter(prefix="/checkout")


@router.post("/create", response_model=DynamicCheckoutResult, response_model_exclude_none=True)
async def create_checkout(
    body: CreateCheckoutRequest,
    origin: str = Depends(request_origin),
    db: AsyncSession = Depends(get_async_db),
    resolver: SecretResolver = Depends(get_secret_resolver),
    client_factory: WhopClientFactory = Depends(get_whop_client_factory),
    settings: Settings = Depends(get_settings),
):
    """
    Dynamic plan flow: one-time plan at the cart total + hosted checkout.
    """
    return await create_dynamic_checkout(
        db,
        resolver=resolver,
        client_factory=client_factory,
        settings=settings,
        product_id=body.product_id,
        amount=body.amount,
        email=body.email,
        cart_metadata=body.metadata.model_dump(),
        redirect_origin=origin,
    )


@router.post("/create-static", response_model=StaticCheckoutResult)
async def create_checkout_for_existing_plan(
    body: CreateStaticCheckoutRequest,
    origin: str = Depends(request_origin),
    db: AsyncSession = Depends(get_async_db),
    resolver: SecretResolver = Depends(get_secret_resolver),
    client_factory: WhopClientFactory = Depends(get_whop_client_factory),
    settings: Settings = Depends(get_settings),
):
    return await create_static_checkout(
        db,
        resolver=resolver,
        client_factory=client_factory,
        settings=settings,
        product_id=body.product_id,
        redirect_origin=origin,
    )


@router.post("/resume", response_model=DynamicCheckoutResult, response_model_exclude_none=True)
async def resume_checkout_from_intent(
    raw_intent: dict[str, Any] = Body(...),
    origin: str = Depends(request_origin),
    db: AsyncSession = Depends(get_async_db),
    resolver: SecretResolver = Depends(get_secret_resolver),
    client_factory: WhopClientFactory = Depends(get_whop_client_factory),
    settings: Settings = Depends(get_settings),
):
    """
    Replay the checkout intent the browser cached on the product page.
    """
    intent = load_intent(raw_intent)
    if intent is None:
        raise ClientInputError("Checkout intent expired or invalid")

    body = CreateCheckoutRequest.model_validate(intent.to_checkout_request())
    return await create_dynamic_checkout(
        db,
        resolver=resolver,
        client_factory=client_factory,
        settings=settings,
        product_id=body.product_id,
        amount=body.amount,
        email=body.email,
        cart_metadata=body.metadata.model_dump(),
        redirect_origin=origin,
    )
