from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.errors import ClientInputError, ConfigurationError, ProviderError
from storefront.core.logging import get_logger
from storefront.core.secrets import SecretResolver
from storefront.models.checkout_session import placeholder_checkout_id
from storefront.models.product import Product
from storefront.schemas.checkout import (
    CartSnapshot,
    DynamicCheckoutResult,
    StaticCheckoutResult,
    build_cart_snapshot,
    coerce_amount,
)
from storefront.services import checkout_session_store as store
from storefront.services.whop_client import WhopClientFactory

logger = get_logger(__name__)

PLAN_ID_RE = re.compile(r"plan_[a-zA-Z0-9]+")


def resolve_price(amount: Any, base_price: float) -> float:
    """
    Client total (base + addons - coupon) when it is a usable positive number,
    otherwise the catalog price. A garbled client amount must not block checkout.
    """
    client_amount = coerce_amount(amount)
    price = client_amount if client_amount is not None and client_amount > 0 else coerce_amount(base_price)

    if price is None or price < 0:
        raise ClientInputError("Invalid price")
    return price


def format_price(price: float) -> str:
    if float(price).is_integer():
        return str(int(price))
    return f"{price:.2f}"


def normalize_plan_id(plan_id: str | None) -> str:
    """
    Accept `plan_XXX` or a checkout link containing it.
    """
    if not plan_id or not str(plan_id).strip():
        raise ClientInputError(
            "Whop not configured. Please set a plan for this product or configure a default plan in Settings."
        )

    normalized = str(plan_id).strip()
    if normalized.startswith("http"):
        match = PLAN_ID_RE.search(normalized)
        if not match:
            raise ClientInputError(
                "Could not extract Plan ID from link. Use https://whop.com/checkout/plan_XXXXX or plan_XXXXX"
            )
        normalized = match.group(0)

    if not normalized.startswith("plan_"):
        raise ClientInputError("Invalid Whop Plan ID format. Should start with plan_")
    return normalized


async def _load_product(db: AsyncSession, product_id: Any) -> Product:
    if product_id is None or str(product_id).strip() == "":
        raise ClientInputError("Product ID required")

    try:
        pid = int(str(product_id).strip())
    except ValueError:
        raise ClientInputError("Product not found")

    product = (
        await db.execute(select(Product).where(Product.id == pid))
    ).scalar_one_or_none()
    if not product:
        raise ClientInputError("Product not found")
    return product


async def _require_api_key(resolver: SecretResolver) -> str:
    api_key = await resolver.api_key()
    if not api_key:
        raise ConfigurationError("Whop API key not configured. Please add it in admin Settings.")
    return api_key


def build_plan_payload(
    product: Product,
    *,
    provider_product_id: str,
    company_id: str,
    price: float,
    currency: str,
) -> dict[str, Any]:
    return {
        "company_id": company_id,
        "product_id": provider_product_id,
        "plan_type": "one_time",
        "release_method": "buy_now",
        "currency": currency,
        "initial_price": price,
        "renewal_price": 0,
        "title": f"{product.title or 'One-time purchase'} - ${format_price(price)}",
        "stock": 999999,
        "one_per_user": False,
        "allow_multiple_quantity": True,
        "internal_notes": f"Auto-generated for product {product.id} - {datetime.utcnow().isoformat()}Z",
    }


def build_checkout_payload(
    *,
    plan_id: str,
    redirect_origin: str,
    product: Product,
    metadata: dict[str, Any],
    email: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "plan_id": plan_id,
        "redirect_url": f"{redirect_origin.rstrip('/')}/success.html?product={product.id}",
        "metadata": metadata,
    }
    if email and "@" in email:
        payload["prefill"] = {"email": email.strip()}
    return payload


def _public_metadata(snapshot: CartSnapshot) -> dict[str, Any]:
    return {
        "product_id": snapshot.product_id,
        "product_title": snapshot.product_title,
        "addons": snapshot.addons_payload(),
        "amount": snapshot.amount,
    }


async def create_dynamic_checkout(
    db: AsyncSession,
    *,
    resolver: SecretResolver,
    client_factory: WhopClientFactory,
    settings: Settings,
    product_id: Any,
    amount: Any,
    email: str | None,
    cart_metadata: dict[str, Any] | None,
    redirect_origin: str,
) -> DynamicCheckoutResult:
    """
    Dynamic one-time plan + hosted checkout for a single purchase attempt.

    Order of work matters:
      1. resolve the Whop product (product -> global default)
      2. relax one_per_user on it (best-effort)
      3. create the plan at the exact total            (failure is terminal)
      4. store the session under `plan_<planId>`       (before step 5)
      5. create the hosted checkout, rewrite the key   (failure is NOT terminal)
    """
    product = await _load_product(db, product_id)
    price = resolve_price(amount, product.base_price)

    provider_product_id = (product.whop_product_id or "").strip()
    if not provider_product_id:
        provider_product_id = await resolver.default_provider_product_id() or ""
    if not provider_product_id:
        raise ClientInputError(
            "whop_product_id not configured for this product and no default_product_id set"
        )

    company_id = (settings.WHOP_COMPANY_ID or "").strip()
    if not company_id:
        raise ConfigurationError("WHOP_COMPANY_ID environment variable not set")

    api_key = await _require_api_key(resolver)

    addons = (cart_metadata or {}).get("addons") or []
    snapshot = build_cart_snapshot(
        product_id=product.id,
        product_title=product.title,
        addons=addons if isinstance(addons, list) else [],
        email=email,
        amount=price,
    )
    expires_in = f"{settings.CHECKOUT_TTL_MINUTES} minutes"

    async with client_factory(api_key) as whop:
        try:
            await whop.update_product(provider_product_id, one_per_user=False)
        except Exception as e:
            logger.warning("Whop product update skipped for %s: %s", provider_product_id, e)

        plan = await whop.create_plan(
            build_plan_payload(
                product,
                provider_product_id=provider_product_id,
                company_id=company_id,
                price=price,
                currency=settings.WHOP_CURRENCY,
            )
        )
        plan_id = plan.get("id")
        if not plan_id:
            raise ProviderError("Plan ID missing from Whop response", status_code=500)

        placeholder = placeholder_checkout_id(plan_id)
        try:
            await store.insert_session(
                db,
                checkout_id=placeholder,
                product_id=product.id,
                plan_id=plan_id,
                metadata=snapshot.to_storage(),
                expires_at=store.expiry_from_now(settings.CHECKOUT_TTL_MINUTES),
            )
        except Exception:
            await db.rollback()
            logger.exception("Checkout session insert failed for plan %s", plan_id)

        try:
            checkout = await whop.create_checkout_session(
                build_checkout_payload(
                    plan_id=plan_id,
                    redirect_origin=redirect_origin,
                    product=product,
                    metadata=snapshot.to_storage(),
                    email=email,
                )
            )
        except ProviderError as e:
            # The plan is committed; hand it back so the caller can retry or switch method
            logger.error("Whop checkout session create failed for plan %s: %s", plan_id, e.message)
            return DynamicCheckoutResult(
                plan_id=plan_id,
                product_id=product.id,
                email=email,
                metadata=_public_metadata(snapshot),
                expires_in=expires_in,
                warning="Email prefill not available",
            )

    checkout_id = checkout.get("id")
    if checkout_id:
        try:
            await store.rewrite_checkout_id(db, placeholder_id=placeholder, checkout_id=checkout_id)
        except Exception:
            await db.rollback()
            logger.exception("Checkout id rewrite failed %s -> %s", placeholder, checkout_id)

    logger.info("Dynamic checkout created plan=%s checkout=%s product=%s", plan_id, checkout_id, product.id)

    return DynamicCheckoutResult(
        plan_id=plan_id,
        checkout_id=checkout_id,
        checkout_url=checkout.get("purchase_url"),
        product_id=product.id,
        email=email,
        metadata=_public_metadata(snapshot),
        expires_in=expires_in,
        email_prefilled=bool(email and "@" in email),
    )


async def create_static_checkout(
    db: AsyncSession,
    *,
    resolver: SecretResolver,
    client_factory: WhopClientFactory,
    settings: Settings,
    product_id: Any,
    redirect_origin: str,
) -> StaticCheckoutResult:
    """
    Hosted checkout against a pre-configured plan (product plan -> default plan).
    These plans are shared, so the session row gets no plan_id and cleanup never deletes them.
    """
    product = await _load_product(db, product_id)

    plan_id = product.whop_plan or await resolver.default_plan_id()
    plan_id = normalize_plan_id(plan_id)

    api_key = await _require_api_key(resolver)

    expires_at = store.expiry_from_now(settings.CHECKOUT_TTL_MINUTES)
    snapshot = CartSnapshot(
        product_id=str(product.id),
        product_title=product.title,
        created_at=datetime.utcnow().isoformat() + "Z",
    )
    remote_metadata = snapshot.to_storage()
    remote_metadata["expires_at"] = expires_at.isoformat() + "Z"

    async with client_factory(api_key) as whop:
        checkout = await whop.create_checkout_session(
            build_checkout_payload(
                plan_id=plan_id,
                redirect_origin=redirect_origin,
                product=product,
                metadata=remote_metadata,
            )
        )

    checkout_id = checkout.get("id")
    if not checkout_id:
        raise ProviderError("Checkout ID missing from Whop response", status_code=500)

    try:
        await store.insert_session(
            db,
            checkout_id=checkout_id,
            product_id=product.id,
            plan_id=None,
            metadata=snapshot.to_storage(),
            expires_at=expires_at,
        )
    except Exception:
        await db.rollback()
        logger.warning("Checkout tracking skipped for %s", checkout_id, exc_info=True)

    return StaticCheckoutResult(
        checkout_id=checkout_id,
        checkout_url=checkout.get("purchase_url"),
        expires_in=f"{settings.CHECKOUT_TTL_MINUTES} minutes",
    )
