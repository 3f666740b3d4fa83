from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.checkout_session import (
    CheckoutSession,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    STATUS_PENDING,
)


def expiry_from_now(ttl_minutes: int, now: datetime | None = None) -> datetime:
    return (now or datetime.utcnow()) + timedelta(minutes=ttl_minutes)


async def insert_session(
    db: AsyncSession,
    *,
    checkout_id: str,
    product_id: int,
    plan_id: str | None,
    metadata: dict[str, Any] | None,
    expires_at: datetime,
) -> CheckoutSession:
    row = CheckoutSession(
        checkout_id=checkout_id,
        product_id=product_id,
        plan_id=plan_id,
        cart_metadata=metadata,
        expires_at=expires_at,
        status=STATUS_PENDING,
        created_at=datetime.utcnow(),
    )
    db.add(row)
    await db.commit()
    return row


async def rewrite_checkout_id(
    db: AsyncSession,
    *,
    placeholder_id: str,
    checkout_id: str,
) -> bool:
    """
    Swap the placeholder key for the provider's checkout id in place.
    UPDATE, not delete+insert, so metadata/product/expiry survive untouched.
    """
    res = await db.execute(
        update(CheckoutSession)
        .where(CheckoutSession.checkout_id == placeholder_id)
        .values(checkout_id=checkout_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (res.rowcount or 0) > 0


async def get_session(db: AsyncSession, checkout_id: str) -> CheckoutSession | None:
    res = await db.execute(
        select(CheckoutSession)
        .where(CheckoutSession.checkout_id == checkout_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def mark_completed(db: AsyncSession, checkout_id: str) -> bool:
    """
    pending -> completed. A second call finds nothing pending and is a no-op.
    """
    res = await db.execute(
        update(CheckoutSession)
        .where(
            CheckoutSession.checkout_id == checkout_id,
            CheckoutSession.status == STATUS_PENDING,
        )
        .values(status=STATUS_COMPLETED, completed_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (res.rowcount or 0) > 0


async def mark_expired(db: AsyncSession, checkout_id: str) -> bool:
    res = await db.execute(
        update(CheckoutSession)
        .where(
            CheckoutSession.checkout_id == checkout_id,
            CheckoutSession.status == STATUS_PENDING,
        )
        .values(status=STATUS_EXPIRED, completed_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (res.rowcount or 0) > 0


async def list_expired_pending(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    limit: int = 50,
) -> list[CheckoutSession]:
    res = await db.execute(
        select(CheckoutSession)
        .where(
            CheckoutSession.status == STATUS_PENDING,
            CheckoutSession.expires_at < (now or datetime.utcnow()),
        )
        .order_by(CheckoutSession.created_at.asc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())
