from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"

PLACEHOLDER_PREFIX = "plan_"


def placeholder_checkout_id(plan_id: str) -> str:
    """Local key used until the provider returns the real checkout id."""
    return f"{PLACEHOLDER_PREFIX}{plan_id}"


class CheckoutSession(Base):
    """
    One purchase attempt. Left in place after completion as an audit trail.
    """
    __tablename__ = "checkout_sessions"

    checkout_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Only set for dynamic-plan checkouts; never changes once written
    plan_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Cart snapshot; "metadata" is reserved on declarative classes
    cart_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=STATUS_PENDING,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<CheckoutSession id={self.checkout_id} status={self.status}>"
