from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from storefront.schemas.checkout import coerce_amount

INTENT_TTL = timedelta(minutes=45)


class CheckoutIntent(BaseModel):
    """
    What the browser says the buyer is trying to purchase.

    Cached client-side (storage fallbacks, 45 minute TTL) and replayed to the
    checkout page. Every field is untrusted: amount/addons are for display
    only and the server re-derives the charge.
    """
    model_config = ConfigDict(extra="ignore")

    productId: int
    amount: float | None = None
    originalAmount: float | None = None
    email: str = ""
    addons: list[dict[str, Any]] = Field(default_factory=list)
    coupon: str | None = None
    deliveryTimeMinutes: int | None = None
    preferredMethod: str | None = None
    availableMethods: list[str] = Field(default_factory=list)
    savedAt: datetime | None = None

    @field_validator("amount", "originalAmount", mode="before")
    @classmethod
    def _money(cls, v: Any) -> float | None:
        return coerce_amount(v)

    @field_validator("addons", mode="before")
    @classmethod
    def _addons(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [a for a in v if isinstance(a, dict)]

    @field_validator("availableMethods", mode="before")
    @classmethod
    def _methods(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [str(m) for m in v if m]

    def is_stale(self, now: datetime) -> bool:
        if self.savedAt is None:
            return True
        saved = self.savedAt
        if saved.tzinfo is not None:
            saved = saved.astimezone(timezone.utc).replace(tzinfo=None)
        return now - saved > INTENT_TTL

    def to_checkout_request(self) -> dict[str, Any]:
        """Body for POST /checkout/create."""
        return {
            "product_id": self.productId,
            "amount": self.amount,
            "email": self.email or None,
            "metadata": {
                "addons": self.addons,
                "deliveryTimeMinutes": self.deliveryTimeMinutes,
                "couponCode": self.coupon,
            },
        }


def load_intent(raw: Any, now: datetime | None = None) -> CheckoutIntent | None:
    """
    Parse a cached intent. Unparseable or older-than-TTL entries are discarded.
    `now` is naive UTC.
    """
    if not isinstance(raw, dict):
        return None
    try:
        intent = CheckoutIntent.model_validate(raw)
    except ValidationError:
        return None

    if intent.is_stale(now or datetime.utcnow()):
        return None

    if intent.preferredMethod and intent.availableMethods:
        if intent.preferredMethod not in intent.availableMethods:
            intent.preferredMethod = intent.availableMethods[0]

    return intent
