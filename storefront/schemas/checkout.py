from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def coerce_amount(value: Any) -> float | None:
    """
    Parse a money amount coming from untrusted JSON.
    Returns None for missing / non-numeric / non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return num


def _as_text(value: Any) -> str | None:
    # Provider metadata round-trips through JSON; numbers show up where text was sent
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


class Addon(BaseModel):
    """
    A cart add-on (gift wrap, rush delivery, ...). Extra keys from the
    product form are kept as-is.
    """
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    price: float | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str | None:
        return _as_text(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v: Any) -> float | None:
        return coerce_amount(v)


def _dict_addons(value: Any) -> list:
    if not isinstance(value, list):
        return []
    return [a for a in value if isinstance(a, dict)]


class CartSnapshot(BaseModel):
    """
    Durable cart contents captured when the checkout session is created.
    The webhook payload is not guaranteed to echo this back, so the copy
    stored on the checkout session row is the source of truth.
    """
    model_config = ConfigDict(extra="allow")

    product_id: str | None = None
    product_title: str | None = None
    addons: list[Addon] = Field(default_factory=list)
    email: str = ""
    amount: float | None = None
    created_at: str | None = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id(cls, v: Any) -> str | None:
        if v is None or isinstance(v, bool):
            return None
        s = str(v).strip()
        return s or None

    @field_validator("product_title", "created_at", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str | None:
        return _as_text(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> float | None:
        return coerce_amount(v)

    @field_validator("addons", mode="before")
    @classmethod
    def _addons(cls, v: Any) -> list:
        return _dict_addons(v)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> str:
        return str(v).strip() if v else ""

    @classmethod
    def from_raw(cls, raw: Any) -> "CartSnapshot | None":
        """
        Validate metadata without ever losing product_id to a bad neighbour:
        failing fields (or single failing addons) are dropped, and as a last
        resort the snapshot carries product_id alone.
        """
        if not isinstance(raw, dict):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            errors = e.errors()

        bad_keys = {err["loc"][0] for err in errors if err["loc"] and err["loc"][0] != "addons"}
        bad_addons = {
            err["loc"][1]
            for err in errors
            if len(err["loc"]) > 1 and err["loc"][0] == "addons" and isinstance(err["loc"][1], int)
        }

        cleaned = {k: v for k, v in raw.items() if k == "product_id" or k not in bad_keys}
        if "addons" in cleaned:
            cleaned["addons"] = [
                a for i, a in enumerate(_dict_addons(cleaned["addons"])) if i not in bad_addons
            ]
        try:
            return cls.model_validate(cleaned)
        except ValidationError:
            return cls(product_id=raw.get("product_id"))

    @property
    def product_id_int(self) -> int | None:
        if not self.product_id:
            return None
        try:
            pid = int(float(self.product_id))
        except (ValueError, OverflowError):
            return None
        return pid if pid > 0 else None

    def addons_payload(self) -> list[dict[str, Any]]:
        return [a.model_dump(exclude_none=True) for a in self.addons]

    def to_storage(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data["addons"] = self.addons_payload()
        return data


def build_cart_snapshot(
    *,
    product_id: int,
    product_title: str | None,
    addons: list[dict[str, Any]] | None,
    email: str | None,
    amount: float,
) -> CartSnapshot:
    return CartSnapshot(
        product_id=str(product_id),
        product_title=product_title,
        addons=addons or [],
        email=email or "",
        amount=amount,
        created_at=datetime.utcnow().isoformat() + "Z",
    )


# -----------------------------
# Request / response bodies
# -----------------------------
class CheckoutRequestMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    addons: list[dict[str, Any]] = Field(default_factory=list)
    deliveryTimeMinutes: int | None = None
    couponCode: str | None = None

    @field_validator("addons", mode="before")
    @classmethod
    def _addons(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [a for a in v if isinstance(a, dict)]

    @field_validator("deliveryTimeMinutes", mode="before")
    @classmethod
    def _delivery(cls, v: Any) -> int | None:
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None


class CreateCheckoutRequest(BaseModel):
    # Validated in the service so missing fields get the documented 400s
    product_id: Any = None
    amount: Any = None
    email: str | None = None
    metadata: CheckoutRequestMetadata = Field(default_factory=CheckoutRequestMetadata)


class CreateStaticCheckoutRequest(BaseModel):
    product_id: Any = None


class DynamicCheckoutResult(BaseModel):
    success: bool = True
    plan_id: str
    checkout_id: str | None = None
    checkout_url: str | None = None
    product_id: int
    email: str | None = None
    metadata: dict[str, Any]
    expires_in: str
    email_prefilled: bool = False
    warning: str | None = None


class StaticCheckoutResult(BaseModel):
    success: bool = True
    checkout_id: str
    checkout_url: str | None = None
    expires_in: str
