from __future__ import annotations

import enum
import json
import time
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings
from storefront.core.logging import get_logger
from storefront.models.payment_gateway import PaymentGateway
from storefront.models.setting import Setting

logger = get_logger(__name__)

PROVIDER_NAME = "whop"


class SecretKind(str, enum.Enum):
    API_KEY = "api_key"
    WEBHOOK_SECRET = "webhook_secret"


# kind -> (Settings attribute, payment_gateways column, legacy blob field)
_SOURCES = {
    SecretKind.API_KEY: ("WHOP_API_KEY", "whop_api_key", "api_key"),
    SecretKind.WEBHOOK_SECRET: ("WHOP_WEBHOOK_SECRET", "webhook_secret", "webhook_secret"),
}


class SecretCache:
    """
    TTL cache for secrets read from the database.
    Built once at startup and injected; tests build their own.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: dict[str, tuple[float, str]] = {}

    def get(self, key: str) -> str | None:
        item = self._items.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at > self.ttl_seconds:
            self._items.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str) -> None:
        self._items[key] = (self._clock(), value)

    def invalidate(self) -> None:
        self._items.clear()


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


class SecretResolver:
    """
    Resolve provider secrets and defaults. First non-empty source wins:

      1. process environment (Settings)
      2. latest enabled `payment_gateways` row for the provider
      3. legacy `settings` JSON blob keyed by provider name

    Read-only. A failing tier counts as "absent" and the next one is tried.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        settings: Settings,
        cache: SecretCache | None = None,
    ):
        self.db = db
        self.settings = settings
        self.cache = cache

    async def resolve(self, kind: SecretKind | str) -> str | None:
        kind = SecretKind(kind)
        env_attr, gateway_column, legacy_field = _SOURCES[kind]

        value = _clean(getattr(self.settings, env_attr, None))
        if value:
            return value

        cache_key = f"{PROVIDER_NAME}:{kind.value}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached:
                return cached

        value = await self._from_gateway(gateway_column)
        if not value:
            value = _clean((await self.legacy_settings()).get(legacy_field))

        if value and self.cache is not None:
            self.cache.set(cache_key, value)
        return value

    async def api_key(self) -> str | None:
        return await self.resolve(SecretKind.API_KEY)

    async def webhook_secret(self) -> str | None:
        return await self.resolve(SecretKind.WEBHOOK_SECRET)

    async def _latest_gateway(self, column: str) -> PaymentGateway | None:
        col = getattr(PaymentGateway, column)
        res = await self.db.execute(
            select(PaymentGateway)
            .where(
                PaymentGateway.gateway_type == PROVIDER_NAME,
                PaymentGateway.is_enabled.is_(True),
                col.is_not(None),
                col != "",
            )
            .order_by(PaymentGateway.created_at.desc(), PaymentGateway.id.desc())
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def _from_gateway(self, column: str) -> str | None:
        try:
            gw = await self._latest_gateway(column)
        except Exception as e:
            logger.warning("payment_gateways lookup failed (%s): %s", column, e)
            return None
        return _clean(getattr(gw, column)) if gw else None

    async def legacy_settings(self) -> dict[str, Any]:
        """
        Parse the legacy `settings.whop` blob. Malformed -> {}.
        """
        try:
            res = await self.db.execute(select(Setting.value).where(Setting.key == PROVIDER_NAME))
            raw = res.scalar_one_or_none()
        except Exception as e:
            logger.warning("Legacy settings lookup failed: %s", e)
            return {}

        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Legacy %s settings blob is not valid JSON", PROVIDER_NAME)
            return {}
        return data if isinstance(data, dict) else {}

    async def default_provider_product_id(self) -> str | None:
        value = _clean((await self.legacy_settings()).get("default_product_id"))
        if value:
            return value
        return await self._from_gateway("whop_product_id")

    async def default_plan_id(self) -> str | None:
        legacy = await self.legacy_settings()
        return _clean(legacy.get("default_plan_id")) or _clean(legacy.get("default_plan"))

    async def notification_url(self) -> str | None:
        value = _clean(self.settings.NOTIFY_WEBHOOK_URL)
        if value:
            return value
        return _clean((await self.legacy_settings()).get("google_webapp_url"))
