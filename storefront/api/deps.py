from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, settings as app_settings
from storefront.core.secrets import SecretCache, SecretResolver
from storefront.db.session import get_async_db
from storefront.services.whop_client import WhopClientFactory, make_client_factory


# -----------------------------
# Dependency: Settings
# -----------------------------
def get_settings() -> Settings:
    """
    Overridden in tests with a Settings instance built for the test.
    """
    return app_settings


# -----------------------------
# Dependency: Secret cache (one per process, set up in lifespan)
# -----------------------------
def get_secret_cache(request: Request) -> SecretCache:
    cache = getattr(request.app.state, "secret_cache", None)
    if cache is None:
        cache = SecretCache(ttl_seconds=app_settings.SECRET_CACHE_TTL_SECONDS)
        request.app.state.secret_cache = cache
    return cache


async def get_secret_resolver(
    db: AsyncSession = Depends(get_async_db),
    cache: SecretCache = Depends(get_secret_cache),
    settings: Settings = Depends(get_settings),
) -> SecretResolver:
    return SecretResolver(db, settings=settings, cache=cache)


# -----------------------------
# Dependency: Whop client factory
# -----------------------------
def get_whop_client_factory(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> WhopClientFactory:
    # app.state.whop_transport is only set by tests (httpx.MockTransport)
    transport = getattr(request.app.state, "whop_transport", None)
    return make_client_factory(settings, transport=transport)


def request_origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


# -----------------------------
# Dependency: Admin guard
# -----------------------------
def require_admin(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.ADMIN_API_ENABLED:
        raise HTTPException(status_code=404, detail="Admin API not enabled")
    if not settings.ADMIN_KEY:
        raise HTTPException(status_code=500, detail="ADMIN_KEY not configured")
    if not x_admin_key or x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=403, detail="Forbidden")
