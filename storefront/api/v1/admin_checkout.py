from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import (
    get_secret_resolver,
    get_settings,
    get_whop_client_factory,
    require_admin,
)
from storefront.core.config import Settings
from storefront.core.errors import ProviderError
from storefront.core.secrets import SecretResolver
from storefront.db.session import get_async_db
from storefront.services.cleanup_service import sweep_expired
from storefront.services.whop_client import WhopClientFactory

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.post("/checkout/cleanup")
async def admin_cleanup_expired_checkouts(
    db: AsyncSession = Depends(get_async_db),
    resolver: SecretResolver = Depends(get_secret_resolver),
    client_factory: WhopClientFactory = Depends(get_whop_client_factory),
    settings: Settings = Depends(get_settings),
):
    return await sweep_expired(
        db,
        resolver=resolver,
        client_factory=client_factory,
        settings=settings,
    )


@router.get("/provider/test")
async def admin_test_provider(
    resolver: SecretResolver = Depends(get_secret_resolver),
    client_factory: WhopClientFactory = Depends(get_whop_client_factory),
):
    api_key = await resolver.api_key()
    if not api_key:
        return JSONResponse(
            {"success": False, "error": "Whop API key not configured. Please add it in Settings."},
            status_code=500,
        )

    try:
        async with client_factory(api_key) as whop:
            data = await whop.list_plans(page=1, per=1)
    except ProviderError as e:
        return JSONResponse(
            {
                "success": False,
                "error": e.message,
                "status": e.status_code,
                "details": e.details,
            },
            status_code=e.status_code,
        )

    plans = data.get("data")
    return {
        "success": True,
        "message": "API connection successful!",
        "plans_count": len(plans) if isinstance(plans, list) else 0,
        "api_key_valid": True,
    }
