from fastapi import APIRouter
from storefront.api.v1 import admin_checkout, checkout, health, webhook

router = APIRouter()
router.include_router(health.router)
router.include_router(checkout.router, tags=["checkout"])
router.include_router(webhook.router, tags=["payments"])

# Admin
router.include_router(admin_checkout.router, tags=["admin"])
