from __future__ import annotations

from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.api.v1.router import router as api_router
from storefront.core.config import settings
from storefront.core.errors import CheckoutError
from storefront.core.logging import get_logger, setup_logging
from storefront.core.secrets import SecretCache
from storefront.services.job_queue import init_redis_pool, close_redis_pool

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    app.state.secret_cache = SecretCache(ttl_seconds=settings.SECRET_CACHE_TTL_SECONDS)
    if settings.USE_ARQ_WORKER:
        await init_redis_pool()

    yield

    # Shutdown
    if settings.USE_ARQ_WORKER:
        await close_redis_pool()


app = FastAPI(title="Storefront Checkout API", lifespan=lifespan)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


app.include_router(api_router, prefix="/api/v1")
