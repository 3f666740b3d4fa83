import os

# Keep the app from dialing Redis while tests import it
os.environ.setdefault("USE_ARQ_WORKER", "false")

import json
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.api.deps import get_settings
from storefront.core.config import Settings
from storefront.core.secrets import SecretCache, SecretResolver
from storefront.db.base import Base, import_models
from storefront.db.session import get_async_db
from storefront.main import app
from storefront.models.product import Product
from storefront.services.whop_client import make_client_factory

import_models()


class FakeWhop:
    """
    In-memory stand-in for the Whop REST API behind httpx.MockTransport.

    `fail[(METHOD, resource)]` makes a call fail: an int answers with that
    status, an exception instance is raised as a transport error.
    """

    def __init__(self):
        self.requests: list[tuple[str, str, Any]] = []
        self.fail: dict[tuple[str, str], Any] = {}
        self._plans = 0
        self._checkouts = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, resource: str) -> list[tuple[str, str, Any]]:
        return [r for r in self.requests if r[0] == method and r[1].startswith(resource)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.split("/api/v2/", 1)[-1]
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        resource = path.split("/", 1)[0]
        failure = self.fail.get((request.method, resource))
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure, json={"message": f"{resource} unavailable"})

        if request.method == "POST" and path == "plans":
            self._plans += 1
            return httpx.Response(201, json={"id": f"plan_{self._plans}", **(body or {})})

        if request.method == "POST" and path == "checkout_sessions":
            self._checkouts += 1
            cid = f"ch_{self._checkouts}"
            return httpx.Response(
                201,
                json={"id": cid, "purchase_url": f"https://whop.com/checkout/{cid}", "plan_id": body["plan_id"]},
            )

        if request.method == "GET" and path == "plans":
            return httpx.Response(200, json={"data": [{"id": "plan_existing"}]})

        return httpx.Response(200, json={})


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        USE_ARQ_WORKER=False,
        WHOP_API_KEY="whop_test_key",
        WHOP_WEBHOOK_SECRET="",
        WHOP_COMPANY_ID="biz_test",
        WHOP_CURRENCY="usd",
        WHOP_API_BASE="https://api.whop.com/api/v2",
        CHECKOUT_TTL_MINUTES=15,
        NOTIFY_WEBHOOK_URL="",
        ADMIN_API_ENABLED=True,
        ADMIN_KEY="admin-secret",
    )


@pytest.fixture
async def db_engine():
    """In-memory SQLite shared across connections for one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
async def db_session(db_session_factory):
    async with db_session_factory() as session:
        yield session


@pytest.fixture
async def product(db_session: AsyncSession) -> Product:
    row = Product(
        id=7,
        title="Birthday Shoutout Video",
        normal_price=5000,
        sale_price=4200,
        whop_product_id="prod_video",
        whop_plan="https://whop.com/checkout/plan_FixedABC?ref=shop",
    )
    db_session.add(row)
    await db_session.commit()
    return row


@pytest.fixture
def fake_whop() -> FakeWhop:
    return FakeWhop()


@pytest.fixture
def client_factory(test_settings, fake_whop):
    return make_client_factory(test_settings, transport=fake_whop.transport)


@pytest.fixture
def resolver(db_session, test_settings) -> SecretResolver:
    return SecretResolver(db_session, settings=test_settings, cache=SecretCache())


@pytest.fixture
async def api_client(db_session_factory, test_settings, fake_whop):
    async def _get_db():
        async with db_session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.state.whop_transport = fake_whop.transport
    app.state.secret_cache = SecretCache()

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://shop.test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.whop_transport = None
    app.state.notify_transport = None
