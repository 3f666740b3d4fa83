from datetime import datetime, timedelta

import httpx
import pytest

from storefront.core.errors import ConfigurationError
from storefront.models.checkout_session import STATUS_EXPIRED, STATUS_PENDING
from storefront.services import checkout_session_store as store
from storefront.services.cleanup_service import cleanup_remote_checkout, sweep_expired


async def _expired(db, checkout_id, plan_id=None, minutes_ago=30):
    await store.insert_session(
        db,
        checkout_id=checkout_id,
        product_id=7,
        plan_id=plan_id,
        metadata={"product_id": "7"},
        expires_at=datetime.utcnow() - timedelta(minutes=minutes_ago),
    )


async def test_remote_cleanup_deletes_session_and_plan(client_factory, fake_whop):
    result = await cleanup_remote_checkout(
        client_factory=client_factory, api_key="k", checkout_id="ch_1", plan_id="plan_1"
    )

    assert result["session_deleted"] is True
    assert result["plan_deleted"] is True
    assert {r[1] for r in fake_whop.requests} == {"checkout_sessions/ch_1", "plans/plan_1"}


async def test_remote_cleanup_treats_404_as_deleted(client_factory, fake_whop):
    fake_whop.fail[("DELETE", "checkout_sessions")] = 404

    result = await cleanup_remote_checkout(
        client_factory=client_factory, api_key="k", checkout_id="ch_1", plan_id=None
    )
    assert result["session_deleted"] is True


async def test_remote_cleanup_never_raises(client_factory, fake_whop):
    fake_whop.fail[("DELETE", "checkout_sessions")] = httpx.ConnectError("down")
    fake_whop.fail[("DELETE", "plans")] = 500

    result = await cleanup_remote_checkout(
        client_factory=client_factory, api_key="k", checkout_id="ch_1", plan_id="plan_1"
    )
    assert result["session_deleted"] is False
    assert result["plan_deleted"] is False


async def test_remote_cleanup_skips_placeholder_session(client_factory, fake_whop):
    result = await cleanup_remote_checkout(
        client_factory=client_factory, api_key="k", checkout_id="plan_plan_1", plan_id="plan_1"
    )

    assert result["session_deleted"] is True
    assert [r[1] for r in fake_whop.requests] == ["plans/plan_1"]


async def test_remote_cleanup_without_api_key(client_factory, fake_whop):
    result = await cleanup_remote_checkout(
        client_factory=client_factory, api_key=None, checkout_id="ch_1", plan_id="plan_1"
    )
    assert result["skipped"] is True
    assert fake_whop.requests == []


async def test_sweep_expires_stale_pending_sessions(db_session, resolver, client_factory, fake_whop, test_settings):
    await _expired(db_session, "ch_a", plan_id="plan_a")
    await _expired(db_session, "ch_b")
    await _expired(db_session, "ch_fresh", minutes_ago=-10)

    result = await sweep_expired(
        db_session, resolver=resolver, client_factory=client_factory, settings=test_settings
    )

    assert result == {
        "success": True,
        "deleted": 2,
        "failed": 0,
        "message": "Cleaned up 2 expired checkouts",
    }
    assert (await store.get_session(db_session, "ch_a")).status == STATUS_EXPIRED
    assert (await store.get_session(db_session, "ch_b")).status == STATUS_EXPIRED
    assert (await store.get_session(db_session, "ch_fresh")).status == STATUS_PENDING
    assert ("DELETE", "plans/plan_a", None) in fake_whop.requests


async def test_sweep_leaves_row_pending_when_remote_delete_fails(
    db_session, resolver, client_factory, fake_whop, test_settings
):
    await _expired(db_session, "ch_a")
    fake_whop.fail[("DELETE", "checkout_sessions")] = 500

    result = await sweep_expired(
        db_session, resolver=resolver, client_factory=client_factory, settings=test_settings
    )

    assert result["deleted"] == 0
    assert result["failed"] == 1
    assert (await store.get_session(db_session, "ch_a")).status == STATUS_PENDING


async def test_sweep_runs_in_batches(db_session, resolver, client_factory, fake_whop, test_settings):
    for i in range(7):
        await _expired(db_session, f"ch_{i}")

    result = await sweep_expired(
        db_session, resolver=resolver, client_factory=client_factory, settings=test_settings, batch_size=3
    )

    assert result["deleted"] == 7
    assert len(fake_whop.calls("DELETE", "checkout_sessions")) == 7


async def test_sweep_with_nothing_to_do(db_session, resolver, client_factory, test_settings):
    result = await sweep_expired(
        db_session, resolver=resolver, client_factory=client_factory, settings=test_settings
    )
    assert result == {"success": True, "deleted": 0, "failed": 0, "message": "No expired checkouts"}


async def test_sweep_requires_api_key(db_session, resolver, client_factory, test_settings):
    test_settings.WHOP_API_KEY = ""

    with pytest.raises(ConfigurationError):
        await sweep_expired(db_session, resolver=resolver, client_factory=client_factory, settings=test_settings)
