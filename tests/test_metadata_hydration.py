from storefront.services import checkout_session_store as store
from storefront.services.metadata_hydration import fill_gaps, hydrate_metadata, needs_hydration

STORED = {
    "product_id": "7",
    "product_title": "Birthday Shoutout Video",
    "addons": [{"name": "gift wrap", "price": 500}],
    "email": "a@b.com",
    "amount": 4700,
}


def test_needs_hydration():
    assert needs_hydration({})
    assert needs_hydration({"product_id": "7"})
    assert needs_hydration({"product_id": "7", "addons": []})
    assert needs_hydration({"addons": [{"name": "x"}]})
    assert not needs_hydration({"product_id": "7", "addons": [{"name": "x"}]})


def test_fill_gaps_keeps_supplied_values():
    merged = fill_gaps({"product_id": "7", "email": "", "addons": [], "amount": 10}, STORED)

    assert merged["product_id"] == "7"
    assert merged["amount"] == 10
    assert merged["email"] == "a@b.com"
    assert merged["addons"] == STORED["addons"]
    assert merged["product_title"] == "Birthday Shoutout Video"


async def _store(db, checkout_id="ch_1", plan_id="plan_1", metadata=None):
    await store.insert_session(
        db,
        checkout_id=checkout_id,
        product_id=7,
        plan_id=plan_id,
        metadata=STORED if metadata is None else metadata,
        expires_at=store.expiry_from_now(15),
    )


async def test_empty_payload_is_hydrated_from_stored_session(db_session):
    await _store(db_session)

    result = await hydrate_metadata(db_session, checkout_id="ch_1", metadata={})

    assert result.hydrated is True
    assert result.session.checkout_id == "ch_1"
    assert result.snapshot.product_id == "7"
    assert result.snapshot.amount == 4700
    assert result.snapshot.email == "a@b.com"
    assert result.snapshot.addons_payload() == [{"name": "gift wrap", "price": 500.0}]


async def test_complete_payload_is_left_alone(db_session):
    await _store(db_session)
    supplied = {"product_id": "7", "addons": [{"name": "rush", "price": 900}], "amount": 5100}

    result = await hydrate_metadata(db_session, checkout_id="ch_1", metadata=supplied)

    assert result.hydrated is False
    assert result.snapshot.amount == 5100
    assert result.snapshot.addons_payload() == [{"name": "rush", "price": 900.0}]


async def test_non_dict_metadata_counts_as_empty(db_session):
    await _store(db_session)

    result = await hydrate_metadata(db_session, checkout_id="ch_1", metadata="garbage")
    assert result.snapshot.product_id == "7"


async def test_placeholder_row_found_through_plan_id(db_session):
    await _store(db_session, checkout_id="plan_plan_9", plan_id="plan_9")

    result = await hydrate_metadata(db_session, checkout_id="ch_unknown", metadata={}, plan_id="plan_9")

    assert result.session.checkout_id == "plan_plan_9"
    assert result.snapshot.amount == 4700


async def test_no_session_and_no_metadata(db_session):
    result = await hydrate_metadata(db_session, checkout_id="ch_missing", metadata=None)

    assert result.session is None
    assert result.hydrated is False
    assert result.snapshot.product_id_int is None
