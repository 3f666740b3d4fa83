from datetime import datetime, timedelta, timezone

from storefront.schemas.checkout import CartSnapshot, coerce_amount
from storefront.schemas.intent import load_intent

NOW = datetime(2026, 3, 1, 12, 0)


def _intent(**overrides):
    raw = {
        "productId": 7,
        "amount": 4700,
        "originalAmount": 4200,
        "email": "a@b.com",
        "addons": [{"name": "gift wrap", "price": 500}, "junk"],
        "coupon": "SPRING",
        "deliveryTimeMinutes": 60,
        "preferredMethod": "whop",
        "availableMethods": ["whop", "paypal"],
        "savedAt": (NOW - timedelta(minutes=5)).isoformat(),
    }
    raw.update(overrides)
    return raw


def test_fresh_intent_loads():
    intent = load_intent(_intent(), now=NOW)

    assert intent.productId == 7
    assert intent.addons == [{"name": "gift wrap", "price": 500}]
    assert intent.preferredMethod == "whop"


def test_stale_intent_is_discarded():
    assert load_intent(_intent(savedAt=(NOW - timedelta(minutes=46)).isoformat()), now=NOW) is None
    assert load_intent(_intent(savedAt=None), now=NOW) is None


def test_timezone_aware_saved_at_is_compared_in_utc():
    saved = (NOW - timedelta(minutes=10)).replace(tzinfo=timezone.utc).astimezone(timezone(timedelta(hours=3)))
    assert load_intent(_intent(savedAt=saved.isoformat()), now=NOW) is not None


def test_unavailable_preferred_method_is_reset():
    intent = load_intent(_intent(preferredMethod="stripe"), now=NOW)
    assert intent.preferredMethod == "whop"


def test_garbage_is_discarded():
    assert load_intent("not a dict", now=NOW) is None
    assert load_intent(_intent(productId="seven"), now=NOW) is None


def test_intent_replays_as_checkout_request():
    body = load_intent(_intent(), now=NOW).to_checkout_request()

    assert body == {
        "product_id": 7,
        "amount": 4700,
        "email": "a@b.com",
        "metadata": {
            "addons": [{"name": "gift wrap", "price": 500}],
            "deliveryTimeMinutes": 60,
            "couponCode": "SPRING",
        },
    }


def test_coerce_amount():
    assert coerce_amount("12.5") == 12.5
    assert coerce_amount(True) is None
    assert coerce_amount("inf") is None
    assert coerce_amount({}) is None


def test_snapshot_tolerates_junk():
    snap = CartSnapshot.from_raw({"product_id": 7, "addons": "nope", "amount": "x", "email": None})

    assert snap.product_id == "7"
    assert snap.product_id_int == 7
    assert snap.addons == []
    assert snap.amount is None
    assert snap.email == ""

    assert CartSnapshot.from_raw({"product_id": "abc"}).product_id_int is None
    assert CartSnapshot.from_raw(["not", "a", "dict"]) is None


def test_snapshot_coerces_numeric_text_fields():
    snap = CartSnapshot.from_raw(
        {
            "product_id": 7,
            "product_title": 2026,
            "created_at": 1767225600,
            "addons": [{"name": 5, "price": "500"}, {"name": {"en": "wrap"}, "price": 100}],
        }
    )

    assert snap.product_id_int == 7
    assert snap.product_title == "2026"
    assert snap.created_at == "1767225600"
    assert snap.addons_payload() == [{"name": "5", "price": 500.0}, {"price": 100.0}]
