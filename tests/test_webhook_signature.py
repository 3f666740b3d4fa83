import base64

import pytest

from storefront.services.webhook_signature import InvalidSignature, sign, verify_signature

BODY = b'{"type":"payment.succeeded","data":{}}'
SECRET = "whsec_" + base64.b64encode(b"super-secret-key").decode()
NOW = 1_767_225_600


def _headers(body=BODY, secret=SECRET, ts=NOW, msg_id="msg_1"):
    return {
        "webhook-id": msg_id,
        "webhook-timestamp": str(ts),
        "webhook-signature": sign(body, msg_id=msg_id, timestamp=ts, secret=secret),
    }


def test_valid_signature_passes():
    verify_signature(BODY, _headers(), SECRET, now=NOW)


def test_raw_secret_without_prefix():
    verify_signature(BODY, _headers(secret="plain-secret"), "plain-secret", now=NOW)


def test_one_of_several_signatures_may_match():
    headers = _headers()
    headers["webhook-signature"] = "v1,bm90LWl0 " + headers["webhook-signature"]
    verify_signature(BODY, headers, SECRET, now=NOW)


def test_tampered_body_is_rejected():
    with pytest.raises(InvalidSignature):
        verify_signature(BODY + b" ", _headers(), SECRET, now=NOW)


def test_wrong_secret_is_rejected():
    with pytest.raises(InvalidSignature):
        verify_signature(BODY, _headers(), "whsec_" + base64.b64encode(b"other").decode(), now=NOW)


def test_old_timestamp_is_rejected():
    with pytest.raises(InvalidSignature, match="tolerance"):
        verify_signature(BODY, _headers(ts=NOW - 301), SECRET, now=NOW)


@pytest.mark.parametrize("missing", ["webhook-id", "webhook-timestamp", "webhook-signature"])
def test_missing_header_is_rejected(missing):
    headers = _headers()
    del headers[missing]
    with pytest.raises(InvalidSignature):
        verify_signature(BODY, headers, SECRET, now=NOW)


def test_non_numeric_timestamp_is_rejected():
    headers = _headers()
    headers["webhook-timestamp"] = "yesterday"
    with pytest.raises(InvalidSignature):
        verify_signature(BODY, headers, SECRET, now=NOW)
