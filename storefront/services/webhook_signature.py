from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Mapping


class InvalidSignature(Exception):
    pass


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_"):])
        except (binascii.Error, ValueError) as e:
            raise InvalidSignature("Webhook secret is not valid base64") from e
    return secret.encode()


def sign(body: bytes, *, msg_id: str, timestamp: int, secret: str) -> str:
    """Standard Webhooks `v1,<base64 hmac-sha256>` over `{id}.{timestamp}.{body}`."""
    to_sign = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(_secret_bytes(secret), to_sign, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def verify_signature(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: int | None = None,
) -> None:
    """
    Raise InvalidSignature unless one of the `webhook-signature` entries
    matches and the timestamp is within tolerance.
    """
    msg_id = headers.get("webhook-id")
    ts_raw = headers.get("webhook-timestamp")
    sig_header = headers.get("webhook-signature")
    if not msg_id or not ts_raw or not sig_header:
        raise InvalidSignature("Missing webhook signature headers")

    try:
        timestamp = int(ts_raw)
    except ValueError:
        raise InvalidSignature("Invalid webhook timestamp") from None

    current = now if now is not None else int(time.time())
    if abs(current - timestamp) > tolerance_seconds:
        raise InvalidSignature("Webhook timestamp outside tolerance")

    expected = sign(body, msg_id=msg_id, timestamp=timestamp, secret=secret)
    for candidate in sig_header.split():
        if hmac.compare_digest(candidate, expected):
            return
    raise InvalidSignature("No matching signature")
