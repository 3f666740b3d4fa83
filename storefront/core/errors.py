from __future__ import annotations

import json
from typing import Any


class CheckoutError(Exception):
    """
    Base error for the checkout pipeline.
    Carries the HTTP status the API boundary should answer with.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ClientInputError(CheckoutError):
    """Missing product, bad price, unconfigured provider product mapping."""

    status_code = 400


class ConfigurationError(CheckoutError):
    """No API key / company id resolvable. Never guessed."""

    status_code = 500


class ProviderError(CheckoutError):
    """Non-2xx (or transport failure) from the payment provider."""

    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ):
        super().__init__(message, status_code)
        self.details = details


def parse_provider_error(error_text: str | None, fallback: str) -> tuple[str, Any]:
    """
    Extract a human message from a provider error body.
    Returns (message, parsed_details_or_None).
    """
    if not error_text:
        return fallback, None

    try:
        data = json.loads(error_text)
    except ValueError:
        return fallback, None

    if isinstance(data, dict):
        msg = data.get("message") or data.get("error")
        if isinstance(msg, dict):
            msg = msg.get("message")
        return (str(msg) if msg else fallback), data

    return fallback, data
