from __future__ import annotations

from typing import Any, Callable

import httpx

from storefront.core.config import Settings
from storefront.core.errors import ProviderError, parse_provider_error
from storefront.core.logging import get_logger

logger = get_logger(__name__)


class WhopClient:
    """
    Thin async wrapper over the Whop REST API (v2).
    Non-2xx responses raise ProviderError carrying Whop's own message.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.whop.com/api/v2",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    async def __aenter__(self) -> "WhopClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        fallback_error: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"{fallback_error}: {e}") from e

        if resp.is_success or (allow_404 and resp.status_code == 404):
            return resp

        logger.error("Whop %s %s failed (%s): %s", method, path, resp.status_code, resp.text)
        message, details = parse_provider_error(resp.text, fallback_error)
        raise ProviderError(message, status_code=resp.status_code, details=details)

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def update_product(self, product_id: str, **fields: Any) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            f"/products/{product_id}",
            json=fields,
            fallback_error="Failed to update product",
        )
        return self._json(resp)

    async def create_plan(self, body: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request("POST", "/plans", json=body, fallback_error="Failed to create plan")
        return self._json(resp)

    async def create_checkout_session(self, body: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            "/checkout_sessions",
            json=body,
            fallback_error="Failed to create checkout session",
        )
        return self._json(resp)

    async def delete_checkout_session(self, checkout_id: str) -> bool:
        """True when deleted now or already gone (404)."""
        await self._request(
            "DELETE",
            f"/checkout_sessions/{checkout_id}",
            fallback_error="Failed to delete checkout session",
            allow_404=True,
        )
        return True

    async def delete_plan(self, plan_id: str) -> bool:
        """True when deleted now or already gone (404)."""
        await self._request(
            "DELETE",
            f"/plans/{plan_id}",
            fallback_error="Failed to delete plan",
            allow_404=True,
        )
        return True

    async def list_plans(self, page: int = 1, per: int = 1) -> dict[str, Any]:
        resp = await self._request(
            "GET",
            "/plans",
            params={"page": page, "per": per},
            fallback_error="Whop API call failed",
        )
        return self._json(resp)


WhopClientFactory = Callable[[str], WhopClient]


def make_client_factory(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WhopClientFactory:
    """
    Returns api_key -> WhopClient. `transport` lets tests swap in httpx.MockTransport.
    """

    def factory(api_key: str) -> WhopClient:
        return WhopClient(
            api_key,
            base_url=settings.WHOP_API_BASE,
            timeout=settings.WHOP_HTTP_TIMEOUT,
            transport=transport,
        )

    return factory
