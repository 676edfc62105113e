"""Shared async JSON-over-HTTP plumbing for the vendor and payment clients."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from . import __version__
from .errors import NetworkError, ServiceRequestError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ServiceClient:
    """Lazily-created ``httpx.AsyncClient`` bound to one service base URL.

    Pass ``transport`` (e.g. ``httpx.ASGITransport(app=...)``) to talk to an
    in-process app instead of the network.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": f"pantry/{__version__}",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out calling {self.base_url}{path}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Could not reach {self.base_url}{path}: {e}") from e

        if response.status_code >= 400:
            raise ServiceRequestError(response.status_code, _error_message(response))
        try:
            return response.json()
        except ValueError as e:
            raise ServiceRequestError(response.status_code, "Response body is not JSON") from e

    async def health_check(self) -> bool:
        try:
            body = await self._request("GET", "/health")
        except (NetworkError, ServiceRequestError) as e:
            logger.debug("Health check against %s failed: %s", self.base_url, e)
            return False
        return body.get("status") == "ok"

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
