"""Authenticated HTTP client with transparent token refresh."""

from typing import Optional

import httpx

from makeit_auth.client.auth_api import DEFAULT_TIMEOUT_SECONDS
from makeit_auth.client.refresh_coordinator import RefreshCoordinator
from makeit_auth.client.token_storage import TokenStorage


class ApiClient:
    """Wraps ``httpx.AsyncClient`` and attaches the stored bearer token.

    A request answered with 401 is replayed once: right away if storage
    already holds a newer access token than the one sent (another request
    refreshed meanwhile), otherwise after ``refresh_access_token``. A second
    401 is handed back to the caller unchanged.
    """

    def __init__(
        self,
        base_url: str,
        storage: TokenStorage,
        coordinator: RefreshCoordinator,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._storage = storage
        self._coordinator = coordinator
        self._client = httpx.AsyncClient(
            base_url=base_url, transport=transport, timeout=timeout
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        sent_token = self._storage.get_access_token()
        response = await self._send(method, url, sent_token, **kwargs)
        if response.status_code != 401:
            return response

        current_token = self._storage.get_access_token()
        if current_token and current_token != sent_token:
            retry_token = current_token
        else:
            retry_token = await self._coordinator.refresh_access_token()
        return await self._send(method, url, retry_token, **kwargs)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def _send(
        self, method: str, url: str, access_token: Optional[str], **kwargs
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return await self._client.request(method, url, headers=headers, **kwargs)
