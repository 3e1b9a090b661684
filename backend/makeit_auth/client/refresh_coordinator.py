"""Single-flight access token refresh for API clients.

When several requests fail with 401 at about the same time, only the first
one calls the refresh endpoint. The others wait in a FIFO queue and are
settled with the outcome of that one refresh: the new access token, or the
failure.

Outcomes of a refresh:

- success: the new pair is written to storage, then every waiter gets the
  new access token;
- rejection (no refresh token stored, or a 4xx answer): stored credentials
  are cleared, ``on_login_required`` is invoked and everyone gets
  :class:`SessionExpired`;
- transient failure (transport error or 5xx answer): credentials are kept
  and everyone gets :class:`RefreshUnavailable`, so the caller may retry
  later.
"""

import asyncio
from collections import deque
from typing import Callable, Optional

import httpx

from makeit_auth.client.auth_api import AuthApi, AuthApiError
from makeit_auth.client.token_storage import TokenStorage
from makeit_auth.core.logging import logger


class SessionExpired(Exception):
    """The session cannot be refreshed; the user has to log in again."""


class RefreshUnavailable(Exception):
    """The refresh could not be completed right now; credentials were kept."""


class RefreshCoordinator:
    def __init__(
        self,
        storage: TokenStorage,
        auth_api: AuthApi,
        on_login_required: Optional[Callable[[], None]] = None,
    ) -> None:
        self._storage = storage
        self._auth_api = auth_api
        self._on_login_required = on_login_required
        self._refresh_in_flight = False
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_in_flight

    async def refresh_access_token(self) -> str:
        """Return a fresh access token, sharing one refresh call.

        Raises:
            SessionExpired: If the refresh was rejected.
            RefreshUnavailable: If the refresh failed transiently.
        """
        if self._refresh_in_flight:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter

        self._refresh_in_flight = True
        try:
            access_token = await self._refresh()
        except Exception as exc:
            self._settle_waiters(exc=exc)
            raise
        else:
            self._settle_waiters(access_token=access_token)
            return access_token
        finally:
            self._refresh_in_flight = False
            if self._waiters:
                self._settle_waiters(exc=RefreshUnavailable("Refresh interrupted"))

    async def _refresh(self) -> str:
        refresh_token = self._storage.get_refresh_token()
        if not refresh_token:
            self._expire_session()
            raise SessionExpired("No refresh token available")

        try:
            result = await self._auth_api.refresh(refresh_token)
        except AuthApiError as exc:
            if exc.is_rejection:
                logger.info("Refresh rejected with {} {}", exc.status_code, exc.code)
                self._expire_session()
                raise SessionExpired(exc.message) from exc
            logger.warning("Refresh failed with {}; keeping credentials", exc.status_code)
            raise RefreshUnavailable(exc.message) from exc
        except httpx.TransportError as exc:
            logger.warning("Refresh failed: {}; keeping credentials", exc.__class__.__name__)
            raise RefreshUnavailable(str(exc)) from exc

        self._storage.save(
            result.access_token,
            result.refresh_token,
            result.user.model_dump(mode="json", by_alias=True),
        )
        return result.access_token

    def _expire_session(self) -> None:
        self._storage.clear()
        if self._on_login_required is not None:
            self._on_login_required()

    def _settle_waiters(self, access_token: Optional[str] = None, exc=None) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if exc is not None:
                waiter.set_exception(exc)
            else:
                waiter.set_result(access_token)
