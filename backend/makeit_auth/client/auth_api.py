"""HTTP client for the ``/api/auth`` endpoints.

This client never intercepts 401 responses: it is what the refresh
coordinator uses to refresh, so it must not try to refresh itself.
"""

from typing import Any, Optional

import httpx

from makeit_auth.schemas.auth import AuthResponse, UserResponse

DEFAULT_TIMEOUT_SECONDS = 10.0


class AuthApiError(Exception):
    """The server answered an auth call with an error status.

    Attributes:
        status_code: HTTP status of the response.
        code: ``code`` field of the error envelope, if present.
        message: ``message`` field of the error envelope, or the raw body.
    """

    def __init__(self, status_code: int, code: Optional[str], message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"{status_code} {code}: {message}")

    @property
    def is_rejection(self) -> bool:
        """True for 4xx answers, which retrying will not change."""
        return 400 <= self.status_code < 500

    @classmethod
    def from_response(cls, response: httpx.Response) -> "AuthApiError":
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            return cls(
                response.status_code,
                body.get("code"),
                body.get("message") or response.reason_phrase,
            )
        return cls(response.status_code, None, response.text or response.reason_phrase)


class AuthApi:
    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, transport=transport, timeout=timeout
        )

    async def __aenter__(self) -> "AuthApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def register(
        self,
        email: str,
        password: str,
        display_name: str,
        invite_code: Optional[str] = None,
    ) -> AuthResponse:
        payload = {
            "email": email,
            "password": password,
            "displayName": display_name,
            "inviteCode": invite_code,
        }
        return AuthResponse.model_validate(
            await self._post("/api/auth/register", payload)
        )

    async def login(self, email: str, password: str) -> AuthResponse:
        return AuthResponse.model_validate(
            await self._post("/api/auth/login", {"email": email, "password": password})
        )

    async def refresh(self, refresh_token: str) -> AuthResponse:
        """Rotate ``refresh_token`` into a new pair.

        Raises:
            AuthApiError: If the server answered with an error status.
            httpx.TransportError: If the server could not be reached.
        """
        return AuthResponse.model_validate(
            await self._post("/api/auth/refresh", {"refreshToken": refresh_token})
        )

    async def logout(self, access_token: str) -> None:
        await self._post("/api/auth/logout", None, access_token)

    async def me(self, access_token: str) -> UserResponse:
        response = await self._client.get(
            "/api/auth/me", headers=_bearer(access_token)
        )
        return UserResponse.model_validate(_json_or_raise(response))

    async def _post(
        self,
        path: str,
        payload: Optional[dict[str, Any]],
        access_token: Optional[str] = None,
    ) -> Any:
        response = await self._client.post(
            path, json=payload, headers=_bearer(access_token)
        )
        return _json_or_raise(response)


def _bearer(access_token: Optional[str]) -> dict[str, str]:
    if not access_token:
        return {}
    return {"Authorization": f"Bearer {access_token}"}


def _json_or_raise(response: httpx.Response) -> Any:
    if response.is_error:
        raise AuthApiError.from_response(response)
    if response.status_code == 204 or not response.content:
        return None
    return response.json()
