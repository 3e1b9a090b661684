"""Request authenticator middleware.

Verifies the bearer token of each request and attaches a principal to
``request.state``. It never rejects: requests without a token or with an
invalid one continue unauthenticated and the routes that need a principal
answer 401 through ``get_current_principal``.
"""

from typing import Callable

from fastapi import Request

from makeit_auth.core.auth_helper import Principal, extract_bearer_token
from makeit_auth.core.clock import Clock
from makeit_auth.core.logging import logger
from makeit_auth.core.token_codec import InvalidAccessToken, TokenCodec


def create_request_authenticator(codec: TokenCodec, clock: Clock) -> Callable:
    """Create the middleware function bound to ``codec`` and ``clock``."""

    async def authenticate_request(request: Request, call_next: Callable):
        request.state.principal = None

        token = extract_bearer_token(request.headers.get("authorization"))
        if token is not None:
            outcome = codec.verify(token, clock.now())
            if isinstance(outcome, InvalidAccessToken):
                logger.debug(
                    "Access token rejected reason={} path={}",
                    outcome.reason,
                    request.url.path,
                )
            else:
                request.state.principal = Principal.from_claims(outcome)

        return await call_next(request)

    return authenticate_request
