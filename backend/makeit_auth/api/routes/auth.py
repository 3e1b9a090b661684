"""Authentication routes with refresh token rotation.

Exposes endpoints for creating accounts, issuing and rotating
access/refresh token pairs and revoking every refresh token of a user.

Endpoints:
    - POST /auth/register: Create an account (returns access + refresh tokens)
    - POST /auth/login: Login (returns access + refresh tokens)
    - POST /auth/refresh: Exchange a refresh token for a new pair
    - POST /auth/logout: Revoke all of the caller's refresh tokens
    - GET /auth/me: Profile of the authenticated caller
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from makeit_auth.core.auth_helper import Principal, get_current_principal
from makeit_auth.core.logging import logger
from makeit_auth.schemas.auth import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    UserResponse,
)
from makeit_auth.services.auth_service import AuthResult, AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def to_auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_in_seconds=result.expires_in_seconds,
        user=UserResponse.model_validate(result.user),
    )


@router.post(
    "/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED
)
async def register(
    body: RegisterRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Create an account and sign it in.

    Args:
        body: Email, password, display name and (when required) an invite
            code.
        service: Auth workflows bound to the application.

    Returns:
        AuthResponse: Token pair plus the new user's profile.

    Raises:
        EmailTaken: If the email is already registered.
        InviteRequired, InviteInvalid, InviteExpired, InviteUsed: If the
            invite policy rejects the registration.
    """
    result = await service.register(
        body.email, body.password, body.display_name, body.invite_code
    )
    return to_auth_response(result)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Authenticate with email and password and issue a token pair.

    Unknown email and wrong password produce the same 401 response.
    """
    result = await service.login(body.email, body.password)
    return to_auth_response(result)


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    body: RefreshRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Exchange a refresh token for a new access/refresh pair.

    The presented refresh token is revoked as part of the same unit of work
    that issues its successor, so it can be used exactly once.

    Raises:
        InvalidToken: If the token is unknown, expired, already used or
            revoked.
        AccountDisabled: If the token's owner has been disabled.
    """
    result = await service.refresh(body.refresh_token)
    return to_auth_response(result)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Revoke every refresh token of the caller (logout everywhere).

    Access tokens already handed out stay valid until they expire.
    """
    await service.logout(principal.id)
    logger.info("Logout completed for user {}", principal.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserResponse)
async def read_current_user(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Return the authenticated caller's profile."""
    user = await service.get_user(principal.id)
    return UserResponse.model_validate(user)
