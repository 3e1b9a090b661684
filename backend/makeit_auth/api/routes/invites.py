"""Invite code routes.

Endpoints:
    - POST /invites: Create an invite code (authenticated)
    - GET /invites: List the caller's invite codes (authenticated)
    - GET /invites/{code}/validate: Check a code before registering (public)
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Request, status

from makeit_auth.core.auth_helper import Principal, get_current_principal
from makeit_auth.models.auth import InviteCode
from makeit_auth.schemas.auth import (
    CreateInviteRequest,
    InviteResponse,
    InviteValidationResponse,
)
from makeit_auth.services.invite_service import InviteService

router = APIRouter(prefix="/invites", tags=["invites"])


def get_invite_service(request: Request) -> InviteService:
    return request.app.state.invite_service


def to_invite_response(invite: InviteCode) -> InviteResponse:
    used_by_email = None
    if invite.used_by_user_id is not None and invite.used_by is not None:
        used_by_email = invite.used_by.email
    return InviteResponse(
        id=invite.id,
        code=invite.code,
        expires_at=invite.expires_at,
        created_at=invite.created_at,
        used_by_email=used_by_email,
    )


@router.post(
    "", response_model=InviteResponse, status_code=status.HTTP_201_CREATED
)
async def create_invite(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[InviteService, Depends(get_invite_service)],
    body: Annotated[Optional[CreateInviteRequest], Body()] = None,
):
    """Create a new invite code owned by the caller.

    Args:
        principal: Authenticated caller.
        service: Invite workflows bound to the application.
        body: Optional lifetime override in days (1..365).

    Returns:
        InviteResponse: The generated code and its expiry.
    """
    expires_in_days = body.expires_in_days if body is not None else None
    invite = await service.create_invite(principal.id, expires_in_days)
    return to_invite_response(invite)


@router.get("", response_model=list[InviteResponse])
async def list_invites(
    principal: Annotated[Principal, Depends(get_current_principal)],
    service: Annotated[InviteService, Depends(get_invite_service)],
):
    """Return the invite codes created by the caller, newest first."""
    invites = await service.list_user_invites(principal.id)
    return [to_invite_response(invite) for invite in invites]


@router.get("/{code}/validate", response_model=InviteValidationResponse)
async def validate_invite(
    code: str,
    service: Annotated[InviteService, Depends(get_invite_service)],
):
    result = await service.validate_invite_code(code)
    return InviteValidationResponse(valid=result.valid, message=result.message)
