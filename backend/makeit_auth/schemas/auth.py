"""Pydantic schemas for authentication and invite endpoints.

Fields are snake_case in Python and camelCase on the wire; input accepts
either spelling.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from makeit_auth.core.auth_helper import MAX_PASSWORD_BYTES, password_too_long
from makeit_auth.models.auth import Role


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class RegisterRequest(CamelModel):
    """Request body for creating a new account."""

    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=8, max_length=100)
    display_name: str = Field(min_length=1, max_length=100)
    invite_code: Optional[str] = None

    @field_validator("password")
    @classmethod
    def _password_fits_bcrypt(cls, value: str) -> str:
        if password_too_long(value):
            raise ValueError(
                f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded"
            )
        return value


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(CamelModel):
    """Request body for rotating a refresh token."""

    refresh_token: str = Field(min_length=1)


class UserResponse(CamelModel):
    """Public user representation returned by the API."""

    id: str
    email: str
    display_name: str
    role: Role
    created_at: datetime


class AuthResponse(CamelModel):
    """Token pair returned by register, login and refresh.

    Both tokens are opaque to clients: attach them verbatim.
    """

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in_seconds: int
    user: UserResponse


class CreateInviteRequest(CamelModel):
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)


class InviteResponse(CamelModel):
    id: str
    code: str
    expires_at: datetime
    created_at: datetime
    used_by_email: Optional[str] = None


class InviteValidationResponse(CamelModel):
    valid: bool
    message: str
