"""Authentication models: users, refresh tokens and invite codes.

These three tables are the credential store. Application code only reads
users, inserts rows and flips flags through conditional updates; refresh
token rows are never deleted here.
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship

from makeit_auth.core.clock import as_utc
from makeit_auth.db.session import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    """Capability tag carried by every user and principal."""

    USER = "USER"
    ADMIN = "ADMIN"


class User(Base):
    """Database model representing an application user.

    Attributes:
        id: Primary key (UUID string).
        email: Unique login email, stored lowercase.
        password_hash: bcrypt hash.
        display_name: Name shown in the UI.
        role: USER or ADMIN.
        enabled: Disabled accounts cannot log in or refresh.
        created_at: Account creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(100), nullable=False)
    role = Column(Enum(Role, name="user_role"), nullable=False, default=Role.USER)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class RefreshToken(Base):
    """Long-lived, server-tracked credential used to mint access tokens.

    A row is valid while it is not revoked and ``now < expires_at``. Each
    refresh revokes the presented row and inserts its successor.

    Attributes:
        id: Primary key.
        user_id: Owning user.
        token: Opaque URL-safe token string handed to the client.
        expires_at: Expiration timestamp.
        revoked: Set once the token was rotated or the user logged out.
        created_at: Record creation timestamp.
    """

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token = Column(String(255), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", backref="refresh_tokens")

    def is_expired(self, now) -> bool:
        return now >= as_utc(self.expires_at)

    def is_valid(self, now) -> bool:
        return not self.revoked and not self.is_expired(now)


class InviteCode(Base):
    """Single-use code that admits one registration.

    ``used_at`` is stamped together with ``used_by_user_id``; the code stays
    consumed even if the consuming user is deleted and the FK is nulled.

    Attributes:
        id: Primary key.
        code: Human-typed code, unique.
        created_by_user_id: User who generated the code, if any.
        used_by_user_id: User who registered with it, if any.
        used_at: When the code was consumed.
        expires_at: Expiration timestamp.
        created_at: Record creation timestamp.
    """

    __tablename__ = "invite_codes"

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(50), unique=True, nullable=False, index=True)
    created_by_user_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    used_by_user_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    used_by = relationship("User", foreign_keys=[used_by_user_id], lazy="joined")

    def is_used(self) -> bool:
        return self.used_at is not None or self.used_by_user_id is not None

    def is_expired(self, now) -> bool:
        return now >= as_utc(self.expires_at)

    def is_valid(self, now) -> bool:
        return not self.is_used() and not self.is_expired(now)
