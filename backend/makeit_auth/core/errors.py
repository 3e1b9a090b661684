"""Auth error taxonomy.

Services raise these; a single FastAPI exception handler in ``main``
renders them into the error envelope. ``code`` values are stable and
coarse-grained so clients can branch on them.

Rejections (bad credentials, invalid/expired/reused tokens, invite
problems, disabled accounts) and conflicts (email taken) are terminal.
``CredentialStoreUnavailable`` is transient and safe to retry; it must
never be reported as an invalid token or invalid credentials.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Machine-readable error codes."""

    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    EMAIL_TAKEN = "EMAIL_TAKEN"
    INVITE_REQUIRED = "INVITE_REQUIRED"
    INVITE_INVALID = "INVITE_INVALID"
    INVITE_EXPIRED = "INVITE_EXPIRED"
    INVITE_USED = "INVITE_USED"
    INVALID_TOKEN = "INVALID_TOKEN"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AuthError(Exception):
    """Base class for errors surfaced to API callers."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: str = "An unexpected error occurred. Please try again later."
    headers: dict[str, str] | None = None

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = ErrorCode.INVALID_CREDENTIALS
    status_code = 401
    default_message = "Invalid email or password"


class AccountDisabled(AuthError):
    code = ErrorCode.ACCOUNT_DISABLED
    status_code = 401
    default_message = "This account has been disabled"


class EmailTaken(AuthError):
    code = ErrorCode.EMAIL_TAKEN
    status_code = 409
    default_message = "An account with this email already exists"


class InviteRequired(AuthError):
    code = ErrorCode.INVITE_REQUIRED
    status_code = 400
    default_message = "Invite code is required"


class InviteInvalid(AuthError):
    code = ErrorCode.INVITE_INVALID
    status_code = 400
    default_message = "Invalid invite code"


class InviteExpired(AuthError):
    code = ErrorCode.INVITE_EXPIRED
    status_code = 400
    default_message = "Invite code has expired"


class InviteUsed(AuthError):
    code = ErrorCode.INVITE_USED
    status_code = 400
    default_message = "Invite code has already been used"


class InvalidToken(AuthError):
    code = ErrorCode.INVALID_TOKEN
    status_code = 401
    default_message = "Invalid or expired token"
    headers = {"WWW-Authenticate": "Bearer"}


class AuthenticationRequired(AuthError):
    code = ErrorCode.AUTHENTICATION_REQUIRED
    status_code = 401
    default_message = "Authentication required"
    headers = {"WWW-Authenticate": "Bearer"}


class CredentialStoreUnavailable(AuthError):
    """The credential store timed out or could not be reached."""

    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = 503
    default_message = "Authentication service temporarily unavailable"
