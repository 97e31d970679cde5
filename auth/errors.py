"""
auth/errors.py -- Error taxonomy for the authentication flows.

Every error carries the HTTP status and machine-readable code it maps to, so
the transport layer can render any of them with a single exception handler.
Messages are safe to show to clients: they never include tokens, passwords,
hashes, or whether an account exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    """Base class for every error the auth flows surface to callers."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class ValidationError(AuthServiceError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request."


class WeakPasswordError(ValidationError):
    code = "weak_password"
    message = "Password does not meet the password policy."


# ---------------------------------------------------------------------------
# 409
# ---------------------------------------------------------------------------


class ConflictError(AuthServiceError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message)
        self.field = field


# ---------------------------------------------------------------------------
# 401 / 403
# ---------------------------------------------------------------------------


class AuthError(AuthServiceError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    message = "Invalid credentials"


class MissingCookieError(AuthError):
    code = "missing_cookie"
    message = "Session cookies are missing."


class RevokedOrUnknownSessionError(AuthError):
    code = "invalid_session"
    message = "Invalid or revoked session"


class InvalidTokenError(AuthError):
    """A token failed verification. Subclasses say why, for logs only.

    Callers pick the status: the request gate answers 401, refresh and logout
    answer 403 because a session cookie was presented but could not be trusted.
    """

    code = "invalid_token"
    message = "Invalid or expired token"


class ExpiredTokenError(InvalidTokenError):
    pass


class MalformedTokenError(InvalidTokenError):
    pass


class BadSignatureError(InvalidTokenError):
    pass


# ---------------------------------------------------------------------------
# 500
# ---------------------------------------------------------------------------


class InternalError(AuthServiceError):
    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred."


class PasswordHashingError(InternalError):
    pass


class MalformedDigestError(InternalError):
    """A stored password digest is not a valid bcrypt hash."""


class TokenSigningError(InternalError):
    pass


class EntitlementNotFoundError(InternalError):
    pass


class DuplicateUserError(Exception):
    """Raised by UserStore when a unique column collides.

    field is "email" or "username". AuthFlow turns this into ConflictError.
    """

    def __init__(self, field: str) -> None:
        super().__init__(f"duplicate {field}")
        self.field = field
