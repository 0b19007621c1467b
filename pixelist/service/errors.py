from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    """Failure raised by the auth flow and rendered as an error envelope.

    Subclasses fix the HTTP ``status_code``, the stable ``error_code`` and,
    for the login and 2FA steps, the exact sentence shown on the login
    screen. Raising one without a message uses ``default_message``.
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "Request failed"

    def __init__(
        self, message: Optional[str] = None, *, detail: Optional[dict[str, Any]] = None
    ) -> None:
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)


# 400 ----------------------------------------------------------------------


class ValidationError(ServiceError):
    status_code = 400
    error_code = "validation_error"
    default_message = "Invalid request"


class MissingCredentialsError(ValidationError):
    default_message = "Username and password required"


class MalformedCodeError(ValidationError):
    """The authenticator code is not six ASCII digits."""

    default_message = "Invalid authenticator code format"


# 401 ----------------------------------------------------------------------


class AuthenticationError(ServiceError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Unauthorized"


class InvalidCredentialsError(AuthenticationError):
    """Unknown username or wrong password. Both get the same body."""

    default_message = "Invalid credentials"


class InvalidChallengeError(AuthenticationError):
    """Challenge token is forged, malformed, for another purpose or already used."""

    default_message = "Invalid or expired challenge"


class ChallengeExpiredError(AuthenticationError):
    default_message = "Challenge expired. Please log in again."


class TwoFactorUnavailableError(AuthenticationError):
    """The challenged user vanished or no longer has a TOTP secret."""

    default_message = "Invalid user or 2FA not set up"


class InvalidCodeError(AuthenticationError):
    default_message = "Invalid authenticator code"


# 404 / 409 ----------------------------------------------------------------


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"
    default_message = "User not found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"
    default_message = "username already exists"


# 429 ----------------------------------------------------------------------


class RateLimitedError(ServiceError):
    status_code = 429
    error_code = "rate_limited"
    default_message = "Too many attempts. Please try again later."


class LoginThrottledError(RateLimitedError):
    """``login:<username>`` used up its window."""

    default_message = "Too many login attempts. Please try again later."


class VerificationThrottledError(RateLimitedError):
    """``2fa:<user_id>`` used up its window."""

    default_message = "Too many verification attempts. Please try again later."


# 500 ----------------------------------------------------------------------


class ServerError(ServiceError):
    status_code = 500
    error_code = "server_error"
    default_message = "internal server error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "MissingCredentialsError",
    "MalformedCodeError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "InvalidChallengeError",
    "ChallengeExpiredError",
    "TwoFactorUnavailableError",
    "InvalidCodeError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "LoginThrottledError",
    "VerificationThrottledError",
    "ServerError",
]
