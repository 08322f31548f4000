"""Authentication errors and their HTTP mapping."""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for errors reported to API callers."""

    status_code: int = 400
    error_code: str = "AUTH_ERROR"
    default_message: str = "Request failed."

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class InvalidCredentials(AuthError):
    status_code = 401
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password."


class AccountLocked(AuthError):
    status_code = 401
    error_code = "ACCOUNT_LOCKED"
    default_message = "Account is locked due to multiple failed login attempts."


class EmailUnconfirmed(AuthError):
    status_code = 401
    error_code = "EMAIL_UNCONFIRMED"
    default_message = "Please verify your email address before logging in."


class InvalidOrExpiredToken(AuthError):
    """Raised for unknown, malformed or expired tokens.

    ``reason`` is ``"invalid"`` or ``"expired"``.
    """

    status_code = 401
    error_code = "INVALID_TOKEN"
    default_message = "Invalid refresh token."

    def __init__(self, message: str | None = None, *, reason: str = "invalid"):
        self.reason = reason
        if reason == "expired":
            super().__init__(message or "Token has expired.", error_code="TOKEN_EXPIRED")
        else:
            super().__init__(message)


class TokenReuseDetected(InvalidOrExpiredToken):
    """A refresh token that was already revoked has been presented again."""

    def __init__(self, message: str | None = None):
        self.reason = "reused"
        AuthError.__init__(
            self,
            message or "Token reuse detected. All sessions have been revoked for security.",
            error_code="TOKEN_REUSE_DETECTED",
        )


class Forbidden(AuthError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Forbidden."


class ValidationError(AuthError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid request."


class ConfigurationError(AuthError):
    """Missing or invalid settings. Raised at startup, not per request."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"
    default_message = "Invalid configuration."

    def __init__(self, message: str | None = None, *, setting: str | None = None):
        details = {"setting": setting} if setting else None
        super().__init__(message, details=details)
