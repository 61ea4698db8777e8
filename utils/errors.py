"""API error taxonomy rendered as the uniform JSON envelope."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base class for failures that map onto an HTTP status and a user-visible message."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        body.update(self.payload)
        return body


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Access token required"


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class RateLimited(ApiError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 0) -> None:
        super().__init__(message, payload={"retryAfter": retry_after})
        self.retry_after = retry_after


class Internal(ApiError):
    status_code = 500


# Session token outcomes


class BadToken(Unauthorized):
    default_message = "Invalid token format"


class TokenExpired(Unauthorized):
    default_message = "Token has expired"


class UserNotFound(Unauthorized):
    default_message = "User not found"


# One-time code verification outcomes; all are client errors on the verify endpoint.


class OtpError(ApiError):
    status_code = 400


class CodeNotFound(OtpError):
    default_message = "OTP not found or expired. Please request a new one."


class CodeExpired(OtpError):
    default_message = "OTP has expired. Please request a new one."


class TooManyAttempts(OtpError):
    default_message = "Too many invalid attempts. Please request a new OTP."


class InvalidCode(OtpError):
    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(
            f"Invalid OTP. {attempts_remaining} attempts remaining.",
            payload={"attemptsRemaining": attempts_remaining},
        )
        self.attempts_remaining = attempts_remaining
