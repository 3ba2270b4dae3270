"""
Domain exceptions.

Raised by services and dependencies, translated to JSON responses by the
handlers registered in ``agora.main``.
"""

from typing import Any


class ForumError(Exception):
    """Base class for all forum domain errors."""

    status_code: int = 500
    message: str = "Something went wrong!"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationError(ForumError):
    """Malformed input, with optional field-level messages."""

    status_code = 400
    message = "Validation failed"

    def __init__(
        self,
        message: str | None = None,
        errors: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class ConflictError(ForumError):
    """Duplicate username, email or category name."""

    status_code = 400
    message = "Already exists"


class AuthError(ForumError):
    status_code = 401
    message = "Authentication required"


class InvalidCredentialsError(AuthError):
    message = "Invalid credentials"


class MissingTokenError(AuthError):
    message = "Access token required"


class InvalidTokenError(AuthError):
    status_code = 403
    message = "Invalid or expired token"


class ForbiddenError(ForumError):
    """Authenticated but not allowed to perform the action."""

    status_code = 403
    message = "Not authorized"


class NotFoundError(ForumError):
    status_code = 404
    message = "Not found"


class RateLimitError(ForumError):
    status_code = 429
    message = "Too many requests, please try again later."

    def __init__(self, message: str | None = None, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StorageError(ForumError):
    """Underlying store failure. Details are logged, never sent to clients."""

    status_code = 500
    message = "Database error"
