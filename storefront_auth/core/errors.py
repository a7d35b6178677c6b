"""Typed errors rendered by the application exception handlers.

Each class fixes the HTTP status and the ``type`` string of the JSON error envelope.
Services raise these; routers never build error responses by hand.
"""

from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    error_type = "INTERNAL_SERVER_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[Any]] = None) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    error_type = "VALIDATION_ERROR"
    default_message = "Validation error"


class AuthError(AppError):
    status_code = 400
    error_type = "AUTH_ERROR"
    default_message = "Authentication failed"


class EmailAlreadyExists(AuthError):
    default_message = "Email is already registered"


class AccountExistsWithDifferentProvider(AuthError):
    default_message = (
        "This email is already registered with another sign-in method. "
        "Please sign in with the original method."
    )


class InvalidCredentials(AuthError):
    status_code = 401
    default_message = "Invalid email or password"


class WrongProvider(AuthError):
    status_code = 401

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"This account uses {provider.title()} sign-in. Please sign in with {provider.title()}.")


class Unauthorized(AppError):
    status_code = 401
    error_type = "UNAUTHORIZED"
    default_message = "Not authenticated"


class Forbidden(AppError):
    status_code = 403
    error_type = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


class NotFound(AppError):
    status_code = 404
    error_type = "NOT_FOUND"
    default_message = "Resource not found"


class UserNotFound(NotFound):
    default_message = "User not found"


class NotFoundOrWrongProvider(NotFound):
    default_message = "User not found or does not use password sign-in"


class InternalError(AppError):
    pass


class ServiceUnavailable(InternalError):
    status_code = 503
    default_message = "Service temporarily unavailable"
