"""Typed failures raised by the lifecycle engine, catalog and auth gate.

Each error carries the HTTP status the API layer answers with; the handlers
in ``main`` turn them into ``{"message": ...}`` responses.
"""

from fastapi import status


class LibraryError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidStateError(LibraryError):
    """Operation not valid for the borrowing's current status."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current state"


class AuthenticationError(LibraryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class MissingCredentialError(AuthenticationError):
    default_message = "Access token required"


class InvalidCredentialError(AuthenticationError):
    default_message = "Invalid or expired token"


class StaleIdentityError(AuthenticationError):
    default_message = "User not found"


class InactiveAccountError(AuthenticationError):
    default_message = "Account is deactivated"


class AuthorizationError(LibraryError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Admin access required"


class NotFoundError(LibraryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(LibraryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"
