"""
Authorization errors raised below the request boundary.

The app registers a handler for AuthorizationError that turns each of these
into a JSON response with the class's status code.
"""
from fastapi import status


class AuthorizationError(Exception):
    """Base class for authentication/authorization failures."""

    status_code: int = status.HTTP_403_FORBIDDEN
    message: str = "Access denied"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, **self.details}


class NoMembership(AuthorizationError):
    """The identity has no active organization membership."""

    status_code = status.HTTP_403_FORBIDDEN
    message = "Cannot authenticate into any organization"


class AccessDenied(AuthorizationError):
    """The identity has no active membership in the requested organization."""

    status_code = status.HTTP_403_FORBIDDEN
    message = "Access denied to this organization"


class PermissionDenied(AuthorizationError):
    """An authenticated principal lacks a required permission."""

    status_code = status.HTTP_403_FORBIDDEN
    message = "Insufficient permissions"


class InvalidCredentials(AuthorizationError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid email or password"
