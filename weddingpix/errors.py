"""
Domain errors raised by the gallery service and stores.

Routes translate these into HTTP status codes.
"""

from __future__ import annotations


class GalleryError(Exception):
    """Base class for gallery domain errors."""


class InvalidUserError(GalleryError, ValueError):
    """A user id is missing or blank."""


class NotFoundError(GalleryError):
    """The requested record does not exist."""


class PermissionDeniedError(GalleryError):
    """The caller does not own the record it tried to modify."""


class ConflictError(GalleryError):
    """A unique value (e.g. a username) is already taken."""


class AuthenticationError(GalleryError):
    """Credentials or a session token were rejected."""
