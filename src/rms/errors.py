from __future__ import annotations


class RmsError(ValueError):
    """Base class for failures that are reported back to the caller as a message."""

    status = 400


class NotFound(RmsError):
    """Raised when an ID-based lookup needed by a write finds nothing."""

    status = 404


class DuplicatePair(RmsError):
    status = 409


class DuplicateId(RmsError):
    status = 409


class MissingId(RmsError):
    pass


class InvalidFieldSet(RmsError):
    """Raised when an update payload carries unknown keys or empty values."""


class InvalidReference(RmsError):
    """Raised when a stored row points at a row that does not exist."""
