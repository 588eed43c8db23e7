"""
Error taxonomy shared by the services and the HTTP layer.

ValidationError and NotFoundError are reported to the caller as-is.
UniquenessConflict is the (series, start_date) index firing; the occurrence
materializer recovers from it locally. StorageFailure is anything else the
database raised; its message never reaches a client.
"""
from __future__ import annotations


class TrackerError(Exception):
    """Base class for taskloop errors."""


class ValidationError(TrackerError, ValueError):
    """A field is malformed or out of range."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field} {message}")


class NotFoundError(TrackerError, LookupError):
    """A referenced profile, project or task does not exist (in this profile)."""

    def __init__(self, entity: str, ident: str | None = None) -> None:
        self.entity = entity
        self.ident = ident
        super().__init__(f"{entity} not found")


class UniquenessConflict(TrackerError):
    """Another row already occupies this (series, start_date) slot."""


class StorageFailure(TrackerError):
    """Any other persistence error. The transaction has been rolled back."""
