"""Exceptions raised by the sync and staging engine."""
from typing import Optional


class SyncError(Exception):
    """Base class for calendar sync errors."""


class FetchError(SyncError):
    """A feed could not be downloaded (network error, HTTP error or timeout)."""

    def __init__(self, url: str, message: str):
        super().__init__(f"Failed to fetch {url}: {message}")
        self.url = url


class ParseError(SyncError):
    """A feed block or document could not be parsed."""


class StoreError(SyncError):
    """Persistence failure in the backing store."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class ConditionalWriteError(StoreError):
    """A conditional write lost against the current item state."""


class DuplicateReservationError(StoreError):
    """A reservation with the requested id already exists."""


class StagingNotFoundError(SyncError):
    """No staging record exists for the given id."""


class InvalidTransitionError(SyncError):
    """The requested staging transition is not allowed from its current state."""

    def __init__(self, staging_id: str, current_status: str, action: str):
        super().__init__(
            f"Cannot {action} staging record {staging_id} "
            f"in status '{current_status}'"
        )
        self.staging_id = staging_id
        self.current_status = current_status
        self.action = action


class ConflictOnConfirmError(InvalidTransitionError):
    """Confirm or reject requested for a record that is no longer pending."""


class SyncInProgressError(SyncError):
    """Another sync holds the lock for this property."""

    def __init__(self, property_id: str):
        super().__init__(f"A sync is already running for property {property_id}")
        self.property_id = property_id
