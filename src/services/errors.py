"""Error taxonomy for the grievance lifecycle.

Every error carries the HTTP status it is reported with, so the API layer
needs a single handler for the whole family.
"""

from __future__ import annotations


class SamparkError(Exception):
    """Base class for all domain errors raised by Sampark services."""

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(SamparkError):
    status_code = 400
    default_message = "Missing required fields"


class NotFound(SamparkError):
    status_code = 404
    default_message = "Grievance not found"


class InvalidStatusError(SamparkError):
    status_code = 400
    default_message = "Invalid status"


class DuplicateStatusError(SamparkError):
    status_code = 400
    default_message = "Grievance already has this status"


class CodeAllocationExhausted(SamparkError):
    """No free tracking code was found within the retry ceiling.

    Nothing has been written when this is raised, so the whole submission
    can safely be retried.
    """

    status_code = 503
    default_message = "Could not allocate a tracking code, please retry"


class StoreError(SamparkError):
    status_code = 500
    default_message = "Database operation failed"


class CacheUnavailable(SamparkError):
    """Backing cache unreachable or unconfigured.  Never reaches callers."""

    status_code = 503
    default_message = "Cache unavailable"
