"""Error kinds raised by the engine and the stores.

The API layer turns each kind into an HTTP status (see ``taskgrid.main``):
ValidationError -> 400, ForbiddenError -> 403, NotFoundError -> 404,
UnavailableError -> 503.
"""
from typing import Any, Optional


class TaskgridError(Exception):
    """Base class for all domain errors"""
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"detail": self.message}
        if self.details is not None:
            payload["errors"] = self.details
        return payload


class ValidationError(TaskgridError):
    """Malformed input, unknown operator for a property type, bad groupBy, ..."""
    status_code = 400


class ForbiddenError(TaskgridError):
    """The access resolver denied the requested operation"""
    status_code = 403


class NotFoundError(TaskgridError):
    """Board, task, property, member or invitation is absent"""
    status_code = 404


class UnavailableError(TaskgridError):
    """The underlying store could not be reached"""
    status_code = 503
