"""
Domain errors raised by the lifecycle manager and the record stores.

Each carries the HTTP status the API layer renders it with; the FastAPI
exception handler in ``fleetdispatch.main`` does the translation.
"""
from typing import Optional


class DispatchError(Exception):
    status_code = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "retryable": self.retryable}


class TripValidationError(DispatchError):
    """A required field is missing or out of range. Nothing was written."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["field"] = self.field
        return body


class InvalidTransitionError(DispatchError):
    status_code = 409


class PermissionDeniedError(DispatchError):
    status_code = 403


class TripNotFoundError(DispatchError):
    status_code = 404


class CustomerNotFoundError(DispatchError):
    status_code = 404


class ConcurrentUpdateError(DispatchError):
    """The trip changed between read and write (version mismatch)."""

    status_code = 409
    retryable = True


class StoreUnavailableError(DispatchError):
    status_code = 503
    retryable = True
