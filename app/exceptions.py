"""
Shipping error taxonomy. Each error carries the HTTP status the API layer renders it with.
"""
from typing import Any, Optional


class ShippingError(Exception):
    status_code = 500

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_response(self) -> dict:
        return {"detail": self.message, **self.extra}


class AuthenticationError(ShippingError):
    """Aggregator rejected the stored credentials or the session expired with no valid refresh."""
    status_code = 502


class ConfigurationError(ShippingError):
    """Integration not configured, disabled, or missing the pickup location."""
    status_code = 503


class InvalidStateError(ShippingError):
    """A lifecycle precondition was violated."""
    status_code = 400


class RequiresConfirmationError(ShippingError):
    """Cancelling a shipment the courier already holds needs force=true."""
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str]):
        super().__init__(message, {"requiresConfirmation": True, "currentStatus": current_status})
        self.current_status = current_status


class NotServiceableError(ShippingError):
    status_code = 422


class AggregatorError(ShippingError):
    """Non-2xx or malformed envelope from the courier API."""
    status_code = 502

    def __init__(self, message: str, endpoint: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.http_status = http_status


class UnknownOutcomeError(AggregatorError):
    """A state-changing call timed out; the aggregator may or may not have applied it."""
    status_code = 504

    def to_response(self) -> dict:
        return {"detail": self.message, "unknownOutcome": True, "action": "sync"}


class NotFoundError(ShippingError):
    status_code = 404


class ValidationError(ShippingError):
    status_code = 400
