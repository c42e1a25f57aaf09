"""
Domain error taxonomy.

Every error carries a machine-readable `code` and the HTTP `status_code` the
API layer answers with. Services raise these; core.exception_handlers turns
them into the standard error envelope.
"""
from enum import Enum


class WeatherAppError(Exception):
    code = "internal_error"
    status_code = 500
    default_message = "An internal error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(WeatherAppError):
    code = "invalid_input"
    status_code = 400
    default_message = "Invalid input"


class Conflict(WeatherAppError):
    code = "conflict"
    status_code = 409
    default_message = "Resource already exists"


class NotFound(WeatherAppError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class UpstreamErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    SERVICE_ERROR = "service_error"


_UPSTREAM_STATUS = {
    UpstreamErrorKind.INVALID_REQUEST: (400, "Invalid request"),
    UpstreamErrorKind.NOT_FOUND: (404, "City not found"),
    UpstreamErrorKind.SERVICE_ERROR: (500, "Weather service error"),
}


class UpstreamFailure(WeatherAppError):
    """Weather provider failure, classified from the provider's response."""

    code = "upstream_error"

    def __init__(self, kind: UpstreamErrorKind, message: str | None = None):
        self.kind = kind
        status_code, default_message = _UPSTREAM_STATUS[kind]
        self.status_code = status_code
        super().__init__(message or default_message)


class TransportFailure(WeatherAppError):
    code = "transport_error"
    default_message = "Failed to send notification"


class StoreFailure(WeatherAppError):
    code = "store_error"
    default_message = "Persistence error"


class InternalFailure(WeatherAppError):
    code = "internal_error"
