"""
Error taxonomy for venuesync.

Every error carries a stable ``code`` used in API error bodies and an HTTP
status the web layer maps it to.
"""


class VenueSyncError(Exception):
    """Base class for all venuesync errors."""

    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


class InvalidPayload(VenueSyncError):
    """A command field is missing or malformed."""

    code = "invalid_payload"
    status_code = 400


class NotFound(VenueSyncError):
    code = "not_found"
    status_code = 404


class OutOfRange(VenueSyncError):
    """A queue index or position is outside the queue."""

    code = "out_of_range"
    status_code = 400


class UnknownCommand(VenueSyncError):
    code = "unknown_command"
    status_code = 400


class Unauthorized(VenueSyncError):
    """Credential missing or invalid, or the identity may not act on the venue."""

    code = "unauthorized"
    status_code = 401


class Forbidden(Unauthorized):
    code = "forbidden"
    status_code = 403


class StoreUnavailable(VenueSyncError):
    """Transient failure of the document store; safe to retry with backoff."""

    code = "store_unavailable"
    status_code = 503
    retryable = True


class Conflict(VenueSyncError):
    """Concurrent write detected by the version check; retry with a fresh read."""

    code = "conflict"
    status_code = 409
    retryable = True
