# oracle_bridge/errors.py
"""
Errors raised by the request lifecycle core.

Every error carries an ``error_code`` (reused verbatim in API error responses)
and the HTTP status the API layer maps it to. Nothing here is retried; the
caller of the failing operation sees the error synchronously.
"""

from typing import Any, Dict, Optional

E_UNKNOWN_REQUEST = "E_UNKNOWN_REQUEST"
E_UNKNOWN_KEY = "E_UNKNOWN_KEY"
E_INVALID_RANGE = "E_INVALID_RANGE"
E_INDEX_OUT_OF_RANGE = "E_INDEX_OUT_OF_RANGE"
E_EMPTY_KEY = "E_EMPTY_KEY"
E_INPUT_TOO_LONG = "E_INPUT_TOO_LONG"
E_ALREADY_FULFILLED = "E_ALREADY_FULFILLED"
E_DUPLICATE_REQUEST = "E_DUPLICATE_REQUEST"
E_TRANSPORT = "E_TRANSPORT"
E_CONFIG = "E_CONFIG"


class OracleError(Exception):
    error_code = "E_INTERNAL"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnknownRequest(OracleError):
    error_code = E_UNKNOWN_REQUEST
    http_status = 404

    def __init__(self, request_id: str):
        super().__init__(f"Unknown request id {request_id}", {"request_id": request_id})
        self.request_id = request_id


class UnknownKey(OracleError):
    error_code = E_UNKNOWN_KEY
    http_status = 404

    def __init__(self, lookup_key: str):
        super().__init__(f"No history entry indexed under key {lookup_key!r}", {"lookup_key": lookup_key})
        self.lookup_key = lookup_key


class InvalidRange(OracleError):
    error_code = E_INVALID_RANGE
    http_status = 400

    def __init__(self, start: int, end: int, low: int, length: int):
        super().__init__(
            f"Invalid history range [{start}, {end}]: need {low} <= start <= end < {length}",
            {"start": start, "end": end, "first_position": low, "length": length},
        )


class IndexOutOfRange(OracleError):
    """Correlation table and history list disagree. Not a user error."""

    error_code = E_INDEX_OUT_OF_RANGE
    http_status = 500

    def __init__(self, position: int, length: int):
        super().__init__(f"History position {position} out of range (length {length})",
                         {"position": position, "length": length})


class EmptyKey(OracleError):
    error_code = E_EMPTY_KEY
    http_status = 400

    def __init__(self):
        super().__init__("lookup_key must be a non-empty string")


class InputTooLong(OracleError):
    error_code = E_INPUT_TOO_LONG
    http_status = 400

    def __init__(self, field: str, limit: int, length: int):
        super().__init__(f"{field} is {length} characters; the limit is {limit}",
                         {"field": field, "limit": limit, "length": length})


class AlreadyFulfilled(OracleError):
    error_code = E_ALREADY_FULFILLED
    http_status = 409

    def __init__(self, request_id: str):
        super().__init__(f"Request {request_id} was already fulfilled", {"request_id": request_id})
        self.request_id = request_id


class DuplicateRequest(OracleError):
    error_code = E_DUPLICATE_REQUEST
    http_status = 409

    def __init__(self, request_id: str):
        super().__init__(f"Request id {request_id} already registered", {"request_id": request_id})


class TransportError(OracleError):
    error_code = E_TRANSPORT
    http_status = 502


class ConfigError(OracleError):
    error_code = E_CONFIG
    http_status = 400
