"""
Error taxonomy for the sync layer.

Backing-store failures are decoded once, at the adapter boundary, into a
StoreError carrying a StoreErrorKind. Call sites branch on the kind instead
of re-parsing response text.
"""
import json
from enum import Enum
from typing import Any, Optional


# PostgREST / Postgres error codes
PG_UNIQUE_VIOLATION = "23505"
PG_INSUFFICIENT_PRIVILEGE = "42501"
PGRST_NO_ROWS = "PGRST116"

GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again."


class StoreErrorKind(Enum):
    """Discriminates backing-store failures."""
    UNIQUE_VIOLATION = "unique_violation"
    NOT_FOUND = "not_found"
    POLICY_REJECTED = "policy_rejected"
    TIMEOUT = "timeout"
    NETWORK = "network"
    UPSTREAM = "upstream"
    INVALID_RESPONSE = "invalid_response"


class StoreError(Exception):
    """Raised by backing-store adapters for any non-success response."""

    def __init__(
        self,
        kind: StoreErrorKind,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code
        self.status = status

    def __repr__(self) -> str:
        return f"StoreError(kind={self.kind.value}, code={self.code}, status={self.status})"


class ValidationError(ValueError):
    """Caller input rejected before any I/O. The only hard stop for users."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class WorkflowError(Exception):
    """A creation workflow failed unexpectedly; message is safe to show."""

    def __init__(self, message: str = GENERIC_RETRY_MESSAGE):
        super().__init__(message)
        self.message = message


def _parse_body(body: Any) -> dict:
    if isinstance(body, dict):
        return body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str) and body.strip():
        try:
            parsed = json.loads(body)
        except ValueError:
            return {"message": body}
        if isinstance(parsed, dict):
            return parsed
    return {}


def decode_store_error(status: int, body: Any) -> StoreError:
    """
    Turn an HTTP status + response body into a StoreError.

    Args:
        status: HTTP status code of the failed response
        body: Raw text, bytes, or already-decoded JSON body

    Returns:
        StoreError with the matching kind
    """
    payload = _parse_body(body)
    code = payload.get("code")
    code = str(code) if code is not None else None
    message = payload.get("message") or payload.get("error") or payload.get("msg") or f"HTTP {status}"

    if code == PG_UNIQUE_VIOLATION or status == 409:
        kind = StoreErrorKind.UNIQUE_VIOLATION
    elif code == PG_INSUFFICIENT_PRIVILEGE or status in (401, 403):
        kind = StoreErrorKind.POLICY_REJECTED
    elif code == PGRST_NO_ROWS or status == 404:
        kind = StoreErrorKind.NOT_FOUND
    elif status == 408 or status == 504:
        kind = StoreErrorKind.TIMEOUT
    else:
        kind = StoreErrorKind.UPSTREAM

    return StoreError(kind, str(message), code=code, status=status)
