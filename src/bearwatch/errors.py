"""Error taxonomy for BearWatch requests."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Optional

Operation = Literal["ping", "start", "complete", "fail"]


class ErrorKind(str, Enum):
    """Closed set of failure classes a request can end in."""

    INVALID_API_KEY = "INVALID_API_KEY"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR, ErrorKind.NETWORK_ERROR, ErrorKind.TIMEOUT}
)
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RequestContext:
    """Debugging metadata attached to an error; never affects control flow."""

    job_id: Optional[str] = None
    run_id: Optional[str] = None
    operation: Optional[Operation] = None


class BearWatchError(Exception):
    """Terminal, classified failure of a BearWatch request.

    ``response_body`` holds the raw server reply for diagnostics and may
    contain sensitive data; avoid logging it unconditionally.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        status_code: int | None = None,
        response_body: str | None = None,
        context: RequestContext | None = None,
        retry_after: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.response_body = response_body
        self.context = context
        self.retry_after = retry_after
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        return is_retryable(self)

    def __repr__(self) -> str:
        return (
            f"BearWatchError({self.message!r}, kind={self.kind.value}, "
            f"status_code={self.status_code!r})"
        )


class OperationCancelled(Exception):
    """Raised when a caller-owned :class:`~bearwatch.util.cancel.CancelToken` fires.

    Deliberately not a :class:`BearWatchError`: it reflects the caller's own
    decision and is propagated without classification or retry.
    """

    def __init__(self, reason: Any = None) -> None:
        super().__init__(f"Operation cancelled: {reason}" if reason is not None else "Operation cancelled")
        self.reason = reason


def is_retryable(error: BearWatchError) -> bool:
    """Return True when ``error`` may succeed on a later attempt."""

    if error.status_code is not None and error.status_code in RETRYABLE_STATUS_CODES:
        return True
    return error.kind in RETRYABLE_KINDS


def map_status_to_error_kind(status: int, body: Any = None) -> ErrorKind:
    """Map a non-OK status with a parsed JSON body to an error kind."""

    if status == 401:
        return ErrorKind.INVALID_API_KEY
    if status == 404:
        return ErrorKind.JOB_NOT_FOUND
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status >= 500:
        return ErrorKind.SERVER_ERROR

    code = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code")
    if isinstance(code, str) and code in ErrorKind.__members__:
        return ErrorKind(code)

    # Unknown 4xx codes fall through to SERVER_ERROR, which makes them retryable.
    return ErrorKind.SERVER_ERROR


__all__ = [
    "BearWatchError",
    "ErrorKind",
    "OperationCancelled",
    "RETRYABLE_KINDS",
    "RETRYABLE_STATUS_CODES",
    "RequestContext",
    "is_retryable",
    "map_status_to_error_kind",
]
