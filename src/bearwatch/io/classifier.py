"""Classify a completed attempt into a typed outcome.

HTTP status is inspected before the body is parsed, so that a gateway
returning an HTML error page for a 5xx still lands in a retryable class.
Rules are evaluated top-to-bottom; the first one returning an outcome wins.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Optional

import requests

from bearwatch.errors import ErrorKind, OperationCancelled, RequestContext, map_status_to_error_kind
from bearwatch.io.outcome import AttemptOutcome, Failure, Success
from bearwatch.util.cancel import CancelToken

JSON_CONTENT_TYPE = "application/json"

_UNPARSED = object()


@dataclass(frozen=True)
class ResponseSnapshot:
    """Raw signals of a received response, fully read."""

    status_code: int
    content_type: Optional[str]
    text: str
    retry_after: Optional[str] = None
    context: Optional[RequestContext] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_json(self) -> bool:
        return bool(self.content_type) and JSON_CONTENT_TYPE in self.content_type.lower()

    @cached_property
    def body(self) -> Any:
        """Parsed JSON body, or the ``_UNPARSED`` sentinel if it is not valid JSON."""

        try:
            return json.loads(self.text)
        except ValueError:
            return _UNPARSED

    @property
    def body_parses(self) -> bool:
        return self.body is not _UNPARSED

    def failure(self, kind: ErrorKind, message: str, *, retry_after: str | None = None) -> Failure:
        return Failure(
            kind=kind,
            message=message,
            status_code=self.status_code,
            retry_after=retry_after,
            response_body=self.text,
            context=self.context,
        )


Rule = Callable[[ResponseSnapshot], Optional[AttemptOutcome]]


def _server_error_without_json(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if snap.status_code >= 500 and not snap.is_json:
        return snap.failure(ErrorKind.SERVER_ERROR, f"Server error ({snap.status_code})")
    return None


def _rate_limited(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if snap.status_code == 429:
        return snap.failure(ErrorKind.RATE_LIMITED, "Rate limit exceeded", retry_after=snap.retry_after)
    return None


def _client_error_without_json(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if not snap.ok and not snap.is_json:
        return snap.failure(ErrorKind.INVALID_RESPONSE, "Non-JSON response received")
    return None


def _error_with_unparseable_json(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if snap.ok or snap.body_parses:
        return None
    if snap.status_code >= 500:
        return snap.failure(ErrorKind.SERVER_ERROR, f"Server error ({snap.status_code})")
    return snap.failure(ErrorKind.INVALID_RESPONSE, "Failed to parse JSON response")


def _error_with_json(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if snap.ok:
        return None
    kind = map_status_to_error_kind(snap.status_code, snap.body)
    message = error_message(snap.body) or f"Request failed with status {snap.status_code}"
    return snap.failure(kind, message)


def _ok_without_json(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if not snap.is_json:
        return snap.failure(ErrorKind.INVALID_RESPONSE, "Non-JSON response received")
    if not snap.body_parses:
        return snap.failure(ErrorKind.INVALID_RESPONSE, "Failed to parse JSON response")
    if not isinstance(snap.body, dict):
        return snap.failure(ErrorKind.INVALID_RESPONSE, "Response envelope is not a JSON object")
    return None


def _unsuccessful_envelope(snap: ResponseSnapshot) -> AttemptOutcome | None:
    if snap.body.get("success") is False:
        return snap.failure(ErrorKind.SERVER_ERROR, error_message(snap.body) or "Request failed")
    return None


def _success(snap: ResponseSnapshot) -> AttemptOutcome:
    return Success(snap.body.get("data"))


RESPONSE_RULES: Sequence[Rule] = (
    _server_error_without_json,
    _rate_limited,
    _client_error_without_json,
    _error_with_unparseable_json,
    _error_with_json,
    _ok_without_json,
    _unsuccessful_envelope,
    _success,
)


def classify_response(snap: ResponseSnapshot, rules: Sequence[Rule] = RESPONSE_RULES) -> AttemptOutcome:
    """Apply ``rules`` in order and return the first outcome produced."""

    for rule in rules:
        outcome = rule(snap)
        if outcome is not None:
            return outcome
    raise RuntimeError("response rules did not produce an outcome")  # pragma: no cover


def classify_exception(
    exc: BaseException,
    *,
    timed_out: bool,
    cancel_token: CancelToken | None = None,
    timeout_ms: int,
    context: RequestContext | None = None,
) -> Failure:
    """Classify a transport-level failure.

    If the caller's ``cancel_token`` fired it takes priority, and
    :class:`OperationCancelled` is raised instead of returning a failure.
    ``timed_out`` means the executor's own timer fired.
    """

    if cancel_token is not None and cancel_token.cancelled:
        if isinstance(exc, OperationCancelled):
            raise exc
        raise OperationCancelled(cancel_token.reason) from exc
    if timed_out or isinstance(exc, requests.Timeout):
        return Failure(
            kind=ErrorKind.TIMEOUT,
            message=f"Request timed out after {timeout_ms}ms",
            cause=exc,
            context=context,
        )
    if isinstance(exc, OperationCancelled):
        raise exc
    if isinstance(exc, requests.RequestException):
        return Failure(kind=ErrorKind.NETWORK_ERROR, message="Network error", cause=exc, context=context)
    return Failure(kind=ErrorKind.NETWORK_ERROR, message="Unknown error occurred", cause=exc, context=context)


def error_message(body: Any) -> str | None:
    """Extract a human readable message from an error envelope."""

    if not isinstance(body, dict):
        return None
    if isinstance(body.get("message"), str):
        return body["message"]
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


__all__ = [
    "JSON_CONTENT_TYPE",
    "RESPONSE_RULES",
    "ResponseSnapshot",
    "classify_exception",
    "classify_response",
    "error_message",
]
