"""Retry helpers for heartbeat delivery over unreliable networks."""

from __future__ import annotations

import logging
import math
import random
import time
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from bearwatch.config.models import RetryPolicy
from bearwatch.errors import BearWatchError, ErrorKind, OperationCancelled, is_retryable
from bearwatch.io.outcome import AttemptOutcome, Success
from bearwatch.util.cancel import CancelToken

logger = logging.getLogger(__name__)

MAX_RETRY_AFTER_MS = 300_000


def backoff_delay(attempt: int, base_delay_ms: int) -> int:
    """Exponential backoff with jitter, in milliseconds.

    The result lies in ``[base * 2**attempt * 0.5, base * 2**attempt]`` so that
    concurrent clients do not retry in lockstep.
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    if base_delay_ms <= 0:
        raise ValueError("base_delay_ms must be > 0")

    exponential = base_delay_ms * (2**attempt)
    jitter = random.uniform(0.5, 1.0)
    return math.floor(exponential * jitter)


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> int | None:
    """Convert a ``Retry-After`` header into a delay in milliseconds.

    Accepts delta-seconds or an absolute date. Returns None when the value is
    missing or unusable so the caller can fall back to backoff.
    """
    if not value:
        return None

    text = value.strip()
    if text.isascii() and text.isdigit():
        return int(text) * 1000

    target = _parse_http_date(text)
    if target is None:
        return None

    current = now or datetime.now(timezone.utc)
    delta_ms = (target - current).total_seconds() * 1000
    return max(0, math.floor(delta_ms))


def _parse_http_date(text: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def delay_for(error: BearWatchError, attempt: int, policy: RetryPolicy) -> int:
    """Pick the wait before the next attempt, preferring the server's hint on 429.

    The hint is capped at ``MAX_RETRY_AFTER_MS``.
    """

    if error.kind is ErrorKind.RATE_LIMITED:
        hinted = parse_retry_after(error.retry_after)
        if hinted is not None:
            return min(hinted, MAX_RETRY_AFTER_MS)
    return backoff_delay(attempt, policy.base_delay_ms)


def sleep(delay_ms: int, *, cancel_token: CancelToken | None = None) -> None:
    """Wait ``delay_ms``; a fired ``cancel_token`` aborts the wait immediately."""

    seconds = delay_ms / 1000.0
    if cancel_token is None:
        time.sleep(seconds)
        return
    if cancel_token.wait(seconds):
        raise OperationCancelled(cancel_token.reason)


def run_with_retry(
    attempt_fn: Callable[[], AttemptOutcome],
    policy: RetryPolicy,
    *,
    cancel_token: CancelToken | None = None,
) -> Any:
    """Drive ``attempt_fn`` until it succeeds or the retry budget is spent.

    ``attempt_fn`` returns a :class:`Success` or :class:`Failure`; a raised
    :class:`BearWatchError` counts as a failure. Any other exception, such as
    :class:`OperationCancelled`, propagates on first sight. At most
    ``policy.max_retries + 1`` attempts are made.
    """
    for attempt in range(policy.max_retries + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            outcome = attempt_fn()
        except BearWatchError as exc:
            error = exc
        else:
            if isinstance(outcome, Success):
                return outcome.payload
            error = outcome.to_error()

        if not is_retryable(error) or attempt >= policy.max_retries:
            raise error

        delay_ms = delay_for(error, attempt, policy)
        logger.debug(
            "Attempt %s/%s failed with %s (status=%s); retrying in %sms",
            attempt + 1,
            policy.max_retries + 1,
            error.kind.value,
            error.status_code,
            delay_ms,
        )
        sleep(delay_ms, cancel_token=cancel_token)

    raise AssertionError("unreachable: retry loop exits via return or raise")  # pragma: no cover


__all__ = ["MAX_RETRY_AFTER_MS", "backoff_delay", "delay_for", "parse_retry_after", "run_with_retry", "sleep"]
