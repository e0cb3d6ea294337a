from __future__ import annotations

import threading
import unittest
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import patch

from bearwatch.config import RetryPolicy
from bearwatch.errors import BearWatchError, ErrorKind, OperationCancelled
from bearwatch.io.outcome import Failure, Success
from bearwatch.util.cancel import CancelToken
from bearwatch.util.retry import MAX_RETRY_AFTER_MS, backoff_delay, delay_for, parse_retry_after, run_with_retry


class BackoffDelayTests(unittest.TestCase):
    def test_delay_within_jitter_bounds(self) -> None:
        for attempt in range(6):
            for base in (1, 7, 100, 500):
                upper = base * 2**attempt
                for _ in range(50):
                    delay = backoff_delay(attempt, base)
                    self.assertIsInstance(delay, int)
                    self.assertGreaterEqual(delay, int(upper * 0.5))
                    self.assertLessEqual(delay, upper)

    def test_delay_is_jittered(self) -> None:
        samples = {backoff_delay(3, 500) for _ in range(200)}
        self.assertGreater(len(samples), 1)

    def test_rejects_invalid_arguments(self) -> None:
        with self.assertRaises(ValueError):
            backoff_delay(-1, 100)
        with self.assertRaises(ValueError):
            backoff_delay(0, 0)


class ParseRetryAfterTests(unittest.TestCase):
    def test_seconds(self) -> None:
        self.assertEqual(parse_retry_after("1"), 1000)
        self.assertEqual(parse_retry_after(" 30 "), 30_000)
        self.assertEqual(parse_retry_after("0"), 0)

    def test_missing_or_invalid(self) -> None:
        self.assertIsNone(parse_retry_after(None))
        self.assertIsNone(parse_retry_after(""))
        self.assertIsNone(parse_retry_after("not-a-date"))
        self.assertIsNone(parse_retry_after("-5"))

    def test_http_date(self) -> None:
        now = datetime(2026, 1, 22, 10, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=5), usegmt=True)
        self.assertEqual(parse_retry_after(header, now=now), 5000)

    def test_past_date_clamps_to_zero(self) -> None:
        now = datetime(2026, 1, 22, 10, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now - timedelta(minutes=1), usegmt=True)
        self.assertEqual(parse_retry_after(header, now=now), 0)

    def test_iso_timestamp(self) -> None:
        now = datetime(2026, 1, 22, 10, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(parse_retry_after("2026-01-22T10:00:02Z", now=now), 2000)


def _failure(kind: ErrorKind, status: int | None = None, retry_after: str | None = None) -> Failure:
    return Failure(kind=kind, message=kind.value, status_code=status, retry_after=retry_after)


class Script:
    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        item = self.outcomes.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class RunWithRetryTests(unittest.TestCase):
    policy = RetryPolicy(max_retries=3, base_delay_ms=100)

    def test_returns_payload_on_first_success(self) -> None:
        script = Script(Success({"ok": True}))
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            self.assertEqual(run_with_retry(script, self.policy), {"ok": True})
        self.assertEqual(script.calls, 1)
        sleeper.assert_not_called()

    def test_retries_retryable_failures_until_success(self) -> None:
        script = Script(
            _failure(ErrorKind.SERVER_ERROR, 503),
            _failure(ErrorKind.NETWORK_ERROR),
            Success("done"),
        )
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            self.assertEqual(run_with_retry(script, self.policy), "done")
        self.assertEqual(script.calls, 3)
        self.assertEqual(sleeper.call_count, 2)
        first, second = (call.args[0] for call in sleeper.call_args_list)
        self.assertTrue(0.05 <= first <= 0.1)
        self.assertTrue(0.1 <= second <= 0.2)

    def test_non_retryable_failure_raises_immediately(self) -> None:
        script = Script(_failure(ErrorKind.INVALID_API_KEY, 401), Success("never"))
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            with self.assertRaises(BearWatchError) as ctx:
                run_with_retry(script, self.policy)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_API_KEY)
        self.assertEqual(script.calls, 1)
        sleeper.assert_not_called()

    def test_exhaustion_raises_last_error(self) -> None:
        script = Script(
            _failure(ErrorKind.TIMEOUT),
            _failure(ErrorKind.NETWORK_ERROR),
            _failure(ErrorKind.SERVER_ERROR, 500),
            _failure(ErrorKind.RATE_LIMITED, 429),
        )
        with patch("bearwatch.util.retry.time.sleep"):
            with self.assertRaises(BearWatchError) as ctx:
                run_with_retry(script, self.policy)
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(script.calls, 4)

    def test_zero_retries_makes_single_attempt(self) -> None:
        script = Script(_failure(ErrorKind.SERVER_ERROR, 500))
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            with self.assertRaises(BearWatchError):
                run_with_retry(script, RetryPolicy(max_retries=0, base_delay_ms=100))
        self.assertEqual(script.calls, 1)
        sleeper.assert_not_called()

    def test_retryable_status_overrides_kind(self) -> None:
        script = Script(_failure(ErrorKind.INVALID_RESPONSE, 502), Success("ok"))
        with patch("bearwatch.util.retry.time.sleep"):
            self.assertEqual(run_with_retry(script, self.policy), "ok")
        self.assertEqual(script.calls, 2)

    def test_raised_sdk_error_is_treated_as_failure(self) -> None:
        error = BearWatchError("boom", kind=ErrorKind.NETWORK_ERROR)
        script = Script(error, error)
        with patch("bearwatch.util.retry.time.sleep"):
            with self.assertRaises(BearWatchError) as ctx:
                run_with_retry(script, RetryPolicy(max_retries=1, base_delay_ms=10))
        self.assertIs(ctx.exception, error)
        self.assertEqual(script.calls, 2)

    def test_foreign_exception_is_never_retried(self) -> None:
        script = Script(OperationCancelled("user"), Success("never"))
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            with self.assertRaises(OperationCancelled):
                run_with_retry(script, self.policy)
        self.assertEqual(script.calls, 1)
        sleeper.assert_not_called()

    def test_rate_limit_prefers_retry_after(self) -> None:
        script = Script(_failure(ErrorKind.RATE_LIMITED, 429, retry_after="1"), Success("ok"))
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            run_with_retry(script, RetryPolicy(max_retries=1, base_delay_ms=10))
        sleeper.assert_called_once_with(1.0)

    def test_rate_limit_without_hint_uses_backoff(self) -> None:
        error = _failure(ErrorKind.RATE_LIMITED, 429, retry_after="soon").to_error()
        delay = delay_for(error, 2, RetryPolicy(max_retries=3, base_delay_ms=100))
        self.assertTrue(200 <= delay <= 400)

    def test_huge_retry_after_is_capped(self) -> None:
        error = _failure(ErrorKind.RATE_LIMITED, 429, retry_after="9" * 40).to_error()
        self.assertEqual(delay_for(error, 0, self.policy), MAX_RETRY_AFTER_MS)

        script = Script(_failure(ErrorKind.RATE_LIMITED, 429, retry_after="99999999"), Success("ok"))
        with patch("bearwatch.util.retry.time.sleep") as sleeper:
            run_with_retry(script, RetryPolicy(max_retries=1, base_delay_ms=10))
        sleeper.assert_called_once_with(MAX_RETRY_AFTER_MS / 1000.0)

    def test_cancellation_during_sleep_aborts_loop(self) -> None:
        token = CancelToken()
        script = Script(_failure(ErrorKind.SERVER_ERROR, 500), Success("never"))
        timer = threading.Timer(0.05, token.cancel, args=("shutdown",))
        timer.start()
        try:
            with self.assertRaises(OperationCancelled) as ctx:
                run_with_retry(script, RetryPolicy(max_retries=1, base_delay_ms=60_000), cancel_token=token)
        finally:
            timer.cancel()
        self.assertEqual(ctx.exception.reason, "shutdown")
        self.assertEqual(script.calls, 1)

    def test_already_cancelled_token_skips_attempts(self) -> None:
        token = CancelToken()
        token.cancel()
        script = Script(Success("never"))
        with self.assertRaises(OperationCancelled):
            run_with_retry(script, self.policy, cancel_token=token)
        self.assertEqual(script.calls, 0)


if __name__ == "__main__":
    unittest.main()
