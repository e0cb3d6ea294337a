"""BearWatch client: heartbeat reporting for scheduled jobs."""

from __future__ import annotations

import logging
import traceback
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar
from urllib.parse import quote

import requests
from pydantic import ValidationError

from bearwatch.config.models import DEFAULT_BASE_URL, ClientConfig, RetryPolicy
from bearwatch.errors import BearWatchError, ErrorKind, RequestContext
from bearwatch.io.executor import RequestExecutor
from bearwatch.types import HeartbeatResponse, RequestStatus
from bearwatch.util.cancel import CancelToken
from bearwatch.util.retry import run_with_retry

T = TypeVar("T")

logger = logging.getLogger(__name__)

HEARTBEAT_PATH = "/api/v1/ingest/jobs/{job_id}/heartbeat"


def format_timestamp(value: datetime | str) -> str:
    """Render ``value`` as ISO-8601 UTC with millisecond precision.

    Strings are passed through untouched; naive datetimes are taken as UTC.
    """
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class BearWatch:
    """Client for reporting job runs to BearWatch.

    Example::

        bw = BearWatch("your-api-key")
        bw.ping("nightly-backup")

        result = bw.wrap("nightly-backup", run_backup)

    The configuration is immutable once the client is built, so one instance
    may be shared across threads; every call owns its own retry state.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_ms: int = 30_000,
        max_retries: int = 3,
        retry_delay_ms: int = 500,
        session: requests.Session | None = None,
    ) -> None:
        config = ClientConfig(
            api_key=api_key,
            base_url=base_url,
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
        )
        self._setup(config, session)

    @classmethod
    def from_config(cls, config: ClientConfig, *, session: requests.Session | None = None) -> "BearWatch":
        client = cls.__new__(cls)
        client._setup(config, session)
        return client

    def _setup(self, config: ClientConfig, session: requests.Session | None) -> None:
        self._config = config
        self._owns_session = session is None
        self._executor = RequestExecutor(config, session=session)

    @property
    def config(self) -> ClientConfig:
        return self._config

    def ping(
        self,
        job_id: str,
        *,
        status: RequestStatus | str = RequestStatus.SUCCESS,
        output: Optional[str] = None,
        error: Optional[str] = None,
        started_at: datetime | str | None = None,
        completed_at: datetime | str | None = None,
        metadata: Optional[Mapping[str, Any]] = None,
        retry: bool = True,
        cancel_token: CancelToken | None = None,
    ) -> HeartbeatResponse:
        """Send one heartbeat for ``job_id``.

        ``completed_at`` defaults to now and ``started_at`` to ``completed_at``.
        Raises :class:`BearWatchError` once retries are exhausted or on a
        non-retryable failure, and :class:`OperationCancelled` if
        ``cancel_token`` fires.
        """
        if not job_id:
            raise ValueError("job_id must be a non-empty string.")

        completed = format_timestamp(completed_at if completed_at is not None else datetime.now(timezone.utc))
        started = format_timestamp(started_at) if started_at is not None else completed

        body: dict[str, Any] = {
            "status": RequestStatus(status).value,
            "startedAt": started,
            "completedAt": completed,
        }
        if output is not None:
            body["output"] = output
        if error is not None:
            body["error"] = error
        if metadata is not None:
            body["metadata"] = dict(metadata)

        context = RequestContext(job_id=job_id, operation="ping")
        path = HEARTBEAT_PATH.format(job_id=quote(job_id, safe=""))
        policy = self._config.retry_policy if retry else RetryPolicy(
            max_retries=0, base_delay_ms=self._config.retry_delay_ms
        )

        payload = run_with_retry(
            lambda: self._executor.execute("POST", path, body, context=context, cancel_token=cancel_token),
            policy,
            cancel_token=cancel_token,
        )
        return self._parse_heartbeat(payload, context)

    def wrap(
        self,
        job_id: str,
        fn: Callable[[], T],
        *,
        metadata: Optional[Mapping[str, Any]] = None,
        retry: bool = True,
        cancel_token: CancelToken | None = None,
    ) -> T:
        """Run ``fn`` and report its outcome as a single heartbeat.

        If ``fn`` raises, a FAILED heartbeat carrying the traceback is sent and
        the original exception is re-raised, even when reporting itself fails.
        """
        started_at = datetime.now(timezone.utc)
        try:
            result = fn()
        except Exception as exc:
            try:
                self.ping(
                    job_id,
                    status=RequestStatus.FAILED,
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                    error="".join(traceback.format_exception(exc)),
                    metadata=metadata,
                    retry=retry,
                    cancel_token=cancel_token,
                )
            except Exception as report_exc:  # noqa: BLE001 - the job's own error takes priority
                logger.warning("Failed to report FAILED run for %s: %s", job_id, report_exc)
            raise

        self.ping(
            job_id,
            status=RequestStatus.SUCCESS,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            metadata=metadata,
            retry=retry,
            cancel_token=cancel_token,
        )
        return result

    def _parse_heartbeat(self, payload: Any, context: RequestContext) -> HeartbeatResponse:
        try:
            return HeartbeatResponse.model_validate(payload)
        except ValidationError as exc:
            raise BearWatchError(
                "Heartbeat response is missing required fields",
                kind=ErrorKind.INVALID_RESPONSE,
                context=context,
                cause=exc,
            ) from exc

    def close(self) -> None:
        """Release the HTTP session if this client created it."""

        if self._owns_session:
            self._executor.close()

    def __enter__(self) -> "BearWatch":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["BearWatch", "HEARTBEAT_PATH", "format_timestamp"]
