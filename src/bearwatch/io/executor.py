"""Single-attempt HTTP execution against the BearWatch API."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional

import requests

from bearwatch._version import __version__
from bearwatch.config.models import ClientConfig
from bearwatch.errors import RequestContext
from bearwatch.io.classifier import JSON_CONTENT_TYPE, ResponseSnapshot, classify_exception, classify_response
from bearwatch.io.outcome import AttemptOutcome
from bearwatch.util.cancel import CancelToken

USER_AGENT = f"bearwatch-sdk-python/{__version__}"
TIMEOUT_REASON = "timeout"

logger = logging.getLogger(__name__)


def default_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": JSON_CONTENT_TYPE,
        "Accept": JSON_CONTENT_TYPE,
        "X-API-Key": api_key,
        "User-Agent": USER_AGENT,
    }


class RequestExecutor:
    """Perform exactly one HTTP round-trip and classify the result.

    A timer fires a private :class:`CancelToken` once ``config.timeout_ms``
    elapses. While waiting for response headers the request runs on a worker
    thread, so either token ends the wait at once; the abandoned request is
    left to finish and its response is closed when it arrives. Once a
    response exists, the tokens close it so a stalled read returns promptly.
    A caller-supplied token surfaces as
    :class:`~bearwatch.errors.OperationCancelled` rather than ``TIMEOUT``.
    No retries and no sleeping happen here.
    """

    chunk_size = 8192
    max_workers = 4

    def __init__(self, config: ClientConfig, *, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._headers: Mapping[str, str] = default_headers(config.api_key)
        self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="bearwatch-request")

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def session(self) -> requests.Session:
        return self._session

    def url_for(self, path: str) -> str:
        return f"{self._config.base_url}{path}"

    def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        context: RequestContext | None = None,
        cancel_token: CancelToken | None = None,
    ) -> AttemptOutcome:
        timeout_token = CancelToken()
        timer = threading.Timer(self._config.timeout_ms / 1000.0, timeout_token.cancel, args=(TIMEOUT_REASON,))
        timer.daemon = True
        response: Optional[requests.Response] = None

        def _abort() -> None:
            if response is not None:
                response.close()

        timer.start()
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            response = self._send(method, path, body, timeout_token, cancel_token)
            timeout_token.add_callback(_abort)
            if cancel_token is not None:
                cancel_token.add_callback(_abort)

            text = self._read_text(response, timeout_token, cancel_token)
            snapshot = ResponseSnapshot(
                status_code=response.status_code,
                content_type=response.headers.get("Content-Type"),
                text=text,
                retry_after=response.headers.get("Retry-After"),
                context=context,
            )
            outcome = classify_response(snapshot)
            logger.debug(
                "%s %s -> %s (%s)", method, path, response.status_code, type(outcome).__name__
            )
            return outcome
        except Exception as exc:  # noqa: BLE001 - every transport failure is classified
            return classify_exception(
                exc,
                timed_out=timeout_token.cancelled,
                cancel_token=cancel_token,
                timeout_ms=self._config.timeout_ms,
                context=context,
            )
        finally:
            timer.cancel()
            timeout_token.remove_callback(_abort)
            if cancel_token is not None:
                cancel_token.remove_callback(_abort)
            if response is not None:
                response.close()

    def _send(
        self,
        method: str,
        path: str,
        body: Any,
        timeout_token: CancelToken,
        cancel_token: CancelToken | None,
    ) -> requests.Response:
        """Wait for response headers; a fired token abandons the request."""

        future = self._pool.submit(
            self._session.request,
            method,
            self.url_for(path),
            json=body,
            headers=dict(self._headers),
            timeout=self._config.timeout_seconds,
            stream=True,
        )
        settled = threading.Event()
        wake = settled.set
        future.add_done_callback(lambda _: wake())
        tokens = [timeout_token] if cancel_token is None else [cancel_token, timeout_token]
        for token in tokens:
            token.add_callback(wake)
        try:
            settled.wait()
        finally:
            for token in tokens:
                token.remove_callback(wake)

        # caller first, then timeout
        for token in tokens:
            if token.cancelled:
                future.add_done_callback(_discard_late_response)
                logger.debug("%s %s abandoned before response (%s)", method, path, token.reason)
                token.raise_if_cancelled()
        return future.result()

    def _read_text(
        self,
        response: requests.Response,
        timeout_token: CancelToken,
        cancel_token: CancelToken | None,
    ) -> str:
        """Read the whole body, checking both tokens between chunks."""

        chunks: list[bytes] = []
        for chunk in response.iter_content(chunk_size=self.chunk_size):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            timeout_token.raise_if_cancelled()
            if chunk:
                chunks.append(chunk)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        timeout_token.raise_if_cancelled()

        encoding = response.encoding or "utf-8"
        return b"".join(chunks).decode(encoding, errors="replace")

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._session.close()


def _discard_late_response(future: Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


__all__ = ["RequestExecutor", "USER_AGENT", "default_headers"]
