from __future__ import annotations

import json
import threading
from typing import Any, Iterable

import requests
from requests.structures import CaseInsensitiveDict

from bearwatch.config import ClientConfig

API_KEY = "test-key"
JOB_ID = "my-job"


def make_config(**overrides: Any) -> ClientConfig:
    values: dict[str, Any] = {"api_key": API_KEY, "timeout_ms": 1_000, "max_retries": 3, "retry_delay_ms": 10}
    values.update(overrides)
    return ClientConfig(**values)


def heartbeat_data(status: str = "SUCCESS", job_id: str = JOB_ID) -> dict[str, Any]:
    return {
        "jobId": job_id,
        "runId": "run-123",
        "status": status,
        "receivedAt": "2026-01-22T10:00:00Z",
    }


class DummyResponse:
    """Minimal stand-in for a streamed ``requests.Response``."""

    def __init__(
        self,
        content: bytes | str = b"",
        status_code: int = 200,
        *,
        headers: dict[str, str] | None = None,
        chunk_delay: float = 0.0,
    ) -> None:
        self.content = content.encode("utf-8") if isinstance(content, str) else content
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.encoding = "utf-8"
        self.chunk_delay = chunk_delay
        self.closed = False

    def iter_content(self, chunk_size: int = 8192):
        if self.chunk_delay:
            threading.Event().wait(self.chunk_delay)
        for idx in range(0, len(self.content), chunk_size):
            yield self.content[idx : idx + chunk_size]

    def close(self) -> None:
        self.closed = True


def json_response(payload: Any, status_code: int = 200, **kwargs: Any) -> DummyResponse:
    headers = {"Content-Type": "application/json; charset=utf-8"}
    headers.update(kwargs.pop("headers", {}))
    return DummyResponse(json.dumps(payload), status_code, headers=headers, **kwargs)


def ok_response(data: Any | None = None) -> DummyResponse:
    return json_response({"success": True, "data": data if data is not None else heartbeat_data()})


def html_response(status_code: int) -> DummyResponse:
    return DummyResponse(
        "<html><body><h1>502 Bad Gateway</h1></body></html>",
        status_code,
        headers={"Content-Type": "text/html"},
    )


class DummySession(requests.Session):
    """Session that replays scripted responses or exceptions, recording calls."""

    def __init__(self, script: Iterable[DummyResponse | BaseException]) -> None:
        super().__init__()
        self.script = list(script)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> Any:  # type: ignore[override]
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.script:
            raise AssertionError("DummySession ran out of scripted responses")
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True
        super().close()


class BlockingSession(DummySession):
    """Session whose ``request`` stalls until released, as if awaiting headers."""

    def __init__(self, response: DummyResponse, *, hold: float = 1.0) -> None:
        super().__init__([response])
        self.response = response
        self.hold = hold
        self.release = threading.Event()

    def request(self, method: str, url: str, **kwargs: Any) -> Any:  # type: ignore[override]
        self.release.wait(self.hold)
        return super().request(method, url, **kwargs)
