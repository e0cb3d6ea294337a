"""Request and response types for heartbeat operations."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RequestStatus(str, Enum):
    """Statuses a client may report."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ResponseStatus(str, Enum):
    """Statuses the server may return, including server-detected states."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    MISSED = "MISSED"


class HeartbeatResponse(BaseModel):
    """Run record echoed back by the ingest endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    job_id: str = Field(alias="jobId")
    run_id: str = Field(alias="runId")
    status: ResponseStatus
    received_at: str = Field(alias="receivedAt")


__all__ = ["HeartbeatResponse", "RequestStatus", "ResponseStatus"]
