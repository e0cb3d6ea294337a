"""Pydantic models describing BearWatch client configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BASE_URL = "https://api.bearwatch.dev"


class RetryPolicy(BaseModel):
    """Retry budget applied to one logical call."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=500, ge=1)


class ClientConfig(BaseModel):
    """Resolved, immutable client configuration shared by every call."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_key: str = Field(min_length=1)
    base_url: str = DEFAULT_BASE_URL
    timeout_ms: int = Field(default=30_000, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=500, ge=1)

    @field_validator("api_key")
    @classmethod
    def _strip_api_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("api_key must not be blank.")
        return value

    @field_validator("base_url")
    @classmethod
    def _normalise_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL.")
        return value

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def retry_policy(self) -> RetryPolicy:
        """Default retry policy derived from this configuration."""

        return RetryPolicy(max_retries=self.max_retries, base_delay_ms=self.retry_delay_ms)


__all__ = ["ClientConfig", "DEFAULT_BASE_URL", "RetryPolicy"]
