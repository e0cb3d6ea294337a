"""Result of a single request attempt."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from bearwatch.errors import BearWatchError, ErrorKind, RequestContext

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    payload: T


@dataclass(frozen=True)
class Failure:
    """Classified failure; never carries a payload."""

    kind: ErrorKind
    message: str
    status_code: int | None = None
    retry_after: str | None = None
    response_body: str | None = None
    cause: BaseException | None = None
    context: RequestContext | None = None

    def to_error(self) -> BearWatchError:
        return BearWatchError(
            self.message,
            kind=self.kind,
            status_code=self.status_code,
            response_body=self.response_body,
            context=self.context,
            retry_after=self.retry_after,
            cause=self.cause,
        )


AttemptOutcome = Union[Success[Any], Failure]


__all__ = ["AttemptOutcome", "Failure", "Success"]
