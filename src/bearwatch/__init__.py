"""BearWatch heartbeat client."""

from bearwatch._version import __version__
from bearwatch.client import BearWatch
from bearwatch.config import ClientConfig, ConfigError, RetryPolicy, load_config
from bearwatch.errors import BearWatchError, ErrorKind, OperationCancelled, RequestContext
from bearwatch.types import HeartbeatResponse, RequestStatus, ResponseStatus
from bearwatch.util.cancel import CancelToken

__all__ = [
    "BearWatch",
    "BearWatchError",
    "CancelToken",
    "ClientConfig",
    "ConfigError",
    "ErrorKind",
    "HeartbeatResponse",
    "OperationCancelled",
    "RequestContext",
    "RequestStatus",
    "ResponseStatus",
    "RetryPolicy",
    "__version__",
    "load_config",
]
