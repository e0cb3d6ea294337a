"""Configuration models and loaders for the BearWatch client."""

from .loader import DEFAULTS, ENV_VARS, EXAMPLE_API_KEY, ConfigError, dump_example_config, load_config
from .models import DEFAULT_BASE_URL, ClientConfig, RetryPolicy

__all__ = [
    "ClientConfig",
    "ConfigError",
    "DEFAULTS",
    "DEFAULT_BASE_URL",
    "ENV_VARS",
    "EXAMPLE_API_KEY",
    "RetryPolicy",
    "dump_example_config",
    "load_config",
]
