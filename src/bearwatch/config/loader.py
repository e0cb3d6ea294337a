"""Config loading entry points for the BearWatch client."""

from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml
from pydantic import ValidationError

from .models import DEFAULT_BASE_URL, ClientConfig

DEFAULTS: Mapping[str, Any] = {
    "api_key": "",
    "base_url": DEFAULT_BASE_URL,
    "timeout_ms": 30_000,
    "max_retries": 3,
    "retry_delay_ms": 500,
}

ENV_VARS: Mapping[str, str] = {
    "BEARWATCH_API_KEY": "api_key",
    "BEARWATCH_BASE_URL": "base_url",
    "BEARWATCH_TIMEOUT_MS": "timeout_ms",
    "BEARWATCH_MAX_RETRIES": "max_retries",
    "BEARWATCH_RETRY_DELAY_MS": "retry_delay_ms",
}

SECTION_KEY = "bearwatch"
EXAMPLE_API_KEY = "replace-with-your-api-key"


class ConfigError(RuntimeError):
    """Raised when configuration files cannot be loaded or validated."""


def load_config(
    path: Path | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ClientConfig:
    """Resolve the client configuration.

    Sources, lowest precedence first: built-in defaults, the optional config
    file at ``path``, ``BEARWATCH_*`` environment variables, then ``overrides``
    (dotted keys such as ``bearwatch.timeout_ms`` are accepted).
    """

    merged: dict[str, Any] = dict(DEFAULTS)

    if path:
        file_data = _expect_mapping(_read_structured_file(path), path)
        merged = _deep_merge(merged, _unwrap_section(file_data))

    merged = _deep_merge(merged, _env_values(os.environ if environ is None else environ))

    if overrides:
        merged = _deep_merge(merged, _unwrap_section(_expand_override_keys(overrides)))

    try:
        return ClientConfig.model_validate(merged)
    except ValidationError as exc:
        source = path or "defaults/environment"
        raise ConfigError(f"Invalid BearWatch configuration from {source}: {exc}") from exc


def dump_example_config(dest: Path) -> None:
    """Write an example client configuration to ``dest``.

    The settings sit under a ``bearwatch`` section with an API key placeholder
    to replace. The format follows the suffix: ``.json``, ``.toml`` or YAML.
    """

    settings = {**DEFAULTS, "api_key": EXAMPLE_API_KEY}
    suffix = dest.suffix.lower()
    if suffix == ".json":
        text = json.dumps({SECTION_KEY: settings}, indent=2) + "\n"
    elif suffix == ".toml":
        lines = [f"[{SECTION_KEY}]"] + [f"{key} = {json.dumps(value)}" for key, value in settings.items()]
        text = "\n".join(lines) + "\n"
    else:
        text = yaml.safe_dump({SECTION_KEY: settings}, sort_keys=False)

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot write example config to {dest}: {exc}") from exc


def _expect_mapping(payload: Any, source: Path) -> dict[str, Any]:
    if payload is None:
        return {}
    if isinstance(payload, Mapping):
        return dict(payload)
    raise ConfigError(f"{source} must hold a mapping of settings, not {type(payload).__name__}.")


def _unwrap_section(data: Mapping[str, Any]) -> dict[str, Any]:
    """Accept both flat files and files nesting settings under ``bearwatch:``."""

    section = data.get(SECTION_KEY)
    if isinstance(section, Mapping):
        rest = {key: value for key, value in data.items() if key != SECTION_KEY}
        return _deep_merge(rest, section)
    return dict(data)


def _env_values(environ: Mapping[str, str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for env_name, key in ENV_VARS.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            result[key] = value.strip()
    return result


_PARSERS: Mapping[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".toml": tomllib.loads,
    ".json": json.loads,
}


def _read_structured_file(path: Path) -> Any:
    """Parse a YAML, TOML or JSON config file chosen by suffix."""

    parser = _PARSERS.get(path.suffix.lower())
    if parser is None:
        raise ConfigError(f"Unsupported config format for {path}; use .yaml, .toml or .json.")

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file {path} does not exist.") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    try:
        return parser(text)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Could not parse config file {path}: {exc}") from exc


def _deep_merge(base: Mapping[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated by ``extra``, merging nested sections."""

    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _expand_override_keys(overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Turn dotted keys like ``bearwatch.max_retries`` into nested sections."""

    expanded: dict[str, Any] = {}
    for key, value in overrides.items():
        for segment in reversed(key.split(".") if isinstance(key, str) else [key]):
            value = {segment: value}
        expanded = _deep_merge(expanded, value)
    return expanded


__all__ = [
    "ConfigError",
    "DEFAULTS",
    "ENV_VARS",
    "EXAMPLE_API_KEY",
    "dump_example_config",
    "load_config",
]
