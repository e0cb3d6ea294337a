"""Command-line entry points for reporting job heartbeats."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from bearwatch.client import BearWatch
from bearwatch.config import ConfigError, dump_example_config, load_config
from bearwatch.errors import BearWatchError
from bearwatch.types import RequestStatus
from bearwatch.util.logging import configure_logging

app = typer.Typer(add_completion=False, help="BearWatch heartbeat CLI")


class CommandFailed(RuntimeError):
    """A wrapped command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int) -> None:
        super().__init__(f"Command {' '.join(command)!r} exited with status {returncode}")
        self.returncode = returncode


def _parse_metadata(items: Optional[List[str]]) -> dict[str, str] | None:
    if not items:
        return None
    metadata: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Metadata must be KEY=VALUE, got {item!r}", param_hint="--metadata")
        metadata[key.strip()] = value
    return metadata


def _client(config_path: Optional[Path], api_key: Optional[str]) -> BearWatch:
    overrides = {"api_key": api_key} if api_key else None
    try:
        cfg = load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2)
    return BearWatch.from_config(cfg)


def _fail(exc: BearWatchError) -> NoReturn:
    status = f" (HTTP {exc.status_code})" if exc.status_code is not None else ""
    typer.echo(f"{exc.kind.value}: {exc.message}{status}", err=True)
    raise typer.Exit(code=1)


@app.command()
def ping(
    job_id: str = typer.Argument(..., help="Job identifier"),
    status: RequestStatus = typer.Option(RequestStatus.SUCCESS, help="Run status to report"),
    output: Optional[str] = typer.Option(None, help="Output message"),
    error: Optional[str] = typer.Option(None, help="Error message (for FAILED runs)"),
    metadata: Optional[List[str]] = typer.Option(None, "--metadata", "-m", help="KEY=VALUE, repeatable"),
    no_retry: bool = typer.Option(False, "--no-retry", help="Make a single attempt only"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (YAML/TOML/JSON)"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="API key (overrides BEARWATCH_API_KEY)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log retry attempts"),
) -> None:
    """Send a single heartbeat for JOB_ID."""

    configure_logging(level="DEBUG" if verbose else "WARNING")
    meta = _parse_metadata(metadata)
    with _client(config, api_key) as bw:
        try:
            response = bw.ping(job_id, status=status, output=output, error=error, metadata=meta, retry=not no_retry)
        except BearWatchError as exc:
            _fail(exc)
    typer.echo(json.dumps(response.model_dump(mode="json", by_alias=True)))


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def run(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Job identifier"),
    metadata: Optional[List[str]] = typer.Option(None, "--metadata", "-m", help="KEY=VALUE, repeatable"),
    no_retry: bool = typer.Option(False, "--no-retry", help="Make a single attempt only"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (YAML/TOML/JSON)"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="API key (overrides BEARWATCH_API_KEY)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log retry attempts"),
) -> None:
    """Run a command and report SUCCESS or FAILED for JOB_ID.

    Usage: bearwatch run JOB_ID -- COMMAND [ARGS...]
    """

    command = list(ctx.args)
    if not command:
        typer.echo("Provide the command to run after '--'.", err=True)
        raise typer.Exit(code=2)

    configure_logging(level="DEBUG" if verbose else "WARNING")
    meta = _parse_metadata(metadata)

    def _execute() -> int:
        completed = subprocess.run(command, check=False)
        if completed.returncode != 0:
            raise CommandFailed(command, completed.returncode)
        return completed.returncode

    with _client(config, api_key) as bw:
        try:
            bw.wrap(job_id, _execute, metadata=meta, retry=not no_retry)
        except CommandFailed as exc:
            raise typer.Exit(code=exc.returncode)
        except FileNotFoundError as exc:
            typer.echo(f"Cannot run command: {exc}", err=True)
            raise typer.Exit(code=127)
        except BearWatchError as exc:
            _fail(exc)


@app.command()
def dump_config(
    dest: Path = typer.Argument(..., help="Destination file (.yaml/.yml/.toml/.json)"),
) -> None:
    """Write an example configuration file."""

    try:
        dump_example_config(dest)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    typer.echo(f"Wrote {dest}")


def main() -> None:
    app()


__all__ = ["main", "app"]
