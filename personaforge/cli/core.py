"""Shared CLI application context and setup helpers."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import typer
from loguru import logger
from rich.console import Console

from personaforge import __logo__, __version__

if TYPE_CHECKING:
    from personaforge.app.bootstrap import Runtime
    from personaforge.config.schema import Config, LoggingConfig

app = typer.Typer(
    name="personaforge",
    help=f"{__logo__} personaforge - humanlike chat accounts",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} personaforge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """personaforge - humanlike chat accounts."""


def configure_logging(config: "LoggingConfig", *, verbose: bool = False) -> None:
    """Replace the default loguru sink with the configured ones."""
    from personaforge.utils.helpers import get_logs_path

    level = "DEBUG" if verbose else config.level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level)
    if config.file:
        path = config.file if "/" in config.file else str(get_logs_path() / config.file)
        logger.add(path, level=level, rotation=config.rotation, retention=config.retention, enqueue=True)


def make_runtime(config: "Config") -> "Runtime":
    from personaforge.app.bootstrap import build_runtime

    return build_runtime(config)


def require_account(runtime: "Runtime", account_id: str) -> None:
    if runtime.registry.get_account(account_id) is None:
        console.print(f"[red]Unknown account: {account_id}[/red]")
        raise typer.Exit(1)
