"""CLI utility functions and error handling.

This module provides shared utilities for the promoter CLI, including:
- Exit code constants aligned with PromotionError.exit_code
- Output helpers for consistent stderr/stdout usage
- Error reporting in table or JSON form

Human-oriented messages go to stderr so that ``--output json`` on stdout can
be piped straight into jq.

Example:
    from promoter_core.cli.utils import report_error

    try:
        coordinator.promote(request, handle)
    except PromotionError as e:
        report_error(e, output)
"""

from __future__ import annotations

import json
import sys
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from promoter_core.errors import ConfigurationError, PromotionError
from promoter_core.schemas.config import load_config

if TYPE_CHECKING:
    from typing import NoReturn

    from promoter_core.coordinator import PromotionCoordinator

DEFAULT_CONFIG_PATH = "promoter.yaml"
CONFIG_ENVVAR = "PROMOTER_CONFIG"


class ExitCode(IntEnum):
    """Exit codes for CLI commands, one per failure class."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    """Invalid request, bad arguments, or invalid configuration."""
    PUBLISH_REJECTED = 3
    REGISTRY_UNAVAILABLE = 4
    CONCURRENT_UPDATE_CONFLICT = 5
    CONFIG_UPDATE_FAILED = 6
    REVISION_NOT_FOUND = 7


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Config file not found", path="promoter.yaml")
        # Output: Error: Config file not found (path=promoter.yaml)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: ExitCode = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with a code."""
    error(message, **context)
    sys.exit(exit_code)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr."""
    click.echo(message, err=True)


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def report_error(exc: PromotionError, output: str) -> NoReturn:
    """Report a PromotionError in the selected output format and exit with its code."""
    if output == "json":
        echo_json(
            {
                "error": str(exc),
                "error_type": type(exc).__name__,
                "exit_code": exc.exit_code,
            }
        )
    else:
        error(str(exc))
    sys.exit(exc.exit_code)


def build_coordinator(config_path: Path, output: str) -> PromotionCoordinator:
    """Load configuration and wire a coordinator, exiting on configuration errors."""
    from promoter_core.coordinator import PromotionCoordinator

    try:
        config = load_config(config_path)
        return PromotionCoordinator.from_config(config)
    except ConfigurationError as e:
        report_error(e, output)


def config_option(func: Any) -> Any:
    """Shared ``--config`` option."""
    return click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=DEFAULT_CONFIG_PATH,
        show_default=True,
        envvar=CONFIG_ENVVAR,
        help="Path to promoter configuration file.",
    )(func)


def output_option(func: Any) -> Any:
    """Shared ``--output`` option."""
    return click.option(
        "--output",
        type=click.Choice(["table", "json"], case_sensitive=False),
        default="table",
        show_default=True,
        help="Output format.",
    )(func)


__all__ = [
    "CONFIG_ENVVAR",
    "DEFAULT_CONFIG_PATH",
    "ExitCode",
    "build_coordinator",
    "config_option",
    "echo_json",
    "error",
    "error_exit",
    "info",
    "output_option",
    "report_error",
    "success",
]
