"""Main entry point for the promoter CLI.

Commands:
    promoter promote: Publish an artifact and update its config record
    promoter history: Show a config record's revisions
    promoter rollback: Restore a previous revision's artifact

Example:
    $ promoter --help
    $ promoter --log-level debug --log-format console promote dist/app.tar.gz -n my-app -r 3f2a9c1
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version

import click

from promoter_core.cli.history import history_command
from promoter_core.cli.promote import promote_command
from promoter_core.cli.rollback import rollback_command
from promoter_core.telemetry.logging import configure_logging


def _get_version() -> str:
    """Get the promoter-core package version, or 'unknown' if not installed."""
    try:
        return get_version("promoter-core")
    except Exception:
        return "unknown"


@click.group(
    name="promoter",
    help="promoter - Promote built artifacts into GitOps deployment config.",
    epilog="Use 'promoter <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="promoter",
    message="%(prog)s %(version)s",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
    envvar="PROMOTER_LOG_LEVEL",
    help="Minimum level for structured logs on stderr.",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "console"], case_sensitive=False),
    default="console",
    show_default=True,
    help="Structured log rendering.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, log_format: str) -> None:
    """Root command group for the promoter CLI."""
    ctx.ensure_object(dict)
    configure_logging(log_level=log_level.upper(), json_output=log_format == "json")


cli.add_command(promote_command)
cli.add_command(history_command)
cli.add_command(rollback_command)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the promoter CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
