"""``promoter rollback``: restore a retained revision's artifact.

Rollback never rewrites history. It appends a new ``rollback`` revision that
points at the artifact of the chosen revision, through the same optimistic
write path as a promotion.

Example:
    $ promoter rollback my-app 3
    $ promoter rollback my-app 3 --output json
"""

from __future__ import annotations

from pathlib import Path

import click
import structlog

from promoter_core.cli.utils import (
    build_coordinator,
    config_option,
    echo_json,
    info,
    output_option,
    report_error,
    success,
)
from promoter_core.errors import PromotionError

logger = structlog.get_logger(__name__)


@click.command(
    name="rollback",
    help="Point a config record back at a previous revision's artifact.",
    epilog="""
Exit Codes:
    0 - Rollback committed
    5 - Concurrent update conflict, retry
    6 - Config store unavailable
    7 - Revision not retained in the record
""",
)
@click.argument("record_id")
@click.argument("revision", type=click.IntRange(min=1))
@config_option
@output_option
def rollback_command(record_id: str, revision: int, config_path: Path, output: str) -> None:
    """Roll RECORD_ID back to REVISION."""
    coordinator = build_coordinator(config_path, output)

    if output == "table":
        info(f"Rolling back {record_id} to revision {revision}")

    try:
        result = coordinator.rollback(record_id, revision)
    except PromotionError as e:
        logger.error(
            "rollback_command_failed",
            error_type=type(e).__name__,
            error_summary=str(e)[:200],
        )
        report_error(e, output)

    if output == "json":
        echo_json(
            {
                "record_id": record_id,
                "revision": result.revision.model_dump(mode="json"),
                "version": result.version,
            }
        )
    else:
        success(
            f"Rolled back {record_id} to revision {revision}: "
            f"{result.revision.artifact.pinned_ref} (new revision {result.revision.revision})"
        )


__all__: list[str] = ["rollback_command"]
