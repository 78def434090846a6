"""``promoter history``: show a config record's current artifact and revisions."""

from __future__ import annotations

from pathlib import Path

import click

from promoter_core.cli.utils import (
    build_coordinator,
    config_option,
    echo_json,
    output_option,
    report_error,
)
from promoter_core.errors import PromotionError
from promoter_core.schemas.promotion import ConfigRecord


def _format_record(record: ConfigRecord, limit: int) -> str:
    lines = ["", f"Record:   {record.record_id}"]
    if record.current is None:
        lines.append("Current:  (never promoted)")
        lines.append("")
        return "\n".join(lines)

    lines.append(f"Current:  {record.current.pinned_ref} ({record.current.tag})")
    lines.append("")
    lines.append(f"{'REV':>4}  {'KIND':<9} {'TAG':<20} {'DIGEST':<19}  APPLIED")
    for entry in reversed(record.revisions[-limit:]):
        kind = entry.kind.value
        if entry.restores_revision is not None:
            kind = f"{kind}:{entry.restores_revision}"
        lines.append(
            f"{entry.revision:>4}  {kind:<9} {entry.artifact.tag:<20} "
            f"{entry.artifact.digest[:19]}  {entry.applied_at.isoformat()}"
        )
    lines.append("")
    return "\n".join(lines)


@click.command(name="history", help="Show the revision history of a config record.")
@click.argument("record_id")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Number of most recent revisions to show.",
)
@config_option
@output_option
def history_command(record_id: str, limit: int, config_path: Path, output: str) -> None:
    """Show RECORD_ID's current artifact and most recent revisions."""
    coordinator = build_coordinator(config_path, output)

    try:
        record = coordinator.history(record_id)
    except PromotionError as e:
        report_error(e, output)

    if output == "json":
        data = record.model_dump(mode="json")
        data["revisions"] = data["revisions"][-limit:]
        echo_json(data)
    else:
        click.echo(_format_record(record, limit))


__all__: list[str] = ["history_command"]
