"""``promoter promote``: publish a built artifact and point its config record at it.

Example:
    $ promoter promote dist/my-app.tar.gz --name my-app --revision 3f2a9c1 --tag v1.2.3
    $ promoter promote dist/my-app.tar.gz --event push.json --output json
"""

from __future__ import annotations

import json
from pathlib import Path

import click
import structlog

from promoter_core.cli.utils import (
    ExitCode,
    build_coordinator,
    config_option,
    echo_json,
    error_exit,
    info,
    output_option,
    report_error,
    success,
)
from promoter_core.errors import InvalidRequestError
from promoter_core.listener import SHORT_REVISION_LENGTH, parse_push_event
from promoter_core.registry.backend import DEFAULT_MEDIA_TYPE, ArtifactHandle
from promoter_core.schemas.promotion import PromotionOutcome, PromotionRequest

logger = structlog.get_logger(__name__)


def _format_outcome(outcome: PromotionOutcome) -> str:
    lines = [
        "",
        f"Promotion ID:     {outcome.promotion_id}",
        f"Artifact:         {outcome.request.artifact_name}",
        f"Source Revision:  {outcome.request.source_revision}",
        f"State:            {outcome.state.value}",
    ]
    if outcome.artifact is not None:
        lines.append(f"Reference:        {outcome.artifact.pinned_ref}")
        lines.append(f"Tag:              {outcome.artifact.tag}")
    if outcome.config_revision is not None:
        lines.append(f"Config Revision:  {outcome.config_revision}")
    if outcome.trace_id:
        lines.append(f"Trace ID:         {outcome.trace_id}")
    lines.append("")
    return "\n".join(lines)


def _build_request(
    event_path: Path | None,
    name: str | None,
    revision: str | None,
    tag: str | None,
    target: str | None,
    requested_by: str | None,
) -> PromotionRequest:
    """Build the request from a push event file or from explicit options."""
    if event_path is not None:
        try:
            payload = json.loads(event_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidRequestError("event", f"cannot be read as JSON: {e}") from e
        request = parse_push_event(payload, target=target, requested_by=requested_by)
        overrides = {
            key: value
            for key, value in (
                ("artifact_name", name),
                ("source_revision", revision),
                ("requested_tag", tag),
            )
            if value is not None
        }
        return request.model_copy(update=overrides) if overrides else request

    if name is None or revision is None:
        error_exit("--name and --revision are required without --event", ExitCode.USAGE_ERROR)

    return PromotionRequest(
        source_revision=revision,
        artifact_name=name,
        requested_tag=tag or revision[:SHORT_REVISION_LENGTH],
        target=target,
        requested_by=requested_by,
    )


@click.command(
    name="promote",
    help="Publish an artifact and update its deployment config record.",
    epilog="""
Examples:
    $ promoter promote dist/app.tar.gz --name my-app --revision 3f2a9c1 --tag v1.2.3
    $ promoter promote dist/app.tar.gz --event push.json --output json

Exit Codes:
    0 - Promotion succeeded (config record updated)
    2 - Invalid request or configuration
    3 - Publish rejected (authentication or quota)
    4 - Registry unavailable
    5 - Concurrent update conflict, resubmit
    6 - Config store unavailable
""",
)
@click.argument(
    "artifact_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--name", "-n", help="Artifact name (lowercase, digits, hyphens).")
@click.option("--revision", "-r", help="Source commit id that produced the artifact.")
@click.option("--tag", "-t", help="Tag to publish under. Defaults to the short revision.")
@click.option("--target", help="Config record to update. Defaults to the artifact name.")
@click.option(
    "--event",
    "event_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Push-webhook payload (JSON) to derive name, revision and tag from.",
)
@click.option(
    "--media-type",
    default=DEFAULT_MEDIA_TYPE,
    show_default=True,
    help="Media type of the artifact layer.",
)
@click.option("--requested-by", help="Operator identity for the audit trail.")
@config_option
@output_option
def promote_command(
    artifact_path: Path,
    name: str | None,
    revision: str | None,
    tag: str | None,
    target: str | None,
    event_path: Path | None,
    media_type: str,
    requested_by: str | None,
    config_path: Path,
    output: str,
) -> None:
    """Promote ARTIFACT_PATH through publish and config update."""
    try:
        request = _build_request(event_path, name, revision, tag, target, requested_by)
    except InvalidRequestError as e:
        report_error(e, output)

    coordinator = build_coordinator(config_path, output)
    handle = ArtifactHandle.from_path(artifact_path, media_type=media_type)

    if output == "table":
        info(f"Promoting {request.artifact_name} ({request.source_revision})")

    outcome = coordinator.execute(request, handle)

    if output == "json":
        echo_json(outcome.model_dump(mode="json"))
    else:
        click.echo(_format_outcome(outcome))

    if outcome.error is not None:
        logger.debug("promote_command_failed", error_type=outcome.error_type)
        if output == "table":
            report_error(outcome.error, output)
        raise SystemExit(outcome.exit_code)

    if output == "table":
        success(f"Promoted {request.artifact_name} to {outcome.artifact.tagged_ref}")


__all__: list[str] = ["promote_command"]
