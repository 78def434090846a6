"""Build Trigger Listener: admission checks for promotion requests.

The listener is the entry point of the pipeline. It accepts a
PromotionRequest (or a raw push-webhook payload), applies the naming policy
and tag grammar, and hands the unchanged request on to the publisher.

Validation is deterministic and side-effect-free, so nothing here retries.

Example:
    >>> listener = BuildTriggerListener()
    >>> request = listener.admit(
    ...     PromotionRequest(source_revision="3f2a9c1", artifact_name="my-app", requested_tag="v1")
    ... )
    >>> listener.admit(
    ...     PromotionRequest(source_revision="3f2a9c1", artifact_name="My_App", requested_tag="v1")
    ... )
    Traceback (most recent call last):
        ...
    InvalidRequestError: Invalid promotion request: artifact_name ...
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from promoter_core.errors import InvalidRequestError
from promoter_core.schemas.promotion import PromotionRequest
from promoter_core.telemetry.tracing import create_span

logger = structlog.get_logger(__name__)

ARTIFACT_NAME_PATTERN = re.compile(r"[a-z0-9-]+")
"""Lowercase alphanumerics and hyphens only."""

ARTIFACT_NAME_MAX_LENGTH = 128

TAG_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9._-]{0,127}")
"""OCI distribution tag grammar."""

SHORT_REVISION_LENGTH = 7

_TAG_REF_PREFIX = "refs/tags/"


def validate_artifact_name(name: str) -> None:
    """Apply the artifact naming policy.

    Raises:
        InvalidRequestError: If the name is empty, too long, or contains
            anything other than lowercase alphanumerics and hyphens.
    """
    if not name:
        raise InvalidRequestError("artifact_name", "must not be empty")
    if len(name) > ARTIFACT_NAME_MAX_LENGTH:
        raise InvalidRequestError(
            "artifact_name",
            f"must be at most {ARTIFACT_NAME_MAX_LENGTH} characters (got {len(name)})",
        )
    if not ARTIFACT_NAME_PATTERN.fullmatch(name):
        raise InvalidRequestError(
            "artifact_name",
            f"'{name}' must contain only lowercase letters, digits and hyphens",
        )


def validate_tag(tag: str) -> None:
    """Check a requested tag against the OCI tag grammar."""
    if not TAG_PATTERN.fullmatch(tag):
        raise InvalidRequestError("requested_tag", f"'{tag}' is not a valid OCI tag")


class BuildTriggerListener:
    """Validates promotion requests before they enter the pipeline.

    Stateless; one instance may be shared by any number of workers.
    """

    def validate(self, request: PromotionRequest) -> None:
        """Run every admission check against ``request``.

        Raises:
            InvalidRequestError: On the first failed check.
        """
        if not request.source_revision or not request.source_revision.strip():
            raise InvalidRequestError("source_revision", "must not be empty")
        validate_artifact_name(request.artifact_name)
        validate_tag(request.requested_tag)
        if request.target is not None:
            validate_artifact_name(request.target)

    def admit(self, request: PromotionRequest) -> PromotionRequest:
        """Validate ``request`` and return it unchanged.

        Raises:
            InvalidRequestError: If the request fails admission.
        """
        log = logger.bind(
            promotion_id=str(request.promotion_id),
            artifact=request.artifact_name,
            revision=request.source_revision,
        )
        with create_span(
            "promoter.validate",
            attributes={
                "promotion.id": str(request.promotion_id),
                "artifact.name": request.artifact_name,
                "artifact.tag": request.requested_tag,
            },
        ):
            try:
                self.validate(request)
            except InvalidRequestError as e:
                log.warning("request_rejected", field=e.field, reason=e.reason)
                raise

        log.info("request_admitted", tag=request.requested_tag)
        return request

    def admit_push_event(
        self,
        payload: dict[str, Any],
        *,
        target: str | None = None,
        requested_by: str | None = None,
    ) -> PromotionRequest:
        """Parse a push-webhook payload and admit the resulting request."""
        return self.admit(parse_push_event(payload, target=target, requested_by=requested_by))


def parse_push_event(
    payload: dict[str, Any],
    *,
    target: str | None = None,
    requested_by: str | None = None,
) -> PromotionRequest:
    """Build a PromotionRequest from a push-webhook payload.

    Reads the commit from ``after`` (falling back to ``head_commit.id``) and
    the artifact name from ``repository.name``. Tag pushes
    (``refs/tags/<name>``) are promoted under the tag name; branch pushes use
    the short revision as tag. The pusher, if present, becomes
    ``requested_by`` unless one is given.

    Args:
        payload: Decoded JSON body of the push event.
        target: Optional ConfigRecord identity override.
        requested_by: Optional operator identity.

    Returns:
        An unvalidated PromotionRequest.

    Raises:
        InvalidRequestError: If required fields are missing or mistyped.
    """
    if not isinstance(payload, dict):
        raise InvalidRequestError("payload", "must be a JSON object")

    revision = payload.get("after")
    if not revision:
        head_commit = payload.get("head_commit")
        if isinstance(head_commit, dict):
            revision = head_commit.get("id")
    if not isinstance(revision, str) or not revision:
        raise InvalidRequestError("source_revision", "missing from push event")

    repository = payload.get("repository")
    name = repository.get("name") if isinstance(repository, dict) else None
    if not isinstance(name, str):
        raise InvalidRequestError("artifact_name", "missing from push event")

    ref = payload.get("ref")
    if isinstance(ref, str) and ref.startswith(_TAG_REF_PREFIX):
        tag = ref[len(_TAG_REF_PREFIX) :]
    else:
        tag = revision[:SHORT_REVISION_LENGTH]

    if requested_by is None:
        pusher = payload.get("pusher")
        if isinstance(pusher, dict) and isinstance(pusher.get("name"), str):
            requested_by = pusher["name"]

    return PromotionRequest(
        source_revision=revision,
        artifact_name=name,
        requested_tag=tag,
        target=target,
        requested_by=requested_by,
    )


__all__ = [
    "ARTIFACT_NAME_MAX_LENGTH",
    "ARTIFACT_NAME_PATTERN",
    "TAG_PATTERN",
    "BuildTriggerListener",
    "parse_push_event",
    "validate_artifact_name",
    "validate_tag",
]
