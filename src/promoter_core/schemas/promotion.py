"""Promotion data model.

Pydantic v2 schemas for the objects that flow through the promotion
pipeline: the inbound request, the published artifact reference, the
versioned config record and the per-promotion outcome.

Key Components:
    PromotionRequest: Admitted trigger (revision, artifact name, tag)
    ArtifactReference: Immutable registry location + content digest + tag
    ConfigRevision: One entry in a config record's history
    ConfigRecord: Current artifact reference plus retained revisions
    PromotionState: Per-promotion state machine states
    PromotionOutcome: Auditable result of one promotion

ConfigRecord serializes to a Helm-values-shaped document so that a GitOps
reconciler can consume it directly:

    image:
      repository: myregistry.azurecr.io/apps/my-app
      tag: v1.2.3
      digest: sha256:...
    revisions:
      - revision: 1
        kind: promote
        ...
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from promoter_core.errors import PromotionError

DIGEST_PATTERN = r"^sha256:[a-f0-9]{64}$"
"""Content digest format (sha256, lowercase hex)."""


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Request / Reference
# =============================================================================


class PromotionRequest(BaseModel):
    """A request to promote one built artifact into its deployment target.

    The model itself is permissive; admission rules (naming policy, non-empty
    revision) are enforced by the BuildTriggerListener so that violations are
    reported as InvalidRequestError rather than schema errors.

    Examples:
        >>> request = PromotionRequest(
        ...     source_revision="3f2a9c1",
        ...     artifact_name="my-app",
        ...     requested_tag="v1.2.3",
        ... )
        >>> request.record_id
        'my-app'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    promotion_id: UUID = Field(
        default_factory=uuid4,
        description="Unique id; a resubmission is a new request with a new id",
    )
    source_revision: str = Field(..., description="Commit id that produced the artifact")
    artifact_name: str = Field(..., description="Repository name of the artifact")
    requested_tag: str = Field(..., description="Human tag to publish under")
    target: str | None = Field(
        default=None,
        description="ConfigRecord identity; defaults to the artifact name",
    )
    requested_by: str | None = Field(default=None, description="Operator identity")
    received_at: datetime = Field(default_factory=_utc_now)

    @property
    def record_id(self) -> str:
        """ConfigRecord this promotion writes to."""
        return self.target or self.artifact_name


class ArtifactReference(BaseModel):
    """Immutable reference to a published artifact.

    Examples:
        >>> ref = ArtifactReference(
        ...     location="registry.example.com/apps/my-app",
        ...     digest="sha256:" + "0" * 64,
        ...     tag="v1.2.3",
        ... )
        >>> ref.tagged_ref
        'registry.example.com/apps/my-app:v1.2.3'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    location: str = Field(..., min_length=1, description="Registry host and repository path")
    digest: str = Field(..., pattern=DIGEST_PATTERN, description="Content digest")
    tag: str = Field(..., min_length=1, description="Human tag")

    @property
    def pinned_ref(self) -> str:
        """Reference pinned to the content digest."""
        return f"{self.location}@{self.digest}"

    @property
    def tagged_ref(self) -> str:
        """Reference by human tag."""
        return f"{self.location}:{self.tag}"


# =============================================================================
# Config Record
# =============================================================================


class RevisionKind(str, Enum):
    """How a config revision came to be."""

    PROMOTE = "promote"
    ROLLBACK = "rollback"


class ConfigRevision(BaseModel):
    """One retained entry in a ConfigRecord's history."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    revision: int = Field(..., ge=1)
    kind: RevisionKind = Field(default=RevisionKind.PROMOTE)
    artifact: ArtifactReference
    promotion_id: UUID | None = Field(default=None)
    source_revision: str | None = Field(default=None)
    restores_revision: int | None = Field(
        default=None,
        description="For rollbacks, the revision whose artifact was restored",
    )
    applied_at: datetime = Field(default_factory=_utc_now)


class ConfigRecord(BaseModel):
    """Declarative deployment descriptor referencing the active artifact.

    Owned by the ConfigMutator. Instances are immutable; ``with_revision``
    returns the updated record to be written with a compare-and-swap.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: str = Field(..., min_length=1)
    current: ArtifactReference | None = Field(default=None)
    revisions: tuple[ConfigRevision, ...] = Field(default=())

    @property
    def latest_revision(self) -> ConfigRevision | None:
        """Most recent revision, or None for a fresh record."""
        return self.revisions[-1] if self.revisions else None

    def find_revision(self, revision: int) -> ConfigRevision | None:
        """Return the retained revision with the given number."""
        for entry in self.revisions:
            if entry.revision == revision:
                return entry
        return None

    def find_by_promotion(self, promotion_id: UUID) -> ConfigRevision | None:
        """Return the revision written by a promotion, if retained."""
        for entry in reversed(self.revisions):
            if entry.promotion_id == promotion_id:
                return entry
        return None

    def with_revision(
        self,
        artifact: ArtifactReference,
        *,
        kind: RevisionKind = RevisionKind.PROMOTE,
        promotion_id: UUID | None = None,
        source_revision: str | None = None,
        restores_revision: int | None = None,
        history_limit: int | None = None,
    ) -> ConfigRecord:
        """Return a copy pointing at ``artifact`` with one revision appended.

        Revision numbers keep increasing even after old entries are trimmed
        by ``history_limit``.
        """
        latest = self.latest_revision
        entry = ConfigRevision(
            revision=(latest.revision + 1) if latest else 1,
            kind=kind,
            artifact=artifact,
            promotion_id=promotion_id,
            source_revision=source_revision,
            restores_revision=restores_revision,
        )
        revisions = (*self.revisions, entry)
        if history_limit is not None and len(revisions) > history_limit:
            revisions = revisions[-history_limit:]
        return self.model_copy(update={"current": artifact, "revisions": revisions})

    def to_document(self) -> dict[str, Any]:
        """Render the record as a Helm-values-shaped mapping."""
        document: dict[str, Any] = {}
        if self.current is not None:
            document["image"] = {
                "repository": self.current.location,
                "tag": self.current.tag,
                "digest": self.current.digest,
            }
        document["revisions"] = [entry.model_dump(mode="json") for entry in self.revisions]
        return document

    @classmethod
    def from_document(cls, record_id: str, document: dict[str, Any] | None) -> ConfigRecord:
        """Parse a values mapping produced by ``to_document``."""
        if not document:
            return cls(record_id=record_id)

        current: ArtifactReference | None = None
        image = document.get("image")
        if image:
            current = ArtifactReference(
                location=image["repository"],
                tag=image["tag"],
                digest=image["digest"],
            )
        revisions = tuple(
            ConfigRevision.model_validate(entry) for entry in document.get("revisions") or []
        )
        return cls(record_id=record_id, current=current, revisions=revisions)


# =============================================================================
# Promotion State
# =============================================================================


class PromotionState(str, Enum):
    """Per-promotion state machine.

    Received -> Validated -> Published -> ConfigUpdated (terminal success),
    with failure exits Rejected, PublishFailed and ConfigUpdateFailed.
    """

    RECEIVED = "received"
    VALIDATED = "validated"
    PUBLISHED = "published"
    CONFIG_UPDATED = "config_updated"
    REJECTED = "rejected"
    PUBLISH_FAILED = "publish_failed"
    CONFIG_UPDATE_FAILED = "config_update_failed"

    @property
    def is_terminal(self) -> bool:
        """Terminal states accept no further transitions."""
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[PromotionState, frozenset[PromotionState]] = {
    PromotionState.RECEIVED: frozenset({PromotionState.VALIDATED, PromotionState.REJECTED}),
    PromotionState.VALIDATED: frozenset(
        {PromotionState.PUBLISHED, PromotionState.PUBLISH_FAILED}
    ),
    PromotionState.PUBLISHED: frozenset(
        {PromotionState.CONFIG_UPDATED, PromotionState.CONFIG_UPDATE_FAILED}
    ),
    PromotionState.CONFIG_UPDATED: frozenset(),
    PromotionState.REJECTED: frozenset(),
    PromotionState.PUBLISH_FAILED: frozenset(),
    PromotionState.CONFIG_UPDATE_FAILED: frozenset(),
}
"""Legal next states for each state. Nothing is re-entrant."""


class StateTransition(BaseModel):
    """A state the promotion entered, with its timestamp."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: PromotionState
    at: datetime = Field(default_factory=_utc_now)


class PromotionOutcome(BaseModel):
    """Auditable result of one promotion.

    Examples:
        >>> outcome = coordinator.execute(request, handle)
        >>> if not outcome.succeeded:
        ...     print(outcome.error_type, outcome.error_message)
        >>> outcome.raise_for_failure()  # re-raises the original error
    """

    model_config = ConfigDict(extra="forbid")

    promotion_id: UUID
    request: PromotionRequest
    state: PromotionState
    transitions: list[StateTransition] = Field(default_factory=list)
    artifact: ArtifactReference | None = Field(default=None)
    config_revision: int | None = Field(default=None)
    config_version: str | None = Field(default=None)
    error_type: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    exit_code: int = Field(default=0)
    trace_id: str | None = Field(default=None)

    _error: PromotionError | None = PrivateAttr(default=None)

    @property
    def succeeded(self) -> bool:
        """True when the config write committed."""
        return self.state == PromotionState.CONFIG_UPDATED

    @property
    def error(self) -> PromotionError | None:
        """The exception that ended a failed promotion."""
        return self._error

    def attach_error(self, error: PromotionError) -> None:
        """Record the failure that ended this promotion."""
        self._error = error
        self.error_type = type(error).__name__
        self.error_message = str(error)
        self.exit_code = error.exit_code

    def raise_for_failure(self) -> None:
        """Re-raise the original error if the promotion failed."""
        if self._error is not None:
            raise self._error


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ArtifactReference",
    "ConfigRecord",
    "ConfigRevision",
    "DIGEST_PATTERN",
    "PromotionOutcome",
    "PromotionRequest",
    "PromotionState",
    "RevisionKind",
    "StateTransition",
]
