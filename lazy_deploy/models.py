"""Data models for lazy-deploy.

These Pydantic models represent the core data structures shared by the
selection, scheduling and reporting phases of a deployment.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SelectionMode(str, Enum):
    AUTO_DIFF = "auto-diff"
    MANUAL_LIST = "manual-list"
    ALL_UNITS = "all-units"
    WORKFLOW_CHANGED = "workflow-changed"


class SelectionReason(str, Enum):
    PATH_CHANGED = "path-changed"
    MANUAL = "manual"
    WORKFLOW_CHANGED = "workflow-changed"
    ALL = "all"


class DeploymentState(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    PUBLISHING = "publishing"
    DEPLOYING = "deploying"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {DeploymentState.SUCCEEDED, DeploymentState.FAILED, DeploymentState.SKIPPED}
)

# States during which a unit holds a concurrency slot.
ACTIVE_STATES = frozenset(
    {
        DeploymentState.BUILDING,
        DeploymentState.PUBLISHING,
        DeploymentState.DEPLOYING,
        DeploymentState.VERIFYING,
    }
)


class ErrorKind(str, Enum):
    BUILD = "BuildError"
    PUBLISH = "PublishError"
    DEPLOY = "DeployError"
    HEALTH_TIMEOUT = "HealthTimeout"


class SkipReason(str, Enum):
    DEPENDENCY_FAILED = "dependency-failed"
    CANCELLED = "cancelled"


class OverallStatus(str, Enum):
    ALL_SUCCEEDED = "AllSucceeded"
    PARTIAL_FAILURE = "PartialFailure"
    ALL_SKIPPED = "AllSkipped"


class Unit(BaseModel):
    """A single independently deployable service.

    Attributes:
        name: Unique unit name; also the image repository and cluster
              service name.
        path_prefix: Repository path owning the unit's sources. Always
              normalized to end with a single "/" so that "services/user"
              never matches "services/user-admin/...".
        port: Port the service listens on, used for the health URL.
        depends_on: Names of units that must finish deploying first.
        health_url: Optional explicit health URL overriding the
              configured template.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    path_prefix: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    depends_on: tuple[str, ...] = ()
    health_url: str | None = None

    @field_validator("path_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip()
        if value.startswith("./"):
            value = value[2:]
        value = value.rstrip("/")
        if not value or value.startswith("/"):
            raise ValueError("path prefix must name a repository-relative directory")
        return value + "/"


class SelectionRequest(BaseModel):
    """Normalized trigger: which units the invoker is asking about."""

    model_config = ConfigDict(frozen=True)

    mode: SelectionMode
    changed_paths: frozenset[str] | None = None
    explicit_units: frozenset[str] | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> SelectionRequest:
        if (self.changed_paths is not None) != (self.mode is SelectionMode.AUTO_DIFF):
            raise ValueError("changed_paths is required for auto-diff and only for it")
        if (self.explicit_units is not None) != (
            self.mode is SelectionMode.MANUAL_LIST
        ):
            raise ValueError(
                "explicit_units is required for manual-list and only for it"
            )
        return self


class SelectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected: frozenset[str] = frozenset()
    reasons: dict[str, SelectionReason] = Field(default_factory=dict)


class ImageReference(BaseModel):
    """A built container image, addressed by a revision tag and a floating tag."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str
    floating_tag: str = "latest"

    @property
    def ref(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def floating_ref(self) -> str:
        return f"{self.repository}:{self.floating_tag}"

    @property
    def refs(self) -> list[str]:
        return [self.ref, self.floating_ref]


class DeploymentRecord(BaseModel):
    """Mutable per-unit progress record.

    Owned and written by exactly one DeploymentStateMachine. Everything
    else reads snapshots or reads the record after it has terminated.

    Attributes:
        unit: The unit being deployed.
        state: Current lifecycle state.
        image_tag: Revision image reference, set once when building succeeds.
        attempts: Number of times this record was started.
        last_error: Kind of the error that failed the unit, if any.
        failed_stage: State the unit was in when it failed.
        error_message: Underlying error detail for the summary.
        skip_reason: Why the unit was skipped, if it was.
    """

    unit: Unit
    state: DeploymentState = DeploymentState.PENDING
    image_tag: str | None = None
    attempts: int = 0
    last_error: ErrorKind | None = None
    failed_stage: DeploymentState | None = None
    error_message: str | None = None
    skip_reason: SkipReason | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class DeploymentSummary(BaseModel):
    """Consolidated result of one pipeline invocation.

    Attributes:
        revision: Revision identifier that was deployed.
        overall_status: Aggregate status across all records.
        per_unit: Snapshot of every record that was created.
        outcomes: Human-readable outcome for every registry unit,
                  including units that were never selected.
        reasons: Why each selected unit was selected.
    """

    model_config = ConfigDict(frozen=True)

    revision: str
    overall_status: OverallStatus
    per_unit: dict[str, DeploymentRecord] = Field(default_factory=dict)
    outcomes: dict[str, str] = Field(default_factory=dict)
    reasons: dict[str, SelectionReason] = Field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 1 if self.overall_status is OverallStatus.PARTIAL_FAILURE else 0


class DeploySettings(BaseModel):
    """Pipeline settings loaded from the [deploy] table of deploy.toml.

    Attributes:
        workflow: Path of the orchestration definition; a change to it
                  redeploys every unit.
        image_registry: Registry host (and optional namespace) prefixed to
                  each unit's image repository.
        cluster: Cluster receiving the force rollouts.
        region: Cloud region passed to the cluster CLI.
        max_concurrency: Maximum units in building..verifying at once.
        health_interval: Seconds between health probes.
        health_timeout: Seconds to wait for a healthy answer.
        health_url: Template for unit health URLs; {name} and {port} are
                  substituted.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    workflow: str = ".github/workflows/deploy.yml"
    image_registry: str = Field(default="", alias="image-registry")
    cluster: str = "default"
    region: str | None = None
    max_concurrency: int = Field(default=4, ge=1, alias="max-concurrency")
    health_interval: float = Field(default=5.0, gt=0, alias="health-interval")
    health_timeout: float = Field(default=300.0, gt=0, alias="health-timeout")
    health_url: str = Field(
        default="http://localhost:{port}/health", alias="health-url"
    )
