"""Per-unit deployment state machine.

    pending → building → publishing → deploying → verifying → succeeded
                 ↓            ↓            ↓            ↓
               failed       failed       failed       failed

Any non-terminal state can also move to skipped, when a dependency failed
or the invocation was cancelled before the unit started.

Each machine exclusively owns one DeploymentRecord. Side effects only
happen in the four active stages; every other transition is bookkeeping.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

from .backends import Collaborators
from .errors import (
    BuildError,
    DeployError,
    HealthTimeout,
    InvalidTransition,
    PublishError,
    StageError,
)
from .models import (
    DeploymentRecord,
    DeploymentState,
    ImageReference,
    SkipReason,
    Unit,
)

Observer = Callable[[DeploymentRecord, DeploymentState], None]

S = DeploymentState

# (state, event) → next state
TRANSITIONS: dict[tuple[DeploymentState, str], DeploymentState] = {
    (S.PENDING, "start"): S.BUILDING,
    (S.BUILDING, "build_ok"): S.PUBLISHING,
    (S.BUILDING, "build_fail"): S.FAILED,
    (S.PUBLISHING, "push_ok"): S.DEPLOYING,
    (S.PUBLISHING, "push_fail"): S.FAILED,
    (S.DEPLOYING, "update_ok"): S.VERIFYING,
    (S.DEPLOYING, "update_fail"): S.FAILED,
    (S.VERIFYING, "healthy"): S.SUCCEEDED,
    (S.VERIFYING, "unhealthy"): S.FAILED,
}

# Error type recorded when a collaborator raises something unexpected
STAGE_ERRORS: dict[DeploymentState, type[StageError]] = {
    S.BUILDING: BuildError,
    S.PUBLISHING: PublishError,
    S.DEPLOYING: DeployError,
    S.VERIFYING: HealthTimeout,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentStateMachine:
    """Drives one unit from pending to a terminal state.

    Args:
        unit: Unit to deploy.
        revision: Revision identifier used to tag the image.
        collaborators: Builder, registry, cluster and health endpoint.
        health_interval: Seconds between health probes.
        health_timeout: Seconds after which verification gives up.
        observer: Called as observer(record, previous_state) after each
                  transition.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        unit: Unit,
        *,
        revision: str,
        collaborators: Collaborators,
        health_interval: float = 5.0,
        health_timeout: float = 300.0,
        observer: Observer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.record = DeploymentRecord(unit=unit)
        self.revision = revision
        self.collaborators = collaborators
        self.health_interval = health_interval
        self.health_timeout = health_timeout
        self.observer = observer
        self.clock = clock
        self.sleep = sleep

    @property
    def state(self) -> DeploymentState:
        return self.record.state

    def fire(self, event: str) -> DeploymentState:
        """Apply a transition from the table and return the new state.

        Raises:
            InvalidTransition: If the current state does not accept `event`.
        """
        previous = self.record.state
        try:
            target = TRANSITIONS[(previous, event)]
        except KeyError:
            raise InvalidTransition(
                f"{self.record.unit.name}: cannot {event!r} from {previous.value}"
            ) from None
        self._enter(target, previous)
        return target

    def skip(self, reason: SkipReason) -> None:
        """Move a non-terminal record to skipped."""
        previous = self.record.state
        if previous.is_terminal:
            raise InvalidTransition(
                f"{self.record.unit.name}: cannot skip from {previous.value}"
            )
        self.record.skip_reason = reason
        self._enter(S.SKIPPED, previous)

    def _enter(self, target: DeploymentState, previous: DeploymentState) -> None:
        if previous is S.PENDING and target is S.BUILDING:
            self.record.attempts += 1
            self.record.started_at = _now()
        self.record.state = target
        if target.is_terminal:
            self.record.finished_at = _now()
        if self.observer is not None:
            self.observer(self.record, previous)

    def _fail(self, event: str, error: StageError) -> None:
        self.record.failed_stage = self.record.state
        self.record.last_error = error.kind
        self.record.error_message = str(error)
        self.fire(event)

    def _stage_error(self, exc: Exception) -> StageError:
        error_type = STAGE_ERRORS[self.record.state]
        if isinstance(exc, error_type):
            return exc
        return error_type(f"{type(exc).__name__}: {exc}")

    def run(self) -> DeploymentRecord:
        """Run every stage in order, stopping at the first failure.

        Collaborator exceptions are recorded as the current stage's error
        and never escape; the returned record is always terminal.
        """
        unit = self.record.unit
        self.fire("start")

        try:
            image = self.collaborators.builder.build(unit, self.revision)
        except Exception as exc:
            self._fail("build_fail", self._stage_error(exc))
            return self.record
        self.record.image_tag = image.ref
        self.fire("build_ok")

        try:
            self.collaborators.registry.push(image)
        except Exception as exc:
            self._fail("push_fail", self._stage_error(exc))
            return self.record
        self.fire("push_ok")

        try:
            self.collaborators.cluster.force_rollout(unit, image)
        except Exception as exc:
            self._fail("update_fail", self._stage_error(exc))
            return self.record
        self.fire("update_ok")

        try:
            self._wait_healthy(unit, image)
        except Exception as exc:
            self._fail("unhealthy", self._stage_error(exc))
            return self.record
        self.fire("healthy")
        return self.record

    def _wait_healthy(self, unit: Unit, image: ImageReference) -> None:
        """Poll the health endpoint until it reports healthy or time runs out.

        Raises:
            HealthTimeout: If no healthy answer arrives before the deadline.
        """
        deadline = self.clock() + self.health_timeout
        probes = 0
        while True:
            probes += 1
            if self.collaborators.health.check(unit):
                return
            now = self.clock()
            if now < deadline:
                self.sleep(min(self.health_interval, deadline - now))
            # No probe is made once the deadline has passed
            if self.clock() >= deadline:
                raise HealthTimeout(
                    f"{unit.name} ({image.ref}) not healthy after "
                    f"{self.health_timeout:g}s ({probes} probes)"
                )

