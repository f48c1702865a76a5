"""Exception types for lazy-deploy.

Configuration and selection errors (ConfigError, UnknownUnit) abort an
invocation before anything is scheduled. Stage errors are raised by the
external collaborators and captured on the failing unit's record; they are
never propagated across units.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import ErrorKind


class LazyDeployError(Exception):
    """Base class for all lazy-deploy errors."""


class ConfigError(LazyDeployError):
    """The deploy configuration or unit registry is invalid."""


class UnknownUnit(LazyDeployError):
    """One or more unit names are not in the registry."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names = sorted(set(names))
        super().__init__(f"Unknown unit(s): {', '.join(self.names)}")


class InvalidTransition(LazyDeployError):
    """A state machine event was fired in a state that does not accept it."""


class StageError(LazyDeployError):
    """A deployment stage failed for a single unit."""

    kind: ErrorKind


class BuildError(StageError):
    kind = ErrorKind.BUILD


class PublishError(StageError):
    kind = ErrorKind.PUBLISH


class DeployError(StageError):
    kind = ErrorKind.DEPLOY


class HealthTimeout(StageError):
    kind = ErrorKind.HEALTH_TIMEOUT
