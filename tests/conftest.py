"""Shared test fixtures."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from lazy_deploy.backends import Collaborators
from lazy_deploy.errors import BuildError, DeployError, PublishError
from lazy_deploy.models import ImageReference, Unit
from lazy_deploy.registry import UnitRegistry

SERVICES = [
    "api-gateway",
    "user-service",
    "product-service",
    "order-service",
    "notification-service",
]

STAGE_ERRORS = {"build": BuildError, "push": PublishError, "rollout": DeployError}


class FakeBackends:
    """In-memory builder, registry, cluster and health endpoint.

    Records every call as (stage, unit name). `fail(unit, stage)` makes a
    stage fail for that unit; a failing "health" stage answers unhealthy
    instead of raising.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, str] = {}
        self.gates: dict[str, threading.Event] = {}

    def fail(self, unit: str, stage: str) -> None:
        self.failures[unit] = stage

    def block(self, unit: str) -> threading.Event:
        """Hold the unit's build until the returned event is set."""
        gate = threading.Event()
        self.gates[unit] = gate
        return gate

    def calls_for(self, unit: str) -> list[str]:
        with self.lock:
            return [stage for stage, name in self.calls if name == unit]

    def _record(self, stage: str, name: str) -> None:
        with self.lock:
            self.calls.append((stage, name))
        if self.failures.get(name) == stage and stage in STAGE_ERRORS:
            raise STAGE_ERRORS[stage](f"{stage} failed for {name}")

    def build(self, unit: Unit, revision: str) -> ImageReference:
        gate = self.gates.get(unit.name)
        if gate is not None:
            gate.wait(timeout=5)
        self._record("build", unit.name)
        return ImageReference(repository=f"registry.test/{unit.name}", tag=revision)

    def push(self, image: ImageReference) -> None:
        self._record("push", image.repository.rsplit("/", 1)[-1])

    def force_rollout(self, unit: Unit, image: ImageReference) -> None:
        self._record("rollout", unit.name)

    def check(self, unit: Unit) -> bool:
        self._record("health", unit.name)
        return self.failures.get(unit.name) != "health"

    @property
    def collaborators(self) -> Collaborators:
        return Collaborators(builder=self, registry=self, cluster=self, health=self)


def make_units(deps: dict[str, list[str]] | None = None) -> list[Unit]:
    """The five demo services, optionally with dependencies."""
    deps = deps or {}
    return [
        Unit(
            name=name,
            path_prefix=f"services/{name}",
            port=3000 + index,
            depends_on=tuple(deps.get(name, ())),
        )
        for index, name in enumerate(SERVICES)
    ]


@pytest.fixture
def registry() -> UnitRegistry:
    """Registry of the five demo services, no dependencies."""
    return UnitRegistry(make_units())


@pytest.fixture
def fakes() -> FakeBackends:
    return FakeBackends()


class FakeClock:
    """Monotonic clock that only moves when `sleep` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deploy_toml(tmp_path: Path) -> Path:
    """Create a temporary deploy.toml with three units."""
    content = """\
[deploy]
workflow = ".github/workflows/deploy.yml"
image-registry = "registry.example.com/demo"
cluster = "demo-cluster"
region = "eu-west-1"
max-concurrency = 2
health-interval = 1
health-timeout = 30

[[deploy.units]]
name = "user-service"
path = "services/user-service"
port = 3001

[[deploy.units]]
name = "order-service"
path = "services/order-service/"
port = 3003
depends-on = ["user-service"]

[[deploy.units]]
name = "notification-service"
path = "services/notification-service"
port = 3004
health-url = "http://notify.internal/health"
"""
    path = tmp_path / "deploy.toml"
    path.write_text(content)
    return path
