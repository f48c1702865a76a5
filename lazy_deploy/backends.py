"""External collaborators: image builder, registry, cluster, health endpoint.

The state machine only depends on the four protocols below. The concrete
classes drive the original stack: Docker for building and pushing images,
the AWS CLI for ECS rollouts, and HTTP for health checks.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Protocol

import httpx

from .errors import BuildError, DeployError, PublishError
from .models import DeploySettings, ImageReference, Unit
from .shell import run, tail


class ImageBuilder(Protocol):
    def build(self, unit: Unit, revision: str) -> ImageReference: ...


class ImageRegistry(Protocol):
    def push(self, image: ImageReference) -> None: ...


class ClusterController(Protocol):
    def force_rollout(self, unit: Unit, image: ImageReference) -> None: ...


class HealthEndpoint(Protocol):
    def check(self, unit: Unit) -> bool: ...


@dataclass(frozen=True)
class Collaborators:
    builder: ImageBuilder
    registry: ImageRegistry
    cluster: ClusterController
    health: HealthEndpoint


def image_repository(registry_host: str, unit: Unit) -> str:
    """Repository for a unit's images: "<registry>/<unit>", or just the unit name."""
    host = registry_host.rstrip("/")
    return f"{host}/{unit.name}" if host else unit.name


def _failure_detail(result: subprocess.CompletedProcess[str]) -> str:
    detail = tail(result.stderr) or tail(result.stdout)
    return f"exit {result.returncode}" + (f": {detail}" if detail else "")


class DockerImageBuilder:
    """Builds a unit's image from its directory with `docker build`.

    The image is tagged twice: with the revision, and with a floating
    "latest" tag for convenience.
    """

    def __init__(self, registry_host: str) -> None:
        self.registry_host = registry_host

    def build(self, unit: Unit, revision: str) -> ImageReference:
        image = ImageReference(
            repository=image_repository(self.registry_host, unit), tag=revision
        )
        result = run(
            "docker",
            "build",
            "-t",
            image.ref,
            "-t",
            image.floating_ref,
            unit.path_prefix,
            check=False,
        )
        if result.returncode != 0:
            raise BuildError(
                f"docker build failed for {unit.name}: {_failure_detail(result)}"
            )
        return image


class DockerImageRegistry:
    """Pushes both tags of an image with `docker push`."""

    def push(self, image: ImageReference) -> None:
        for ref in image.refs:
            result = run("docker", "push", ref, check=False)
            if result.returncode != 0:
                raise PublishError(
                    f"docker push failed for {ref}: {_failure_detail(result)}"
                )


class EcsClusterController:
    """Rolls an ECS service with `aws ecs update-service --force-new-deployment`.

    The rollout is always forced, even when the task definition and image
    reference did not change; the service pulls the freshly pushed tag.
    """

    def __init__(self, cluster: str, region: str | None = None) -> None:
        self.cluster = cluster
        self.region = region

    def force_rollout(self, unit: Unit, image: ImageReference) -> None:
        cmd = [
            "aws",
            "ecs",
            "update-service",
            "--cluster",
            self.cluster,
            "--service",
            unit.name,
            "--force-new-deployment",
        ]
        if self.region:
            cmd.extend(["--region", self.region])
        result = run(*cmd, check=False)
        if result.returncode != 0:
            raise DeployError(
                f"rollout of {image.ref} to {unit.name} failed: "
                f"{_failure_detail(result)}"
            )


class HttpHealthEndpoint:
    """Probes a unit's health URL.

    Only an explicit success counts: HTTP 200 with a JSON body whose
    "status" is "healthy". Connection errors, other status codes and
    unparseable bodies are all reported as unhealthy.
    """

    def __init__(
        self,
        url_template: str,
        *,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url_template = url_template
        self.client = client or httpx.Client(timeout=timeout)

    def url_for(self, unit: Unit) -> str:
        if unit.health_url:
            return unit.health_url
        return self.url_template.format(name=unit.name, port=unit.port)

    def check(self, unit: Unit) -> bool:
        try:
            response = self.client.get(self.url_for(unit))
        except httpx.HTTPError:
            return False
        if response.status_code != 200:
            return False
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("status") == "healthy"


def default_collaborators(settings: DeploySettings) -> Collaborators:
    """Wire the Docker / ECS / HTTP collaborators from settings."""
    return Collaborators(
        builder=DockerImageBuilder(settings.image_registry),
        registry=DockerImageRegistry(),
        cluster=EcsClusterController(settings.cluster, settings.region),
        health=HttpHealthEndpoint(settings.health_url),
    )
