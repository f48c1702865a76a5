"""CLI entry point for lazy-deploy."""

from __future__ import annotations

import subprocess
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from lazy_deploy.errors import ConfigError, LazyDeployError
from lazy_deploy.models import DeploySettings
from lazy_deploy.pipeline import (
    find_changed_paths,
    plan_selection,
    resolve_revision,
    run_deploy,
)
from lazy_deploy.registry import UnitRegistry, load_config
from lazy_deploy.toml import DEFAULT_CONFIG
from lazy_deploy.triggers import TriggerKind

EVENTS = ["push", "manual", "workflow_dispatch"]


def _load(config_path: Path, **overrides: Any) -> tuple[DeploySettings, UnitRegistry]:
    """Load deploy.toml and apply command-line overrides that were given."""
    try:
        settings, registry = load_config(config_path)
        given = {key: value for key, value in overrides.items() if value is not None}
        if given:
            settings = DeploySettings.model_validate(settings.model_dump() | given)
    except (ConfigError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    return settings, registry


def _changed_paths(
    kind: TriggerKind, changed: tuple[str, ...], base: str | None, revision: str | None
) -> list[str]:
    if changed:
        return sorted(set(changed))
    if kind is TriggerKind.MANUAL:
        return []
    return find_changed_paths(base, resolve_revision(revision))


TRIGGER_OPTIONS = [
    click.option(
        "--event",
        type=click.Choice(EVENTS),
        default="push",
        envvar="GITHUB_EVENT_NAME",
        show_default=True,
        help="Trigger kind; workflow_dispatch is a manual run.",
    ),
    click.option(
        "--revision",
        envvar="GITHUB_SHA",
        help="Revision to deploy. Defaults to HEAD.",
    ),
    click.option(
        "--base",
        default=None,
        help="Base revision to diff against (e.g. the previous push head).",
    ),
    click.option(
        "--changed",
        multiple=True,
        metavar="PATH",
        help="Changed path; repeatable. Skips the git diff when given.",
    ),
    click.option(
        "--services",
        envvar="LAZY_DEPLOY_SERVICES",
        default=None,
        help='Manual runs: comma-separated units, or "all".',
    ),
]


def trigger_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options describing what started this run."""
    for option in reversed(TRIGGER_OPTIONS):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="lazy-deploy")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG,
    envvar="LAZY_DEPLOY_CONFIG",
    show_default=True,
    help="Path to the deploy configuration.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path) -> None:
    """Lazy service deployer: only redeploys what changed."""
    ctx.obj = config_path


@cli.command()
@click.pass_obj
def units(config_path: Path) -> None:
    """List the deployable units in dependency order."""
    _, registry = _load(config_path)
    for name in registry.topo_order():
        unit = registry.resolve(name)
        deps = f" → [{', '.join(unit.depends_on)}]" if unit.depends_on else ""
        click.echo(f"{name} :{unit.port} ({unit.path_prefix}){deps}")


@cli.command()
@trigger_options
@click.pass_obj
def plan(
    config_path: Path,
    event: str,
    revision: str | None,
    base: str | None,
    changed: tuple[str, ...],
    services: str | None,
) -> None:
    """Show which units would be deployed, without deploying."""
    settings, registry = _load(config_path)
    kind = TriggerKind.from_event(event)
    try:
        selection = plan_selection(
            registry,
            kind=kind,
            workflow_path=settings.workflow,
            changed_paths=_changed_paths(kind, changed, base, revision),
            services=services,
        )
    except (LazyDeployError, subprocess.CalledProcessError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo()
    if selection.selected:
        order = registry.topo_order(selection.selected)
        click.echo(f"Would deploy: {', '.join(order)}")
    else:
        click.echo("Would deploy: nothing")


@cli.command()
@trigger_options
@click.option(
    "--max-concurrency",
    type=click.IntRange(min=1),
    envvar="LAZY_DEPLOY_MAX_CONCURRENCY",
    default=None,
    help="Maximum units deploying at once. Overrides deploy.toml.",
)
@click.option(
    "--deadline",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds after which no further unit is started.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON.")
@click.pass_obj
def deploy(
    config_path: Path,
    event: str,
    revision: str | None,
    base: str | None,
    changed: tuple[str, ...],
    services: str | None,
    max_concurrency: int | None,
    deadline: float | None,
    as_json: bool,
) -> None:
    """Build, push, roll out and verify every changed unit."""
    settings, registry = _load(config_path, max_concurrency=max_concurrency)
    kind = TriggerKind.from_event(event)
    try:
        revision = resolve_revision(revision)
        summary = run_deploy(
            settings,
            registry,
            revision=revision,
            kind=kind,
            changed_paths=_changed_paths(kind, changed, base, revision),
            services=services,
            deadline=deadline,
        )
    except (LazyDeployError, subprocess.CalledProcessError) as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(summary.model_dump_json(indent=2))
    sys.exit(summary.exit_code)
