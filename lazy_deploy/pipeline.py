"""Deployment pipeline: diff → select → build → push → roll out → verify → report.

This module orchestrates one lazy-deploy invocation:
1. Collect the paths changed by the revision (or take them as given)
2. Interpret the trigger into a selection request
3. Resolve the request to the units that need deploying
4. Run each selected unit's build/push/rollout/health-check concurrently
5. Summarize every unit's outcome, including units that were not selected

The key property is that only what changed is deployed, and a failing unit
never stops unrelated units from deploying.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterable
from pathlib import Path

from .backends import Collaborators, default_collaborators
from .models import (
    DeploymentRecord,
    DeploymentState,
    DeploymentSummary,
    DeploySettings,
    SelectionResult,
)
from .registry import UnitRegistry
from .resolver import resolve_selection
from .scheduler import ExecutionScheduler
from .shell import git, step
from .summary import render_markdown, summarize
from .triggers import TriggerKind, interpret_trigger

_print_lock = threading.Lock()


def _is_null_sha(sha: str | None) -> bool:
    # GitHub sends forty zeros as "before" on the first push of a branch
    return not sha or set(sha) == {"0"}


def find_changed_paths(base: str | None, head: str) -> list[str]:
    """List the files changed between two revisions.

    Without a usable base (none given, or the all-zero SHA of a new
    branch) the files touched by `head` alone are used.

    Returns:
        Sorted, de-duplicated repository-relative paths.
    """
    step("Collecting changed paths")

    if _is_null_sha(base):
        output = git(
            "diff-tree", "--no-commit-id", "--name-only", "-r", "--root", head
        )
        print(f"  No base revision; using files touched by {head}")
    else:
        output = git("diff", "--name-only", base, head)

    paths = sorted({line for line in output.splitlines() if line})
    for path in paths:
        print(f"  {path}")
    if not paths:
        print("  <no changed files>")
    return paths


def resolve_revision(revision: str | None) -> str:
    """Use the given revision, or the current HEAD commit."""
    return revision or git("rev-parse", "HEAD")


def plan_selection(
    registry: UnitRegistry,
    *,
    kind: TriggerKind,
    workflow_path: str,
    changed_paths: Iterable[str] = (),
    services: str | None = None,
) -> SelectionResult:
    """Interpret the trigger and resolve which units to deploy.

    Raises:
        UnknownUnit: If a manual selection names unregistered units.
    """
    step("Selecting units")

    request = interpret_trigger(
        kind,
        registry=registry,
        workflow_path=workflow_path,
        changed_paths=changed_paths,
        services=services,
    )
    selection = resolve_selection(request, registry)

    print(f"  Mode: {request.mode.value}")
    for name in registry.topo_order():
        reason = selection.reasons.get(name)
        print(f"  {name}: {reason.value if reason else 'unchanged'}")

    return selection


def report_transition(record: DeploymentRecord, previous: DeploymentState) -> None:
    """Print one line per state change. Called from worker threads."""
    line = f"  [{record.unit.name}] {previous.value} → {record.state.value}"
    if record.state is DeploymentState.PUBLISHING and record.image_tag:
        line += f" ({record.image_tag})"
    elif record.state is DeploymentState.FAILED and record.error_message:
        line += f": {record.error_message}"
    elif record.state is DeploymentState.SKIPPED and record.skip_reason:
        line += f" ({record.skip_reason.value})"
    with _print_lock:
        print(line, flush=True)


def print_summary(summary: DeploymentSummary) -> None:
    step(f"Summary: {summary.overall_status.value}")
    width = max((len(name) for name in summary.outcomes), default=0)
    for name, outcome in summary.outcomes.items():
        print(f"  {name.ljust(width)}  {outcome}")


def write_step_summary(summary: DeploymentSummary, path: str | None = None) -> None:
    """Append the Markdown summary to GITHUB_STEP_SUMMARY when it is set."""
    target = path or os.environ.get("GITHUB_STEP_SUMMARY")
    if not target:
        return
    with open(Path(target), "a") as fh:
        fh.write(render_markdown(summary))


def run_deploy(
    settings: DeploySettings,
    registry: UnitRegistry,
    *,
    revision: str,
    kind: TriggerKind,
    changed_paths: Iterable[str] = (),
    services: str | None = None,
    collaborators: Collaborators | None = None,
    deadline: float | None = None,
) -> DeploymentSummary:
    """Execute the full deployment pipeline for one revision.

    Args:
        settings: Pipeline settings.
        registry: Deployable units.
        revision: Revision identifier; becomes the image tag.
        kind: Whether this is a push or a manual dispatch.
        changed_paths: Files changed by the revision.
        services: Manual dispatch unit list ("a,b" or "all").
        collaborators: External systems; defaults to Docker/ECS/HTTP.
        deadline: Seconds after which no new unit is started.

    Returns:
        The deployment summary. Its exit_code is the process exit status.

    Raises:
        UnknownUnit: If a manual selection names unregistered units. Nothing
                     is deployed in that case.
    """
    selection = plan_selection(
        registry,
        kind=kind,
        workflow_path=settings.workflow,
        changed_paths=changed_paths,
        services=services,
    )

    records: dict[str, DeploymentRecord] = {}
    if selection.selected:
        step(
            f"Deploying {len(selection.selected)} units at {revision} "
            f"(max {settings.max_concurrency} at once)"
        )
        scheduler = ExecutionScheduler(
            collaborators or default_collaborators(settings),
            max_concurrency=settings.max_concurrency,
            health_interval=settings.health_interval,
            health_timeout=settings.health_timeout,
            observer=report_transition,
        )
        records = scheduler.run(
            selection, registry, revision=revision, deadline=deadline
        )
    else:
        print("\n  Nothing to deploy: no unit changed in this revision.")

    summary = summarize(
        records, revision, units=registry.list(), reasons=selection.reasons
    )
    print_summary(summary)
    write_step_summary(summary)
    return summary
