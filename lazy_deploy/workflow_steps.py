"""Helpers for script-based GitHub Actions workflow steps."""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from pathlib import Path

from lazy_deploy.errors import LazyDeployError
from lazy_deploy.pipeline import find_changed_paths, plan_selection
from lazy_deploy.registry import load_config
from lazy_deploy.shell import fatal
from lazy_deploy.toml import DEFAULT_CONFIG
from lazy_deploy.triggers import TriggerKind


def _write_output(output_path: str, name: str, value: str) -> None:
    with open(output_path, "a") as fh:
        fh.write(f"{name}={value}\n")


def detect(
    config: str,
    event: str,
    head: str,
    base: str | None,
    services: str | None,
    github_output: str,
) -> None:
    """Compute the selection and emit it as GitHub step outputs.

    Outputs:
        units: JSON array of selected unit names, dependencies first.
        any: "true" if at least one unit is selected.
        reason: Why the units were selected, or "none".
    """
    try:
        settings, registry = load_config(Path(config))
        kind = TriggerKind.from_event(event)
        changed = find_changed_paths(base, head) if kind is TriggerKind.PUSH else []
        selection = plan_selection(
            registry,
            kind=kind,
            workflow_path=settings.workflow,
            changed_paths=changed,
            services=services,
        )
    except (LazyDeployError, ValueError, subprocess.CalledProcessError) as exc:
        fatal(str(exc))
        return

    selected = registry.topo_order(selection.selected)
    reasons = set(selection.reasons.values())
    reason = reasons.pop().value if len(reasons) == 1 else "none"

    _write_output(github_output, "units", json.dumps(selected))
    _write_output(github_output, "any", "true" if selected else "false")
    _write_output(github_output, "reason", reason)


def main(argv: list[str] | None = None) -> None:
    """Run a workflow step command."""
    args = argv if argv is not None else sys.argv[1:]
    parser = argparse.ArgumentParser(prog="python -m lazy_deploy.workflow_steps")
    subparsers = parser.add_subparsers(dest="command", required=True)

    detect_parser = subparsers.add_parser("detect")
    detect_parser.add_argument(
        "--config", default=DEFAULT_CONFIG, help="Path to deploy.toml."
    )
    detect_parser.add_argument(
        "--event", default="push", help="Triggering event (push, workflow_dispatch)."
    )
    detect_parser.add_argument("--head", required=True, help="Revision being deployed.")
    detect_parser.add_argument(
        "--base", default=None, help="Previous revision to diff against."
    )
    detect_parser.add_argument(
        "--services", default=None, help='Manual runs: units to deploy, or "all".'
    )
    detect_parser.add_argument(
        "--github-output",
        default=os.environ.get("GITHUB_OUTPUT"),
        required="GITHUB_OUTPUT" not in os.environ,
        help="Path to GitHub step output file. Defaults to $GITHUB_OUTPUT.",
    )

    parsed = parser.parse_args(args)
    if parsed.command == "detect":
        detect(
            parsed.config,
            parsed.event,
            parsed.head,
            parsed.base,
            parsed.services,
            parsed.github_output,
        )


if __name__ == "__main__":
    main()
