"""Outcome aggregation: per-unit records → DeploymentSummary."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .models import (
    DeploymentRecord,
    DeploymentState,
    DeploymentSummary,
    OverallStatus,
    SelectionReason,
    SkipReason,
    Unit,
)

NO_CHANGE = "skipped — no change detected"

SKIP_OUTCOMES = {
    SkipReason.DEPENDENCY_FAILED: "skipped — dependency failed",
    SkipReason.CANCELLED: "skipped — cancelled",
}


def outcome_for(record: DeploymentRecord | None) -> str:
    """Describe how a unit ended.

    Examples:
        succeeded → "deployed"
        failed while building → "failed — Building: BuildError"
        no record → "skipped — no change detected"
    """
    if record is None:
        return NO_CHANGE
    if record.state is DeploymentState.SUCCEEDED:
        return "deployed"
    if record.state is DeploymentState.SKIPPED:
        return SKIP_OUTCOMES.get(record.skip_reason, "skipped")
    if record.state is DeploymentState.FAILED:
        stage = record.failed_stage.value.capitalize() if record.failed_stage else "?"
        kind = record.last_error.value if record.last_error else "Error"
        return f"failed — {stage}: {kind}"
    # A record that never terminated is a scheduler defect, never hidden
    return f"incomplete — {record.state.value}"


def overall_status(records: Iterable[DeploymentRecord]) -> OverallStatus:
    states = [r.state for r in records]
    if all(s is DeploymentState.SKIPPED for s in states):
        return OverallStatus.ALL_SKIPPED
    if all(s is DeploymentState.SUCCEEDED for s in states):
        return OverallStatus.ALL_SUCCEEDED
    return OverallStatus.PARTIAL_FAILURE


def summarize(
    records: Mapping[str, DeploymentRecord],
    revision: str,
    *,
    units: Iterable[Unit] = (),
    reasons: Mapping[str, SelectionReason] | None = None,
) -> DeploymentSummary:
    """Build the summary for one invocation.

    Args:
        records: Records of the selected units, by name.
        revision: Revision that was deployed.
        units: Every registered unit, so that unselected units are
               reported as well. Order is preserved.
        reasons: Selection reason per selected unit.

    Returns:
        A summary whose overall status is AllSkipped when there are no
        records or all were skipped, AllSucceeded when all succeeded, and
        PartialFailure otherwise.
    """
    snapshot = {name: record.model_copy(deep=True) for name, record in records.items()}

    outcomes: dict[str, str] = {}
    for unit in units:
        outcomes[unit.name] = outcome_for(snapshot.get(unit.name))
    for name, record in snapshot.items():
        outcomes.setdefault(name, outcome_for(record))

    return DeploymentSummary(
        revision=revision,
        overall_status=overall_status(snapshot.values()),
        per_unit=snapshot,
        outcomes=outcomes,
        reasons=dict(reasons or {}),
    )


def render_markdown(summary: DeploymentSummary) -> str:
    """Render the summary as a Markdown table for the CI step summary."""
    lines = [
        f"## Deployment summary for `{summary.revision}`",
        "",
        f"**Status:** {summary.overall_status.value}",
        "",
        "| Unit | Outcome | Reason | Image | Duration | Detail |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for name, outcome in summary.outcomes.items():
        record = summary.per_unit.get(name)
        reason = summary.reasons.get(name)
        duration = record.duration if record else None
        detail = (record.error_message or "") if record else ""
        lines.append(
            "| {} | {} | {} | {} | {} | {} |".format(
                name,
                outcome,
                reason.value if reason else "",
                f"`{record.image_tag}`" if record and record.image_tag else "",
                f"{duration:.1f}s" if duration is not None else "",
                detail.replace("\n", " ").replace("|", "\\|"),
            )
        )
    return "\n".join(lines) + "\n"
