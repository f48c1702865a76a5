"""Change resolution: which units a SelectionRequest asks to deploy.

Matching is a plain path-prefix test against each unit's directory, so
the outcome is a pure function of the request and the registry.
"""

from __future__ import annotations

from .errors import UnknownUnit
from .models import SelectionMode, SelectionReason, SelectionRequest, SelectionResult
from .registry import UnitRegistry


def resolve_selection(
    request: SelectionRequest, registry: UnitRegistry
) -> SelectionResult:
    """Compute the units to act on for a request.

    - all-units / workflow-changed: every registered unit.
    - manual-list: exactly the requested units.
    - auto-diff: each unit whose path prefix starts at least one changed
      path. Paths under no unit (docs, root files) select nothing, and an
      empty diff selects nothing.

    Raises:
        UnknownUnit: If a manual list names units that are not registered.
    """
    if request.mode is SelectionMode.ALL_UNITS:
        return _select(registry.names(), SelectionReason.ALL)

    if request.mode is SelectionMode.WORKFLOW_CHANGED:
        return _select(registry.names(), SelectionReason.WORKFLOW_CHANGED)

    if request.mode is SelectionMode.MANUAL_LIST:
        explicit = request.explicit_units or frozenset()
        unknown = [name for name in explicit if name not in registry]
        if unknown:
            raise UnknownUnit(unknown)
        # Registry order keeps the reasons mapping stable between runs
        return _select(
            [n for n in registry.names() if n in explicit], SelectionReason.MANUAL
        )

    changed = request.changed_paths or frozenset()
    matched = [
        unit.name
        for unit in registry.list()
        if any(path.startswith(unit.path_prefix) for path in changed)
    ]
    return _select(matched, SelectionReason.PATH_CHANGED)


def _select(names: list[str], reason: SelectionReason) -> SelectionResult:
    return SelectionResult(
        selected=frozenset(names), reasons={name: reason for name in names}
    )
