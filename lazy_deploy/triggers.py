"""Trigger interpretation.

Normalizes the ways a deployment can be started into a SelectionRequest:

- a push, carrying the changed file paths of the revision;
- a manual dispatch, carrying a comma-separated unit list or "all";
- a change to the deploy workflow itself, detected from the changed paths.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from .errors import UnknownUnit
from .models import SelectionMode, SelectionRequest
from .registry import UnitRegistry

ALL_KEYWORD = "all"


class TriggerKind(str, Enum):
    PUSH = "push"
    MANUAL = "manual"

    @classmethod
    def from_event(cls, event: str) -> TriggerKind:
        """Map a CI event name (e.g. GITHUB_EVENT_NAME) to a trigger kind."""
        if event in ("workflow_dispatch", "manual"):
            return cls.MANUAL
        if event == "push":
            return cls.PUSH
        raise ValueError(f"Unsupported trigger event: {event!r}")


def _normalize(path: str) -> str:
    return path[2:] if path.startswith("./") else path


def parse_services(text: str | None) -> list[str]:
    """Split a comma-separated unit list, dropping blanks and duplicates.

    Examples:
        "user-service, order-service" → ["user-service", "order-service"]
        " a,,b,a " → ["a", "b"]
    """
    if not text:
        return []
    seen: list[str] = []
    for token in text.split(","):
        token = token.strip()
        if token and token not in seen:
            seen.append(token)
    return seen


def interpret_trigger(
    kind: TriggerKind,
    *,
    registry: UnitRegistry,
    workflow_path: str,
    changed_paths: Iterable[str] = (),
    services: str | None = None,
) -> SelectionRequest:
    """Turn a trigger into a SelectionRequest.

    A change to the workflow file wins over everything else and redeploys
    all units. A manual dispatch selects the listed units, or every unit
    when the list is blank or contains "all". A push selects by diff.

    Raises:
        UnknownUnit: If a manual list names units that are not registered.
                     All unknown names are reported at once.
    """
    paths = frozenset(_normalize(p) for p in changed_paths)
    if _normalize(workflow_path) in paths:
        return SelectionRequest(mode=SelectionMode.WORKFLOW_CHANGED)

    if kind is TriggerKind.MANUAL:
        names = parse_services(services)
        if not names or any(n.lower() == ALL_KEYWORD for n in names):
            return SelectionRequest(mode=SelectionMode.ALL_UNITS)
        unknown = [n for n in names if n not in registry]
        if unknown:
            raise UnknownUnit(unknown)
        return SelectionRequest(
            mode=SelectionMode.MANUAL_LIST, explicit_units=frozenset(names)
        )

    return SelectionRequest(mode=SelectionMode.AUTO_DIFF, changed_paths=paths)
