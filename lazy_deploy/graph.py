"""Dependency graph utilities.

Provides topological ordering and cycle detection over unit dependencies.
Dependencies only order a rollout: when unit A depends on unit B and both
are selected, A is not started until B has finished.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence


def topo_sort(deps: Mapping[str, Sequence[str]]) -> list[str]:
    """Topologically sort units by their dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come
    before dependents. Units that become ready together are taken
    alphabetically for deterministic output.

    Args:
        deps: Map of unit name → names it depends on.

    Returns:
        List of unit names, dependencies first.

    Raises:
        RuntimeError: If a dependency cycle is detected.

    Example:
        If A depends on B, and B depends on C:
        topo_sort({A: [B], B: [C], C: []}) → [C, B, A]
    """
    in_degree = {n: 0 for n in deps}
    reverse_deps: dict[str, list[str]] = {n: [] for n in deps}

    for name, names in deps.items():
        for dep in set(names):
            # Dependencies outside the mapping are not ordered against
            if dep in deps:
                in_degree[name] += 1
                reverse_deps[dep].append(name)

    queue = sorted(n for n, d in in_degree.items() if d == 0)
    order: list[str] = []

    while queue:
        node = queue.pop(0)
        order.append(node)
        for dependent in sorted(reverse_deps[node]):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(order) != len(deps):
        remaining = sorted(set(deps) - set(order))
        raise RuntimeError(f"Dependency cycle detected involving: {remaining}")

    return order

