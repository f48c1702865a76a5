"""Unit registry: the static catalog of deployable units."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from pathlib import Path

from .errors import ConfigError, UnknownUnit
from .graph import topo_sort
from .models import DeploySettings, Unit
from .toml import get_deploy_table, get_settings, get_units, load_document


class UnitRegistry:
    """Read-only catalog of units, validated on construction.

    Nothing mutates the registry after __init__, so it can be shared by
    every worker thread without locking.
    """

    def __init__(self, units: Iterable[Unit]) -> None:
        self._units: dict[str, Unit] = {}
        for unit in units:
            if unit.name in self._units:
                raise ConfigError(f"Duplicate unit name: {unit.name}")
            self._units[unit.name] = unit

        for unit in self._units.values():
            if unit.name in unit.depends_on:
                raise ConfigError(f"Unit {unit.name} depends on itself")
            missing = [dep for dep in unit.depends_on if dep not in self._units]
            if missing:
                raise ConfigError(
                    f"Unit {unit.name} depends on unknown unit(s): {', '.join(missing)}"
                )

        try:
            self.topo_order()
        except RuntimeError as exc:
            raise ConfigError(str(exc)) from exc

    def list(self) -> list[Unit]:
        """Units in declaration order."""
        return list(self._units.values())

    def names(self) -> list[str]:
        return list(self._units)

    def resolve(self, name: str) -> Unit:
        try:
            return self._units[name]
        except KeyError:
            raise UnknownUnit([name]) from None

    def topo_order(self, names: Iterable[str] | None = None) -> list[str]:
        """Return `names` (default: all units) with dependencies first."""
        wanted = self._units if names is None else set(names)
        return topo_sort(
            {n: self._units[n].depends_on for n in self._units if n in wanted}
        )

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(self._units.values())

    def __len__(self) -> int:
        return len(self._units)


def load_config(path: Path) -> tuple[DeploySettings, UnitRegistry]:
    """Load pipeline settings and the unit registry from a deploy.toml file.

    Raises:
        ConfigError: If the file is missing, malformed, or describes an
                     invalid set of units.
    """
    table = get_deploy_table(load_document(path))
    return get_settings(table), UnitRegistry(get_units(table))
