"""TOML configuration loading.

Uses tomlkit to read deploy.toml, the file describing the repository's
deployable units and pipeline settings:

    [deploy]
    workflow = ".github/workflows/deploy.yml"
    max-concurrency = 4

    [[deploy.units]]
    name = "user-service"
    path = "services/user-service"
    port = 3001
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError
from .models import DeploySettings, Unit

DEFAULT_CONFIG = "deploy.toml"


def load_document(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a TOML file.

    Raises:
        ConfigError: If the file is missing or not valid TOML.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        return tomlkit.parse(path.read_text())
    except TOMLKitError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def get_deploy_table(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Extract the [deploy] table as plain Python values.

    Raises:
        ConfigError: If the table is missing.
    """
    table = doc.get("deploy")
    if table is None:
        raise ConfigError("No [deploy] table defined in config")
    return table.unwrap()


def get_settings(table: dict[str, Any]) -> DeploySettings:
    """Build DeploySettings from the [deploy] table, ignoring the unit list."""
    values = {key: value for key, value in table.items() if key != "units"}
    try:
        return DeploySettings.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid [deploy] settings:\n{exc}") from exc


def get_units(table: dict[str, Any]) -> list[Unit]:
    """Build Unit models from the [[deploy.units]] array.

    Accepts `path` (or `path-prefix`), `port`, `depends-on` and an optional
    `health-url` per entry.

    Raises:
        ConfigError: If no units are defined or an entry is malformed.
    """
    entries = table.get("units")
    if not entries:
        raise ConfigError("No [[deploy.units]] defined in config")

    units: list[Unit] = []
    for index, entry in enumerate(entries):
        try:
            units.append(
                Unit(
                    name=entry.get("name", ""),
                    path_prefix=entry.get("path", entry.get("path-prefix", "")),
                    port=entry.get("port", 0),
                    depends_on=tuple(entry.get("depends-on", ())),
                    health_url=entry.get("health-url"),
                )
            )
        except ValidationError as exc:
            label = entry.get("name") or f"#{index + 1}"
            raise ConfigError(f"Invalid unit {label}:\n{exc}") from exc
    return units
