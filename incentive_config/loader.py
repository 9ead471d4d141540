"""
Configuration Loader (``incentive_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``incentive_config.schema`` dataclasses.  Runtime callers go through
``incentive_config.get_active_config()``, not this module.

Invariants enforced
-------------------
* Unknown keys inside a section are rejected, so a typo never silently
  falls back to a default.
* Numeric thresholds are parsed as Decimal (via ``str``), never float.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad section content  -> ``ValueError`` with the section and key.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from incentive_config.schema import (
    AgentMemorySettings,
    AnomalySettings,
    ConvergenceSettings,
    IncentiveConfiguration,
    ReconciliationSettings,
    ResolutionSettings,
    StoreSettings,
)

_SECTIONS: dict[str, type] = {
    "convergence": ConvergenceSettings,
    "anomaly": AnomalySettings,
    "reconciliation": ReconciliationSettings,
    "resolution": ResolutionSettings,
    "store": StoreSettings,
    "agent_memory": AgentMemorySettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _coerce(section: str, key: str, expected: Any, raw: Any) -> Any:
    if isinstance(expected, Decimal):
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            raise ValueError(f"{section}.{key} must be numeric, got {raw!r}")
    if isinstance(expected, bool):
        return bool(raw)
    if isinstance(expected, int):
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValueError(f"{section}.{key} must be an integer, got {raw!r}")
        return raw
    return raw


def parse_section(section: str, data: dict[str, Any] | None) -> Any:
    """
    Parse one section into its settings dataclass.

    Raises:
        ValueError: on unknown keys or values of the wrong type.
    """
    settings_cls = _SECTIONS[section]
    defaults = settings_cls()
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"section {section!r} must be a mapping")

    known = {f.name for f in dataclasses.fields(settings_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown keys in {section!r}: {', '.join(unknown)}")

    values = {
        key: _coerce(section, key, getattr(defaults, key), raw)
        for key, raw in data.items()
    }
    return settings_cls(**values)


def parse_configuration(data: dict[str, Any]) -> IncentiveConfiguration:
    """
    Parse a whole configuration set.

    Postconditions:
        - Sections absent from ``data`` take their defaults.
        - ``checksum`` identifies the source content.
    """
    unknown = sorted(set(data) - set(_SECTIONS) - {"config_id", "version", "description"})
    if unknown:
        raise ValueError(f"unknown configuration sections: {', '.join(unknown)}")

    sections = {name: parse_section(name, data.get(name)) for name in _SECTIONS}
    return IncentiveConfiguration(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        description=str(data.get("description", "")),
        checksum=compute_checksum(data),
        **sections,
    )
