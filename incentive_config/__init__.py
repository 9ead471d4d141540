"""
incentive_config -- single public entrypoint for tunable configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``IncentiveConfiguration`` (or one of its sections) by injection; no
    other component reads configuration files.

Architecture position:
    Configuration -- sits beside ``incentive_kernel`` and below
    ``incentive_engines`` / ``incentive_services``.  The schema module is a
    leaf so engines can take their settings sections as plain arguments.

Failure modes:
    - ``ConfigurationError`` -- the named set is missing or malformed.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``INCENTIVE_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each run to the exact thresholds that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from incentive_config.loader import load_yaml_file, parse_configuration
from incentive_config.schema import IncentiveConfiguration
from incentive_kernel.exceptions import ConfigurationError

_logger = logging.getLogger("incentive_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> IncentiveConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        name: Configuration set name; resolves to ``<config_dir>/<name>.yaml``.
        config_dir: Override path to the configuration sets directory.
            Defaults to incentive_config/sets/.

    Returns:
        A frozen ``IncentiveConfiguration``.

    Raises:
        ConfigurationError: If the set does not exist, is not valid YAML,
            or fails schema parsing.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = Path(sets_dir) / f"{name}.yaml"

    try:
        data = load_yaml_file(path)
    except FileNotFoundError:
        raise ConfigurationError(f"configuration set {name!r} not found", source=str(path))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML: {exc}", source=str(path)) from exc

    try:
        config = parse_configuration(data)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(str(exc), source=str(path)) from exc

    _logger.info(
        "INCENTIVE_CONFIG_TRACE",
        extra={
            "trace_type": "INCENTIVE_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
        },
    )
    return config


__all__ = ["get_active_config", "IncentiveConfiguration"]
