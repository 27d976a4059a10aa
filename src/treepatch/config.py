"""Configuration loading and logging setup for treepatch."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .queue import DEFAULT_MAX_HISTORY
from .tree import ID_SCHEMES

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "configure_logging",
    "copy_config_template",
    "load_config",
    "write_config",
]

DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "tree": {
        "root_name": "DataModel",
        "root_class": "DataModel",
        "id_scheme": "uuid",
        "property_defaults": {},
    },
    "queue": {
        "max_history": DEFAULT_MAX_HISTORY,
    },
    "logging": {
        "level": "WARNING",
        "telemetry": True,
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file is missing or malformed."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _validate(config: Mapping[str, Any], source: Path | None) -> None:
    for section in ("tree", "queue", "logging"):
        if not isinstance(config.get(section), Mapping):
            raise ConfigError(f"Config section '{section}' must be a mapping", details={"path": str(source)})

    id_scheme = config["tree"].get("id_scheme")
    if id_scheme not in ID_SCHEMES:
        raise ConfigError(
            f"Unknown tree.id_scheme '{id_scheme}' (expected one of: {', '.join(ID_SCHEMES)})",
            details={"path": str(source), "id_scheme": id_scheme},
        )

    max_history = config["queue"].get("max_history")
    if not isinstance(max_history, int) or isinstance(max_history, bool) or max_history < 1:
        raise ConfigError("queue.max_history must be a positive integer", details={"path": str(source)})

    property_defaults = config["tree"].get("property_defaults") or {}
    if not isinstance(property_defaults, Mapping):
        raise ConfigError("tree.property_defaults must be a mapping", details={"path": str(source)})
    for class_name, defaults in property_defaults.items():
        if not isinstance(defaults, Mapping):
            raise ConfigError(
                f"tree.property_defaults.{class_name} must be a mapping of property names to values",
                details={"path": str(source), "class_name": class_name},
            )


def load_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Load YAML configuration from disk merged over the defaults.

    Passing ``None`` returns the validated defaults.
    """
    config = copy_config_template()
    if config_path is None:
        _validate(config, None)
        return config

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)})
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}", details={"path": str(path)}) from error

    if not isinstance(data, Mapping):
        raise ConfigError("Configuration must be a mapping at the top level.", details={"path": str(path)})

    _merge(config, data)
    _validate(config, path)
    return config


def write_config(config_path: Path | str, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def configure_logging(config: Mapping[str, Any]) -> None:
    """Apply the configured levels to the ``treepatch`` logger hierarchy.

    Handlers are left to the host application. The telemetry logger emits
    at ``INFO`` when enabled and is silenced otherwise.
    """
    logging_cfg = config.get("logging") or {}
    level_name = str(logging_cfg.get("level") or "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown logging.level '{level_name}'", details={"level": level_name})

    logging.getLogger("treepatch").setLevel(level)
    telemetry_logger = logging.getLogger("treepatch.telemetry")
    if logging_cfg.get("telemetry", True):
        telemetry_logger.disabled = False
        telemetry_logger.setLevel(logging.INFO)
    else:
        telemetry_logger.disabled = True
