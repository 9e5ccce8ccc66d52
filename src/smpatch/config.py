"""Run configuration assembled once at startup."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import SMPatchError

__all__ = [
    "ConfigError",
    "DEFAULT_INSTALL_ROOT",
    "DEFAULT_PATCH_FILE",
    "RunConfig",
    "build_run_config",
    "load_config_file",
]

DEFAULT_INSTALL_ROOT = Path(".")
DEFAULT_PATCH_FILE = Path("smpatch.zip")


class ConfigError(SMPatchError):
    """Raised when the configuration file or option values are invalid."""


class RunConfig(BaseModel):
    """Immutable settings for a single patch run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    install_root: Path = DEFAULT_INSTALL_ROOT
    patch_file: Path = DEFAULT_PATCH_FILE
    force: bool = False
    verbose: bool = False
    silent: bool = False
    keep_patch_file: bool = False


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """Read optional run defaults from a YAML file."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    # Relative paths in the file are anchored at the file's own directory.
    for key in ("install_root", "patch_file"):
        value = data.get(key)
        if isinstance(value, str) and value.strip() and not Path(value).is_absolute():
            data[key] = (config_path.parent / value).as_posix()
    return data


def build_run_config(
    file_values: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RunConfig:
    """Merge file defaults with explicit option values; ``None`` overrides are ignored."""
    merged: Dict[str, Any] = dict(file_values or {})
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    try:
        return RunConfig.model_validate(merged)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration: {error}") from error
