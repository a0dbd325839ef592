"""TOML-based settings.

Loads ~/.vpstools/defaults.toml (global) and vpstools.toml (project),
deep-merges them, and builds a frozen Settings tree.

Example vpstools.toml:

    [probe]
    reachability_timeout = 3.0
    known_hosts = "~/.ssh/known_hosts"

    [telemetry]
    command_timeout = 15.0

    [export]
    directory = "./exports"

    [logging]
    level = "DEBUG"
    console = true
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from vpstools.constants import COMMAND_TIMEOUT, METRICS_HISTORY_SIZE
from vpstools.core.exceptions import InvalidConfigurationError
from vpstools.fleet.prober import ProbeSettings
from vpstools.logging import LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".vpstools" / "defaults.toml"
PROJECT_CONFIG_NAME = "vpstools.toml"


@dataclass(frozen=True, slots=True)
class TelemetrySettings:
    command_timeout: float = COMMAND_TIMEOUT
    history_size: int = METRICS_HISTORY_SIZE


@dataclass(frozen=True, slots=True)
class ExportSettings:
    directory: str = "~/.vpstools/exports"


@dataclass(frozen=True, slots=True)
class StoreSettings:
    path: str = "~/.vpstools/fleet.json"


@dataclass(frozen=True, slots=True)
class Settings:
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    telemetry: TelemetrySettings = field(default_factory=TelemetrySettings)
    export: ExportSettings = field(default_factory=ExportSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    logging: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise InvalidConfigurationError(f"{path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    return _deep_merge(global_cfg, project_cfg)


def _build_section[T](cls: type[T], name: str, raw: Any) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise InvalidConfigurationError(f"[{name}] must be a table")
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(raw) - known)
    if unknown:
        raise InvalidConfigurationError(
            f"Unknown key(s) in [{name}]: {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise InvalidConfigurationError(f"[{name}]: {e}") from e


_SECTIONS: dict[str, type] = {
    "probe": ProbeSettings,
    "telemetry": TelemetrySettings,
    "export": ExportSettings,
    "store": StoreSettings,
    "logging": LogConfig,
}


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    """Load and validate settings. Missing files and sections use defaults.

    Raises:
        InvalidConfigurationError: Malformed TOML or unknown keys.
    """
    raw = load_config(project_dir=project_dir, global_path=global_path)
    unknown = sorted(set(raw) - set(_SECTIONS))
    if unknown:
        raise InvalidConfigurationError(f"Unknown section(s): {', '.join(unknown)}")
    sections = {name: _build_section(cls, name, raw.get(name)) for name, cls in _SECTIONS.items()}
    return Settings(**sections)
