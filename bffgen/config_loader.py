"""Settings file loading for the bffgen CLI."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from core.config_loader import find_config_file, load_config_file

from .console import Console
from .scheduler import ExecutionMode

SETTINGS_STEM = "bffgen"


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValueError(f"global.{key} must be a boolean")


def _as_int(value: Any, key: str, *, minimum: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"global.{key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"global.{key} must be an integer") from exc
    if number < minimum:
        raise ValueError(f"global.{key} must be at least {minimum}")
    return number


@dataclass(slots=True)
class GlobalSettings:
    log_level: str = "info"
    fbuild_path: str = "FBuild.exe"
    fbuild_args: str = "-dist"
    brokerage: str = ""
    max_process: int = 1
    retries: int = 0
    execution_mode: ExecutionMode = ExecutionMode.AUTO
    unity: bool = False
    configuration: str = "Debug"
    platform: str = "Win32"

    KEYS = (
        "log_level",
        "fbuild_path",
        "fbuild_args",
        "brokerage",
        "max_process",
        "retries",
        "execution_mode",
        "unity",
        "configuration",
        "platform",
    )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalSettings":
        unknown_sections = sorted(str(key) for key in data if key != "global")
        if unknown_sections:
            raise ValueError(f"Unknown settings sections: {', '.join(unknown_sections)}")
        section = data.get("global", {})
        if not isinstance(section, Mapping):
            raise ValueError("[global] must be a table")
        unknown = sorted(str(key) for key in section if key not in cls.KEYS)
        if unknown:
            raise ValueError(f"Unknown keys in [global]: {', '.join(unknown)}")

        settings = cls()
        if "log_level" in section:
            settings.log_level = str(section["log_level"]).strip().lower()
            if settings.log_level not in Console.LEVELS:
                raise ValueError(f"global.log_level must be one of: {', '.join(Console.LEVELS)}")
        for key in ("fbuild_path", "fbuild_args", "brokerage", "configuration", "platform"):
            if key in section:
                setattr(settings, key, str(section[key]))
        if "max_process" in section:
            settings.max_process = _as_int(section["max_process"], "max_process", minimum=1)
        if "retries" in section:
            settings.retries = _as_int(section["retries"], "retries", minimum=0)
        if "execution_mode" in section:
            try:
                settings.execution_mode = ExecutionMode(str(section["execution_mode"]).strip().lower())
            except ValueError as exc:
                allowed = ", ".join(mode.value for mode in ExecutionMode)
                raise ValueError(f"global.execution_mode must be one of: {allowed}") from exc
        if "unity" in section:
            settings.unity = _as_bool(section["unity"], "unity")
        return settings


def load_settings(path: Path | None = None, *, directory: Path | None = None) -> GlobalSettings:
    """Load ``path``, or ``bffgen.<ext>`` from ``directory``; defaults when absent."""

    if path is None:
        path = find_config_file(directory or Path.cwd(), SETTINGS_STEM)
        if path is None:
            return GlobalSettings()
    elif not path.is_file():
        raise ValueError(f"Settings file '{path}' does not exist")
    return GlobalSettings.from_mapping(load_config_file(path))


__all__ = ["GlobalSettings", "SETTINGS_STEM", "load_settings"]
