"""Locating and decoding the TOML, JSON and YAML documents bffgen reads.

Project, solution and settings documents all go through
:func:`load_config_file`, so every format reports decode failures the same
way.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

import json
import tomllib

import yaml


ConfigLoader = Callable[[Any], Mapping[str, Any]]


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}
"""Mapping of file suffixes to loader callables."""

DECODE_ERRORS = (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError)


class ConfigDecodeError(ValueError):
    """Raised when a document exists but is not valid in its format."""

    def __init__(self, path: Path, cause: Exception):
        super().__init__(f"Invalid {path.suffix.lstrip('.').upper()} in '{path}': {cause}")
        self.path = path
        self.cause = cause


def loader_for(path: Path) -> ConfigLoader:
    """Return the loader registered for the last suffix of ``path``."""

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS))
        raise ValueError(
            f"Unsupported configuration file extension: {suffix}. Supported: {supported}"
        )
    return loader


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Decode the mapping stored in ``path``.

    Raises :class:`ConfigDecodeError` for malformed content and
    :class:`TypeError` when the root is not a mapping.
    """

    loader = loader_for(path)
    kwargs: Dict[str, Any] = {}
    mode = "rb" if path.suffix.lower() == ".toml" else "r"
    if mode == "r":
        kwargs["encoding"] = "utf-8"

    with path.open(mode, **kwargs) as handle:
        try:
            data = loader(handle)
        except DECODE_ERRORS as exc:
            raise ConfigDecodeError(path, exc) from exc

    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")

    return data


def find_config_file(directory: Path, stem: str, *, suffixes: Iterable[str] | None = None) -> Path | None:
    """Return the single ``<stem>.<suffix>`` file inside ``directory``, if any."""

    allowed = sorted({suffix.lower() for suffix in (suffixes or FILE_LOADERS.keys())})
    found: List[Path] = []
    for suffix in allowed:
        candidate = directory / f"{stem}{suffix}"
        if candidate.is_file():
            found.append(candidate)

    if len(found) > 1:
        names = "', '".join(path.name for path in found)
        raise ValueError(
            f"Multiple configuration files found for '{stem}': '{names}'. "
            "Only one format per configuration entry is allowed."
        )
    return found[0] if found else None


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge two mapping objects."""

    result: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        existing = result.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            result[key] = merge_mappings(existing, value)
        else:
            result[key] = value
    return result


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Coerce ``value`` into a list of trimmed strings."""

    if value is None:
        return []

    if isinstance(value, (str, bytes)):
        text = str(value).strip()
        return [text] if text else []

    if isinstance(value, Sequence):
        items: List[str] = []
        for item in value:
            if not isinstance(item, (str, bytes)):
                label = f"{field_name} " if field_name else ""
                raise TypeError(f"{label}entries must be strings")
            text = str(item).strip()
            if text:
                items.append(text)
        return items

    label = f"{field_name} " if field_name else ""
    raise TypeError(f"{label}must be a string or sequence of strings")


__all__ = [
    "ConfigLoader",
    "ConfigDecodeError",
    "FILE_LOADERS",
    "find_config_file",
    "load_config_file",
    "loader_for",
    "merge_mappings",
    "normalize_string_list",
]
