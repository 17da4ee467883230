"""Evaluated project and solution models and the providers that load them.

Parsing native ``.sln``/``.vcxproj`` files and evaluating their conditions is
not done here. :class:`DocumentModelProvider` reads documents that already
hold evaluated values, in any format :mod:`core.config_loader` supports.

Project document layout (TOML shown)::

    [properties]
    ConfigurationType = "StaticLibrary"
    IntDir = "obj/"

    [item_definitions.ClCompile]
    WarningLevel = "Level3"

    [[items.ClCompile]]
    include = "src/main.cpp"
    metadata = { PrecompiledHeader = "Use" }

    [configurations."Release|x64".properties]
    IntDir = "obj/x64/Release/"

Entries in ``configurations`` keyed ``"<Configuration>|<Platform>"`` are deep
merged over the base document for that configuration. Item list values are
joined with ``;`` and booleans become ``true``/``false``, matching evaluated
MSBuild text.

Solution document layout::

    [[projects]]
    name = "engine"
    path = "engine/engine.vcxproj.toml"
    guid = "{8BC9CEB8-...}"
    dependencies = ["{5F1C...}"]
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import os

from core.config_loader import load_config_file, merge_mappings, normalize_string_list

from .errors import EvaluationError, ProjectLoadError


_PROJECT_KEYS = {"properties", "items", "item_definitions", "configurations"}
_SOLUTION_KEYS = {"solution", "projects"}
MSBUILD_PROJECT_KIND = "msbuild"


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ";".join(_to_text(item) for item in value)
    if value is None:
        return ""
    return str(value)


def _to_text_dict(mapping: Mapping[str, Any]) -> Dict[str, str]:
    return {str(key): _to_text(value) for key, value in mapping.items()}


@dataclass(slots=True)
class ProjectItem:
    """One evaluated item, e.g. a ``ClCompile`` source file."""

    item_type: str
    include: str
    direct_metadata: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str, default: str = "") -> str:
        return self.metadata.get(name, default)

    def has_direct(self, name: str, value: str) -> bool:
        return self.direct_metadata.get(name, "").strip().lower() == value.lower()


@dataclass(slots=True)
class ProjectModel:
    path: Path
    properties: Dict[str, str] = field(default_factory=dict)
    items: Dict[str, List[ProjectItem]] = field(default_factory=dict)
    item_definitions: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def name(self) -> str:
        return self.properties.get("ProjectName") or self.path.name.split(".", 1)[0]

    def property(self, name: str, default: str = "") -> str:
        return self.properties.get(name, default)

    def require(self, *names: str) -> str:
        """Return the first non-empty property among ``names``."""

        for name in names:
            value = self.properties.get(name, "")
            if value:
                return value
        raise EvaluationError(self.path, f"Failed to evaluate {' or '.join(names)} variable")

    def get_items(self, item_type: str) -> List[ProjectItem]:
        return list(self.items.get(item_type, []))

    def item_definition(self, item_type: str) -> Dict[str, str]:
        return dict(self.item_definitions.get(item_type, {}))


@dataclass(slots=True)
class SolutionEntry:
    name: str
    path: Path
    guid: str
    dependencies: List[str] = field(default_factory=list)
    kind: str = MSBUILD_PROJECT_KIND

    @property
    def is_msbuild(self) -> bool:
        return self.kind == MSBUILD_PROJECT_KIND


@dataclass(slots=True)
class SolutionModel:
    path: Path
    projects: List[SolutionEntry] = field(default_factory=list)

    @property
    def directory(self) -> Path:
        return self.path.parent

    def msbuild_projects(self) -> List[SolutionEntry]:
        return [entry for entry in self.projects if entry.is_msbuild]


class ProjectModelProvider:
    """Interface yielding evaluated projects and solution membership."""

    def load_project(
        self,
        path: Path,
        *,
        configuration: str,
        platform: str,
        solution_dir: Path | None = None,
    ) -> ProjectModel:
        raise NotImplementedError

    def load_solution(self, path: Path) -> SolutionModel:
        raise NotImplementedError


class DocumentModelProvider(ProjectModelProvider):
    """Loads pre-evaluated project and solution documents from disk."""

    def __init__(self) -> None:
        self._documents: Dict[Path, Mapping[str, Any]] = {}

    def _read(self, path: Path) -> Mapping[str, Any]:
        resolved = path.resolve()
        cached = self._documents.get(resolved)
        if cached is not None:
            return cached
        if not resolved.is_file():
            raise ProjectLoadError(resolved, "file does not exist")
        try:
            data = load_config_file(resolved)
        except (OSError, TypeError, ValueError) as exc:
            raise ProjectLoadError(resolved, str(exc)) from exc
        self._documents[resolved] = data
        return data

    def load_project(
        self,
        path: Path,
        *,
        configuration: str,
        platform: str,
        solution_dir: Path | None = None,
    ) -> ProjectModel:
        resolved = path.resolve()
        data = self._read(resolved)
        unknown = {str(key) for key in data.keys() if str(key) not in _PROJECT_KEYS}
        if unknown:
            raise ProjectLoadError(resolved, f"unknown sections: {', '.join(sorted(unknown))}")

        document: Dict[str, Any] = {key: value for key, value in data.items() if key != "configurations"}
        configurations = data.get("configurations")
        if isinstance(configurations, Mapping):
            overlay = configurations.get(f"{configuration}|{platform}")
            if isinstance(overlay, Mapping):
                document = merge_mappings(document, overlay)

        properties = self._global_properties(resolved, configuration, platform, solution_dir)
        raw_properties = document.get("properties", {})
        if not isinstance(raw_properties, Mapping):
            raise ProjectLoadError(resolved, "[properties] must be a table")
        properties.update(_to_text_dict(raw_properties))
        properties.setdefault("ProjectName", resolved.name.split(".", 1)[0])

        definitions: Dict[str, Dict[str, str]] = {}
        raw_definitions = document.get("item_definitions", {})
        if isinstance(raw_definitions, Mapping):
            for item_type, values in raw_definitions.items():
                if isinstance(values, Mapping):
                    definitions[str(item_type)] = _to_text_dict(values)

        items: Dict[str, List[ProjectItem]] = {}
        raw_items = document.get("items", {})
        if not isinstance(raw_items, Mapping):
            raise ProjectLoadError(resolved, "[items] must be a table of item lists")
        for item_type, entries in raw_items.items():
            item_type = str(item_type)
            items[item_type] = [
                self._parse_item(resolved, item_type, entry, definitions.get(item_type, {}))
                for entry in self._as_sequence(resolved, item_type, entries)
            ]

        return ProjectModel(
            path=resolved,
            properties=properties,
            items=items,
            item_definitions=definitions,
        )

    @staticmethod
    def _global_properties(
        path: Path,
        configuration: str,
        platform: str,
        solution_dir: Path | None,
    ) -> Dict[str, str]:
        properties = {
            "Configuration": configuration,
            "Platform": platform,
            "ProjectDir": f"{path.parent}{os.sep}",
            "ProjectPath": str(path),
        }
        if solution_dir is not None:
            properties["SolutionDir"] = f"{solution_dir.as_posix().rstrip('/')}/"
        return properties

    @staticmethod
    def _as_sequence(path: Path, item_type: str, entries: Any) -> Sequence[Any]:
        if isinstance(entries, (str, Mapping)):
            return [entries]
        if isinstance(entries, Sequence):
            return entries
        raise ProjectLoadError(path, f"items.{item_type} must be a list")

    @staticmethod
    def _parse_item(path: Path, item_type: str, entry: Any, defaults: Mapping[str, str]) -> ProjectItem:
        if isinstance(entry, str):
            include = entry
            direct: Dict[str, str] = {}
        elif isinstance(entry, Mapping):
            include = str(entry.get("include") or "").strip()
            raw_metadata = entry.get("metadata", {})
            if not isinstance(raw_metadata, Mapping):
                raise ProjectLoadError(path, f"items.{item_type} metadata must be a table")
            direct = _to_text_dict(raw_metadata)
        else:
            raise ProjectLoadError(path, f"items.{item_type} entries must be strings or tables")
        if not include:
            raise ProjectLoadError(path, f"items.{item_type} entry is missing 'include'")
        metadata = dict(defaults)
        metadata.update(direct)
        return ProjectItem(item_type=item_type, include=include, direct_metadata=direct, metadata=metadata)

    def load_solution(self, path: Path) -> SolutionModel:
        resolved = path.resolve()
        data = self._read(resolved)
        unknown = {str(key) for key in data.keys() if str(key) not in _SOLUTION_KEYS}
        if unknown:
            raise ProjectLoadError(resolved, f"unknown sections: {', '.join(sorted(unknown))}")
        raw_projects = data.get("projects", [])
        if not isinstance(raw_projects, Sequence) or isinstance(raw_projects, (str, bytes)):
            raise ProjectLoadError(resolved, "[[projects]] must be an array of tables")

        entries: List[SolutionEntry] = []
        for raw in raw_projects:
            if not isinstance(raw, Mapping):
                raise ProjectLoadError(resolved, "solution project entries must be tables")
            raw_path = raw.get("path")
            if not raw_path:
                raise ProjectLoadError(resolved, "solution project entry is missing 'path'")
            project_path = Path(str(raw_path))
            if not project_path.is_absolute():
                project_path = (resolved.parent / project_path).resolve()
            name = str(raw.get("name") or project_path.name.split(".", 1)[0])
            try:
                dependencies = normalize_string_list(
                    raw.get("dependencies"),
                    field_name=f"projects.{name}.dependencies",
                )
            except TypeError as exc:
                raise ProjectLoadError(resolved, str(exc)) from exc
            entries.append(
                SolutionEntry(
                    name=name,
                    path=project_path,
                    guid=str(raw.get("guid") or name),
                    dependencies=dependencies,
                    kind=str(raw.get("type", MSBUILD_PROJECT_KIND)).strip().lower(),
                )
            )
        return SolutionModel(path=resolved, projects=entries)


__all__ = [
    "DocumentModelProvider",
    "MSBUILD_PROJECT_KIND",
    "ProjectItem",
    "ProjectModel",
    "ProjectModelProvider",
    "SolutionEntry",
    "SolutionModel",
]
