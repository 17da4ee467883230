"""Project dependency resolution and build ordering."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Hashable, Iterable, List, Mapping, Sequence, Set, Tuple, TypeVar

from .console import Console
from .errors import CircularDependencyError, ProjectLoadError, ProjectNotFoundError
from .project_model import ProjectItem, ProjectModel, ProjectModelProvider, SolutionEntry, SolutionModel

K = TypeVar("K", bound=Hashable)


def _find_cycle(dependency_map: Mapping[K, Sequence[K]]) -> List[K]:
    visiting: List[K] = []
    visited: Set[K] = set()

    def _dfs(node: K) -> List[K] | None:
        if node in visiting:
            return [*visiting[visiting.index(node):], node]
        if node in visited:
            return None
        visiting.append(node)
        for dep in dependency_map.get(node, ()):
            if dep in dependency_map:
                cycle = _dfs(dep)
                if cycle:
                    return cycle
        visiting.pop()
        visited.add(node)
        return None

    for start in dependency_map:
        cycle = _dfs(start)
        if cycle:
            return cycle
    return []


def topological_order(dependency_map: Mapping[K, Sequence[K]]) -> List[K]:
    """Kahn ordering that always emits the earliest-declared ready node.

    Dependencies missing from ``dependency_map`` are ignored. Raises
    :class:`CircularDependencyError` when no remaining node becomes ready.
    """

    remaining: Dict[K, int] = {}
    dependents: Dict[K, List[K]] = {node: [] for node in dependency_map}
    for node, deps in dependency_map.items():
        filtered = list(dict.fromkeys(dep for dep in deps if dep in dependency_map))
        remaining[node] = len(filtered)
        for dep in filtered:
            dependents[dep].append(node)

    order: List[K] = []
    while remaining:
        ready = next((node for node, count in remaining.items() if count == 0), None)
        if ready is None:
            stuck = {node: dependency_map[node] for node in remaining}
            cycle = _find_cycle(stuck) or list(remaining)
            raise CircularDependencyError([str(node) for node in cycle])
        del remaining[ready]
        order.append(ready)
        for dependent in dependents[ready]:
            if dependent in remaining:
                remaining[dependent] -= 1
    return order


@dataclass(slots=True)
class SolutionResolution:
    order: List[SolutionEntry] = field(default_factory=list)
    excluded: Dict[str, str] = field(default_factory=dict)
    # Excluded projects by path: (name, reason).
    skipped: Dict[Path, Tuple[str, str]] = field(default_factory=dict)
    # Solution-level edges by project path; they order builds but never link.
    dependencies: Dict[Path, List[Path]] = field(default_factory=dict)


def _find_entry(entries: Sequence[SolutionEntry], identifier: str) -> SolutionEntry:
    wanted = identifier.strip().lower()
    for entry in entries:
        if entry.path.name.lower() == wanted or entry.name.lower() == wanted:
            return entry
    available = ", ".join(entry.name for entry in entries) or "<none>"
    raise ProjectNotFoundError(f"Project '{identifier}' not found in solution. Available projects: {available}")


def resolve_solution(solution: SolutionModel, requested: str | None = None) -> SolutionResolution:
    """Order the requested solution projects (plus dependencies) dependencies-first.

    Projects with an unknown dependency or a missing file are excluded along
    with everything that depends on them.
    """

    entries = solution.msbuild_projects()
    by_guid: Dict[str, SolutionEntry] = {entry.guid: entry for entry in entries}

    if requested:
        related = [_find_entry(entries, requested)]
        index = 0
        while index < len(related):
            for guid in related[index].dependencies:
                dependency = by_guid.get(guid)
                if dependency is not None and dependency not in related:
                    related.append(dependency)
            index += 1
    else:
        related = list(entries)

    excluded: Dict[str, str] = {}
    for entry in related:
        if not entry.path.is_file():
            excluded[entry.guid] = f"project file {entry.path} does not exist"
            continue
        missing = [guid for guid in entry.dependencies if guid not in by_guid]
        if missing:
            excluded[entry.guid] = f"unresolved dependency {', '.join(missing)}"

    changed = True
    while changed:
        changed = False
        for entry in related:
            if entry.guid in excluded:
                continue
            broken = next((guid for guid in entry.dependencies if guid in excluded), None)
            if broken is not None:
                excluded[entry.guid] = f"depends on excluded project {by_guid[broken].name}"
                changed = True

    dependency_map = {
        entry.guid: list(entry.dependencies) for entry in related if entry.guid not in excluded
    }
    order = [by_guid[guid] for guid in topological_order(dependency_map)]
    return SolutionResolution(
        order=order,
        excluded={by_guid[guid].name: reason for guid, reason in excluded.items()},
        skipped={by_guid[guid].path: (by_guid[guid].name, reason) for guid, reason in excluded.items()},
        dependencies={entry.path: [by_guid[guid].path for guid in entry.dependencies] for entry in order},
    )


class BuildType(str, Enum):
    APPLICATION = "Application"
    STATIC_LIB = "StaticLib"
    DYNAMIC_LIB = "DynamicLib"

    @classmethod
    def from_configuration_type(cls, value: str) -> "BuildType":
        if value == "DynamicLibrary":
            return cls.DYNAMIC_LIB
        if value == "StaticLibrary":
            return cls.STATIC_LIB
        return cls.APPLICATION


@dataclass(slots=True, eq=False)
class ProjectNode:
    index: int
    model: ProjectModel
    dependencies: Set[int] = field(default_factory=set)
    dependents: Set[int] = field(default_factory=set)
    link_dependents: Set[int] = field(default_factory=set)
    additional_link_inputs: List[str] = field(default_factory=list)
    excluded_reason: str | None = None

    @property
    def path(self) -> Path:
        return self.model.path

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def build_type(self) -> BuildType:
        return BuildType.from_configuration_type(self.model.property("ConfigurationType"))

    def add_link_input(self, path: str) -> bool:
        if path in self.additional_link_inputs:
            return False
        self.additional_link_inputs.append(path)
        return True


def links_output(reference: ProjectItem) -> bool:
    """Whether a ``ProjectReference`` contributes its output to linking."""

    reference_output = reference.get("ReferenceOutputAssembly", "true").strip().lower()
    link_dependencies = reference.get("LinkLibraryDependencies", "true").strip().lower()
    return reference_output == "true" or link_dependencies == "true"


class ProjectGraph:
    """Arena of evaluated projects linked by dependency indices."""

    def __init__(
        self,
        provider: ProjectModelProvider,
        *,
        configuration: str,
        platform: str,
        solution_dir: Path | None = None,
        console: Console | None = None,
    ) -> None:
        self._provider = provider
        self._configuration = configuration
        self._platform = platform
        self._solution_dir = solution_dir
        self._console = console or Console("none")
        self.nodes: List[ProjectNode] = []
        self._by_path: Dict[Path, int] = {}
        self.unloadable: Dict[Path, str] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def node_for(self, path: Path) -> ProjectNode | None:
        index = self._by_path.get(Path(path).resolve())
        return self.nodes[index] if index is not None else None

    def evaluate(self, paths: Iterable[Path]) -> None:
        """Load ``paths`` and, recursively, the projects they reference."""

        for path in paths:
            self._visit(Path(path), [])
        self._propagate_exclusions()

    def _visit(self, path: Path, stack: List[Path]) -> int | None:
        resolved = path.resolve()
        if resolved in stack:
            cycle = [*stack[stack.index(resolved):], resolved]
            raise CircularDependencyError([item.name for item in cycle])
        if resolved in self.unloadable:
            return None
        existing = self._by_path.get(resolved)
        if existing is not None:
            return existing

        try:
            model = self._provider.load_project(
                resolved,
                configuration=self._configuration,
                platform=self._platform,
                solution_dir=self._solution_dir,
            )
        except ProjectLoadError as exc:
            self._console.error(str(exc))
            self.unloadable[resolved] = exc.reason
            return None

        node = ProjectNode(index=len(self.nodes), model=model)
        self.nodes.append(node)
        self._by_path[resolved] = node.index

        for reference in model.get_items("ProjectReference"):
            if not links_output(reference):
                continue
            reference_path = model.directory / reference.include.replace("\\", "/")
            child = self._visit(reference_path, [*stack, resolved])
            if child is None:
                if node.excluded_reason is None:
                    node.excluded_reason = f"unresolved project reference {reference.include}"
                continue
            self.add_dependency(node.index, child)
        return node.index

    def add_dependency(self, dependent: int, dependency: int, *, link: bool = True) -> None:
        if dependent == dependency:
            raise CircularDependencyError([self.nodes[dependent].name, self.nodes[dependent].name])
        self.nodes[dependent].dependencies.add(dependency)
        self.nodes[dependency].dependents.add(dependent)
        if link:
            self.nodes[dependency].link_dependents.add(dependent)

    def add_dependency_by_path(self, dependent: Path, dependency: Path, *, link: bool = True) -> bool:
        source = self.node_for(dependent)
        target = self.node_for(dependency)
        if source is None or target is None:
            return False
        self.add_dependency(source.index, target.index, link=link)
        return True

    def add_order_dependencies(self, dependencies: Mapping[Path, Sequence[Path]]) -> None:
        """Add build-order-only edges, such as those declared by a solution."""

        for dependent, targets in dependencies.items():
            node = self.node_for(dependent)
            if node is None:
                continue
            for target in targets:
                if self.add_dependency_by_path(dependent, target, link=False):
                    continue
                if node.excluded_reason is None:
                    node.excluded_reason = f"unresolved dependency {Path(target).name}"
        self._propagate_exclusions()

    def _propagate_exclusions(self) -> None:
        changed = True
        while changed:
            changed = False
            for node in self.nodes:
                if node.excluded_reason is not None:
                    continue
                for index in sorted(node.dependencies):
                    dependency = self.nodes[index]
                    if dependency.excluded_reason is not None:
                        node.excluded_reason = f"depends on excluded project {dependency.name}"
                        changed = True
                        break

    def excluded(self) -> List[ProjectNode]:
        self._propagate_exclusions()
        return [node for node in self.nodes if node.excluded_reason is not None]

    def build_order(self) -> List[ProjectNode]:
        """Every dependency precedes its dependents; excluded nodes are left out."""

        self._propagate_exclusions()
        dependency_map = {
            node.index: sorted(node.dependencies)
            for node in self.nodes
            if node.excluded_reason is None
        }
        try:
            order = topological_order(dependency_map)
        except CircularDependencyError as exc:
            names = [self.nodes[int(member)].name for member in exc.members]
            raise CircularDependencyError(names) from exc
        return [self.nodes[index] for index in order]

    def dependents_of(self, node: ProjectNode) -> List[ProjectNode]:
        return [self.nodes[index] for index in sorted(node.dependents)]

    def link_dependents_of(self, node: ProjectNode) -> List[ProjectNode]:
        return [self.nodes[index] for index in sorted(node.link_dependents)]

    def dependencies_of(self, node: ProjectNode) -> List[ProjectNode]:
        return [self.nodes[index] for index in sorted(node.dependencies)]


__all__ = [
    "BuildType",
    "ProjectGraph",
    "ProjectNode",
    "SolutionResolution",
    "links_output",
    "resolve_solution",
    "topological_order",
]
