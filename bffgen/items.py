"""Compile and resource items extracted from an evaluated project."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import List

from .project_model import ProjectItem, ProjectModel
from .toolchains import CommandLineProvider, Tool


class ToolKind(str, Enum):
    COMPILE = "compile"
    RESOURCE = "resource"


class PchRole(str, Enum):
    NONE = "none"
    CREATE = "create"
    USE = "use"
    EXCLUDE = "exclude"

    @classmethod
    def from_metadata(cls, value: str) -> "PchRole":
        normalized = value.strip().lower()
        if normalized == "create":
            return cls.CREATE
        if normalized == "use":
            return cls.USE
        if normalized == "notusing":
            return cls.EXCLUDE
        return cls.NONE


@dataclass(frozen=True, slots=True)
class CompileItem:
    source: str
    kind: ToolKind
    options: str
    output_dir: str
    output_extension: str = ""
    pch_role: PchRole = PchRole.NONE
    excluded: bool = False
    pch_output: str = ""


@dataclass(slots=True)
class CollectedItems:
    items: List[CompileItem] = field(default_factory=list)
    library_compiler_options: str = ""


CL_SKIPPED = ("ObjectFileName", "AssemblerListingLocation")
PCH_SKIPPED = ("PrecompiledHeaderOutputFile", "ObjectFileName", "AssemblerListingLocation")
RC_SKIPPED = ("ResourceOutputFileName", "DesigntimePreprocessorDefinitions")


def _output_location(item: ProjectItem, default_dir: str) -> tuple[str, str]:
    object_file = item.direct_metadata.get("ObjectFileName", "").strip()
    if not object_file:
        return default_dir, ""
    if object_file.endswith(("/", "\\")):
        return object_file, ""
    normalized = PurePosixPath(object_file.replace("\\", "/"))
    name = normalized.name
    extension = name[name.index("."):] if "." in name else ""
    return str(normalized.parent), extension


def _is_excluded(item: ProjectItem) -> bool:
    return item.has_direct("ExcludedFromBuild", "true")


def collect_compile_items(project: ProjectModel, provider: CommandLineProvider) -> CollectedItems:
    """Translate ``ClCompile`` and ``ResourceCompile`` items, in declaration order."""

    int_dir = project.property("IntDir")
    collected = CollectedItems()

    for item in project.get_items("ClCompile"):
        role = PchRole.from_metadata(item.direct_metadata.get("PrecompiledHeader", ""))
        if _is_excluded(item):
            collected.items.append(
                CompileItem(item.include, ToolKind.COMPILE, "", int_dir, pch_role=role, excluded=True)
            )
            continue
        if role is PchRole.CREATE:
            options = provider.command_line(Tool.COMPILER, item.metadata, PCH_SKIPPED) + " /FS"
            collected.items.append(
                CompileItem(
                    source=item.include,
                    kind=ToolKind.COMPILE,
                    options=f'"%1" /Fp"%2" /Fo"%3" {options} ',
                    output_dir=int_dir,
                    pch_role=role,
                    pch_output=item.get("PrecompiledHeaderOutputFile"),
                )
            )
            continue

        options = provider.command_line(Tool.COMPILER, item.metadata, CL_SKIPPED) + " /FS"
        options += " /TC" if item.include.lower().endswith(".c") else " /TP"
        collected.library_compiler_options = options
        output_dir, output_extension = _output_location(item, int_dir)
        collected.items.append(
            CompileItem(
                source=item.include,
                kind=ToolKind.COMPILE,
                options=f'"%1" /Fo"%2" {options}',
                output_dir=output_dir,
                output_extension=output_extension,
                pch_role=role,
            )
        )

    for item in project.get_items("ResourceCompile"):
        if _is_excluded(item):
            collected.items.append(
                CompileItem(item.include, ToolKind.RESOURCE, "", int_dir, ".res", excluded=True)
            )
            continue
        options = provider.command_line(Tool.RESOURCE_COMPILER, item.metadata, RC_SKIPPED)
        collected.items.append(
            CompileItem(
                source=item.include,
                kind=ToolKind.RESOURCE,
                options=f'{options} /fo"%2" "%1"'.lstrip(),
                output_dir=int_dir,
                output_extension=".res",
            )
        )

    return collected


__all__ = [
    "CL_SKIPPED",
    "CollectedItems",
    "CompileItem",
    "PCH_SKIPPED",
    "PchRole",
    "RC_SKIPPED",
    "ToolKind",
    "collect_compile_items",
]
