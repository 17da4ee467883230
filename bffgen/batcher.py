"""Grouping of compile items into build-graph action groups."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Tuple

from .items import CompileItem, PchRole, ToolKind


@dataclass(frozen=True, slots=True)
class PrecompiledHeader:
    """Options text shared by every group that consumes the precompiled header."""

    options: str
    input_file: str
    output_file: str


@dataclass(slots=True)
class ActionGroup:
    kind: ToolKind
    output_dir: str
    options: str
    output_extension: str = ""
    precompiled_header: PrecompiledHeader | None = None
    sources: List[str] = field(default_factory=list)
    unity: bool = False

    @property
    def key(self) -> Tuple[ToolKind, str, str, str, PrecompiledHeader | None]:
        return (self.kind, self.output_dir, self.options, self.output_extension, self.precompiled_header)

    @property
    def unity_file_count(self) -> int:
        return 1 + len(self.sources) // 10


@dataclass(frozen=True, slots=True)
class UnityPolicy:
    enabled: bool = False
    kinds: FrozenSet[ToolKind] = frozenset({ToolKind.COMPILE})

    def __post_init__(self) -> None:
        # Resource scripts cannot be concatenated.
        unsupported = sorted(kind.value for kind in self.kinds if kind is not ToolKind.COMPILE)
        if unsupported:
            raise ValueError(f"Unity builds do not support: {', '.join(unsupported)}")

    def allows(self, kind: ToolKind) -> bool:
        return self.enabled and kind in self.kinds


def find_precompiled_header(items: Iterable[CompileItem]) -> PrecompiledHeader | None:
    """Return the header spec of the single ``create`` item, if any.

    Raises :class:`ValueError` when more than one item creates a header.
    """

    creator: CompileItem | None = None
    for item in items:
        if item.excluded or item.pch_role is not PchRole.CREATE:
            continue
        if creator is not None:
            raise ValueError(
                f"Multiple precompiled header create items: {creator.source} and {item.source}"
            )
        creator = item
    if creator is None:
        return None
    return PrecompiledHeader(
        options=creator.options,
        input_file=creator.source,
        output_file=creator.pch_output,
    )


def batch(items: Iterable[CompileItem], *, unity: UnityPolicy = UnityPolicy()) -> List[ActionGroup]:
    """Group ``items`` by tool kind, output location, options and header spec.

    Groups keep first-seen order and items keep declaration order inside
    their group, so equal input always yields equal groups.
    """

    items = list(items)
    header = find_precompiled_header(items)

    groups: List[ActionGroup] = []
    index: Dict[tuple, ActionGroup] = {}
    for item in items:
        if item.excluded or item.pch_role is PchRole.CREATE:
            continue
        attached = None
        if header is not None and item.kind is ToolKind.COMPILE and item.pch_role is not PchRole.EXCLUDE:
            attached = header
        key = (item.kind, item.output_dir, item.options, item.output_extension, attached)
        group = index.get(key)
        if group is None:
            group = ActionGroup(
                kind=item.kind,
                output_dir=item.output_dir,
                options=item.options,
                output_extension=item.output_extension,
                precompiled_header=attached,
            )
            index[key] = group
            groups.append(group)
        group.sources.append(item.source)

    for group in groups:
        group.unity = unity.allows(group.kind) and len(group.sources) > 1
    return groups


__all__ = ["ActionGroup", "PrecompiledHeader", "UnityPolicy", "batch", "find_precompiled_header"]
