"""Text encoding for FASTBuild configuration (``.bff``) files."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

Value = Union[str, bool, int, Sequence[str]]

INDENT = "\t"


def quote(value: str) -> str:
    """Single-quote ``value`` using ``^`` as the escape character.

    ``$`` is left alone so ``$Variable$`` references keep working.
    """

    return "'" + value.replace("^", "^^").replace("'", "^'") + "'"


def _render_value(value: Value, depth: int) -> List[str]:
    if isinstance(value, bool):
        return ["true" if value else "false"]
    if isinstance(value, int):
        return [str(value)]
    if isinstance(value, str):
        return [quote(value)]
    entries = list(value)
    if not entries:
        return ["{}"]
    if len(entries) == 1:
        return [f"{{ {quote(entries[0])} }}"]
    pad = INDENT * (depth + 1)
    lines = ["", f"{INDENT * depth}{{"]
    last = len(entries) - 1
    for position, entry in enumerate(entries):
        lines.append(f"{pad}{quote(entry)}{',' if position < last else ''}")
    lines.append(f"{INDENT * depth}}}")
    return lines


def render_assignment(name: str, value: Value, depth: int = 0) -> List[str]:
    rendered = _render_value(value, depth)
    head = f"{INDENT * depth}.{name} ="
    if rendered[0] == "":
        return [head, *rendered[1:]]
    return [f"{head} {rendered[0]}", *rendered[1:]]


@dataclass(slots=True)
class BffNode:
    """One function call such as ``ObjectList('action_0') { ... }``."""

    function: str
    name: str | None = None
    properties: List[Tuple[str, Value]] = field(default_factory=list)

    def set(self, name: str, value: Value) -> "BffNode":
        self.properties.append((name, value))
        return self

    def get(self, name: str) -> Value | None:
        for key, value in self.properties:
            if key == name:
                return value
        return None

    def render(self) -> List[str]:
        header = self.function if self.name is None else f"{self.function}({quote(self.name)})"
        lines = [header, "{"]
        for key, value in self.properties:
            lines.extend(render_assignment(key, value, depth=1))
        lines.append("}")
        return lines


@dataclass(slots=True)
class BffDocument:
    header: str = ""
    variables: List[Tuple[str, Value]] = field(default_factory=list)
    nodes: List[BffNode] = field(default_factory=list)

    def variable(self, name: str, value: Value) -> None:
        self.variables.append((name, value))

    def add(self, node: BffNode) -> BffNode:
        self.nodes.append(node)
        return node

    def find(self, function: str, name: str | None = None) -> BffNode | None:
        for node in self.nodes:
            if node.function == function and (name is None or node.name == name):
                return node
        return None

    def render(self) -> str:
        lines: List[str] = []
        if self.header:
            lines.extend([self.header, ""])
        for name, value in self.variables:
            lines.extend(render_assignment(name, value))
        if self.variables:
            lines.append("")
        for node in self.nodes:
            lines.extend(node.render())
            lines.append("")
        return "\n".join(lines)


__all__ = ["BffDocument", "BffNode", "Value", "quote", "render_assignment"]
