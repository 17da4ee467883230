"""Exception types raised while resolving and generating build graphs."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence


class BffgenError(RuntimeError):
    """Base class for all generator errors."""


class ProjectLoadError(BffgenError):
    """Raised when a project or solution document is missing or unparsable."""

    def __init__(self, path: Path | str, reason: str):
        super().__init__(f"Failed to parse project file {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class ProjectNotFoundError(BffgenError):
    """Raised when a project identifier cannot be resolved."""


class CircularDependencyError(BffgenError):
    """Raised when project dependencies contain a cycle."""

    def __init__(self, members: Sequence[str]):
        cycle = " -> ".join(members)
        super().__init__(f"Circular dependency detected: {cycle}")
        self.members = list(members)


class EvaluationError(BffgenError):
    """Raised when a project lacks a property required to generate its graph."""

    def __init__(self, project: Path | str, message: str):
        super().__init__(f"{Path(project).name}: {message}")
        self.project = Path(project)


__all__ = [
    "BffgenError",
    "CircularDependencyError",
    "EvaluationError",
    "ProjectLoadError",
    "ProjectNotFoundError",
]
