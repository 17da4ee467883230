"""Generate FASTBuild graphs from evaluated native projects and run them."""
from __future__ import annotations

from .errors import (
    BffgenError,
    CircularDependencyError,
    EvaluationError,
    ProjectLoadError,
    ProjectNotFoundError,
)
from .generator import GenerationContext, GenerationResult, Generator

__version__ = "0.1.0"

__all__ = [
    "BffgenError",
    "CircularDependencyError",
    "EvaluationError",
    "GenerationContext",
    "GenerationResult",
    "Generator",
    "ProjectLoadError",
    "ProjectNotFoundError",
]
