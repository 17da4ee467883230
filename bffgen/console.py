"""Console output with a configurable log level."""
from __future__ import annotations

import sys
import threading


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(self, level: str = "info", dry_run: bool = False):
        if level not in self.LEVELS:
            allowed = ", ".join(self.LEVELS)
            raise ValueError(f"Unknown log level '{level}' (allowed: {allowed})")
        self.level_name = level
        self.level = self.LEVELS[level]
        self.dry_run = dry_run
        self._lock = threading.Lock()

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(f"[INFO] {message}")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self._emit(f"[ERROR] {message}", error=True)

    def dry(self, message: str) -> None:
        if self.dry_run:
            self._emit(f"[DRY] {message}")

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self._emit(f"[DEBUG] {message}")

    def stream(self, line: str) -> None:
        """Forward a line of executor output; silenced only at level 'none'."""
        if self.level > self.LEVELS["none"]:
            self._emit(line)

    def _emit(self, text: str, *, error: bool = False) -> None:
        # Worker threads share stdout.
        with self._lock:
            print(text, file=sys.stderr if error else sys.stdout, flush=True)
