"""Content fingerprints deciding whether a project's graph file is stale."""
from __future__ import annotations

from pathlib import Path
import hashlib

_CHUNK_SIZE = 1 << 16


def compute_fingerprint(project_path: Path, platform: str, config: str) -> str:
    """Return the first-line marker for ``project_path`` at ``config``/``platform``.

    The leading ``;`` makes the line a comment for the executor.
    Raises :class:`OSError` when the project cannot be read.
    """

    digest = hashlib.md5()
    with Path(project_path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return f";{project_path}_{platform}_{config}_{digest.hexdigest()}"


def read_stored_fingerprint(graph_file: Path) -> str | None:
    try:
        with Path(graph_file).open("r", encoding="utf-8", errors="replace") as handle:
            first_line = handle.readline()
    except OSError:
        return None
    return first_line.rstrip("\r\n") or None


def should_regenerate(
    project_path: Path,
    platform: str,
    config: str,
    previous_graph_file: Path,
    *,
    force: bool = False,
) -> bool:
    """Return ``False`` only when the stored fingerprint matches a fresh one."""

    if force:
        return True
    try:
        fingerprint = compute_fingerprint(project_path, platform, config)
    except OSError:
        return True
    stored = read_stored_fingerprint(previous_graph_file)
    return stored is None or stored != fingerprint


__all__ = ["compute_fingerprint", "read_stored_fingerprint", "should_regenerate"]
