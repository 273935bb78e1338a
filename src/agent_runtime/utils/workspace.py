"""
Workspace boundary checks.

A workspace is the set of filesystem roots generated scripts may run in.
Paths are compared after symlink resolution so a link cannot escape a root.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


def _resolve(path: str | Path) -> Path:
    return Path(path).expanduser().resolve(strict=False)


class WorkspaceContext:
    """Ordered collection of permitted workspace roots."""

    def __init__(self, directories: Iterable[str | Path] = ()) -> None:
        self._directories: list[Path] = []
        for directory in directories:
            self.add_directory(directory)

    def add_directory(self, directory: str | Path) -> None:
        """Add a root. Raises ``ValueError`` if it is not an existing directory."""
        resolved = _resolve(directory)
        if not resolved.exists():
            raise ValueError(f"Directory not found: {directory}")
        if not resolved.is_dir():
            raise ValueError(f"Not a directory: {directory}")
        if resolved not in self._directories:
            self._directories.append(resolved)

    def get_directories(self) -> list[Path]:
        return list(self._directories)

    def is_path_within_workspace(self, path: str | Path) -> bool:
        """True if ``path`` equals or lies below one of the roots."""
        candidate = _resolve(path)
        return any(candidate == root or candidate.is_relative_to(root) for root in self._directories)
