"""Ignore patterns shared by the change source and the packer.

This module provides:
- IgnorePatterns: gitignore-style pattern matching plus exact-path exclusion
- IGNORE_FILE_NAME: Per-directory file of extra patterns
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from pathlib import Path

IGNORE_FILE_NAME = ".tarsyncignore"


class IgnorePatterns:
    """Handles ignore pattern matching for paths under a watched directory.

    Nothing is ignored by default: an archive is a faithful snapshot of the
    directory unless patterns are configured.
    """

    def __init__(
        self,
        patterns: Iterable[str] | None = None,
        exact_paths: Iterable[Path] | None = None,
    ) -> None:
        """Initialize with patterns.

        Args:
            patterns: gitignore-style patterns, relative to the base path.
            exact_paths: Absolute paths that are always ignored.
        """
        self._patterns: list[str] = list(patterns or [])
        self._exact: set[Path] = {Path(p) for p in exact_paths or []}

    @property
    def patterns(self) -> list[str]:
        """Get a copy of the configured patterns."""
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern."""
        self._patterns.append(pattern)

    def add_path(self, path: Path) -> None:
        """Always ignore an exact absolute path."""
        self._exact.add(Path(path))

    def load_from_file(self, path: Path) -> None:
        """Load patterns from an ignore file, if it exists."""
        if path.exists():
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    # Skip comments and empty lines
                    if line and not line.startswith("#"):
                        self._patterns.append(line)

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check if a path should be ignored.

        Args:
            path: Absolute path to check.
            base_path: Watched directory.

        Returns:
            True if the path should be ignored.
        """
        if path in self._exact:
            return True

        try:
            rel_path = path.relative_to(base_path)
        except ValueError:
            return False

        rel_str = str(rel_path).replace("\\", "/")
        if rel_str == ".":
            return False

        for pattern in self._patterns:
            # Directory patterns (ending with /) match the directory and everything below it
            if pattern.endswith("/"):
                pattern = pattern[:-1]
                parts = rel_str.split("/")
                if any(fnmatch.fnmatch("/".join(parts[: i + 1]), pattern) for i in range(len(parts))):
                    return True
            elif "**" in pattern:
                if fnmatch.fnmatch(rel_str, pattern):
                    return True
            elif fnmatch.fnmatch(rel_str, pattern) or fnmatch.fnmatch(path.name, pattern):
                return True

        return False
