"""Filesystem operations used by the archive pipeline.

The writer, publisher and synchronizer go through a FileSystem object
instead of calling os directly, so tests can inject failures.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO, Protocol


class FileSystem(Protocol):
    """Filesystem operations needed by tarsync."""

    def open_write(self, path: Path) -> BinaryIO:
        """Open a file for binary writing, truncating it."""
        ...

    def exists(self, path: Path) -> bool:
        """Check whether a path exists."""
        ...

    def replace(self, src: Path, dst: Path) -> None:
        """Atomically rename src over dst."""
        ...

    def listdir(self, path: Path) -> list[str]:
        """List directory entries."""
        ...

    def remove(self, path: Path) -> None:
        """Remove a file."""
        ...


class LocalFileSystem:
    """FileSystem backed by the local disk."""

    def open_write(self, path: Path) -> BinaryIO:
        return open(path, "wb")

    def exists(self, path: Path) -> bool:
        return os.path.exists(path)

    def replace(self, src: Path, dst: Path) -> None:
        # os.replace overwrites dst atomically on POSIX and Windows
        os.replace(src, dst)

    def listdir(self, path: Path) -> list[str]:
        return os.listdir(path)

    def remove(self, path: Path) -> None:
        os.remove(path)
