"""Archive writer: packs a directory into a temporary archive file.

The archive is always written to "<destination>~" so the canonical archive
is never observed half-written; promotion is the Publisher's job.
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tarsync.archive.packer import TarPacker
from tarsync.core.config import TEMP_SUFFIX
from tarsync.core.filesystem import LocalFileSystem
from tarsync.core.types import ArchiveWriteError, WriteResult

if TYPE_CHECKING:
    from tarsync.archive.packer import Packer
    from tarsync.core.filesystem import FileSystem

logger = logging.getLogger(__name__)


def temp_path_for(destination: Path) -> Path:
    """Get the temporary path used while writing destination."""
    return Path(f"{destination}{TEMP_SUFFIX}")


class ArchiveWriter:
    """Writes directory archives to temporary files."""

    def __init__(
        self,
        packer: Packer | None = None,
        filesystem: FileSystem | None = None,
    ) -> None:
        """Initialize the writer.

        Args:
            packer: Packer collaborator (defaults to TarPacker).
            filesystem: Filesystem to write through (defaults to local disk).
        """
        self._packer = packer or TarPacker()
        self._fs = filesystem or LocalFileSystem()

    def write(
        self,
        watch_path: Path,
        destination: Path,
        packer_options: dict[str, Any] | None = None,
    ) -> WriteResult:
        """Pack watch_path into the temporary file for destination.

        A stale temporary file left by a crashed run is overwritten. On
        failure the partial temporary file is removed (best effort) and the
        error is returned, never raised.

        Args:
            watch_path: Directory to archive.
            destination: Canonical archive path.
            packer_options: Options passed through to the packer.

        Returns:
            WriteResult referencing the temporary file, with error set on failure.
        """
        temp_path = temp_path_for(destination)
        exclude = (Path(destination), temp_path)

        try:
            with self._fs.open_write(temp_path) as f:
                self._packer.pack(Path(watch_path), f, packer_options or {}, exclude=exclude)
                size = f.tell()
        except Exception as e:
            logger.debug("Archive write to %s failed: %s", temp_path, e)
            with contextlib.suppress(OSError):
                if self._fs.exists(temp_path):
                    self._fs.remove(temp_path)
            error = ArchiveWriteError(f"Failed to archive {watch_path}: {e}")
            error.__cause__ = e
            return WriteResult(temp_path=temp_path, error=error)

        logger.debug("Wrote %d bytes to %s", size, temp_path)
        return WriteResult(temp_path=temp_path, size=size)
