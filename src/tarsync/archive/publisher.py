"""Publisher: atomically promotes a temporary archive to its final path."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from tarsync.core.filesystem import LocalFileSystem
from tarsync.core.types import PublishError, PublishResult

if TYPE_CHECKING:
    from tarsync.core.filesystem import FileSystem

logger = logging.getLogger(__name__)


class Publisher:
    """Renames finished archives into place."""

    def __init__(self, filesystem: FileSystem | None = None) -> None:
        self._fs = filesystem or LocalFileSystem()

    def publish(self, temp_path: Path, destination: Path) -> PublishResult:
        """Atomically replace destination with temp_path.

        Readers of destination see either the previous archive or the new
        one, never a partial file. A missing temporary file is a failure,
        not a no-op. On failure the previous archive is left untouched.

        Args:
            temp_path: Fully written temporary archive.
            destination: Canonical archive path.

        Returns:
            PublishResult, with error set on failure.
        """
        destination = Path(destination)

        try:
            exists = self._fs.exists(temp_path)
        except OSError as e:
            return PublishResult(archive_path=destination, error=_publish_error(temp_path, e))

        if not exists:
            return PublishResult(
                archive_path=destination,
                error=PublishError(f"Temporary archive {temp_path} does not exist"),
            )

        try:
            self._fs.replace(Path(temp_path), destination)
        except OSError as e:
            return PublishResult(archive_path=destination, error=_publish_error(temp_path, e))

        logger.debug("Published %s -> %s", temp_path, destination)
        return PublishResult(archive_path=destination)


def _publish_error(temp_path: Path, cause: OSError) -> PublishError:
    error = PublishError(f"Failed to publish {temp_path}: {cause}")
    error.__cause__ = cause
    return error
