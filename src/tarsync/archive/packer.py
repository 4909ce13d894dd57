"""Tar packer and unpacker.

This module provides:
- Packer: Protocol for serializing a directory into a byte stream
- TarPacker: Default packer writing a (optionally compressed) tar stream
- unpack: Extract an archive stream into a directory

Packer options (passed through verbatim from the synchronizer):
    compression: "", "gz", "bz2" or "xz" (default "")
    dereference: Archive symlink targets instead of the links (default False)
    ignore_patterns: gitignore-style patterns left out of the archive (added
        to those of the .tarsyncignore file in the directory)
    root_name: Prefix for every entry name (default "", entries relative)
"""

from __future__ import annotations

import logging
import os
import tarfile
from collections.abc import Iterable
from pathlib import Path
from typing import IO, Any, Protocol

from tarsync.core.ignore import IGNORE_FILE_NAME, IgnorePatterns
from tarsync.core.types import ConfigError

logger = logging.getLogger(__name__)

COMPRESSIONS = ("", "gz", "bz2", "xz")

PACKER_OPTIONS = frozenset({"compression", "dereference", "ignore_patterns", "root_name"})


class Packer(Protocol):
    """Serializes a directory into a writable binary stream."""

    def pack(
        self,
        directory: Path,
        fileobj: IO[bytes],
        options: dict[str, Any] | None = None,
        exclude: Iterable[Path] = (),
    ) -> None:
        """Write the archive of directory into fileobj.

        Args:
            directory: Directory to archive.
            fileobj: Binary stream to write to (left open).
            options: Packer-specific options.
            exclude: Absolute paths never included (e.g. the archive itself).
        """
        ...


def validate_options(options: dict[str, Any]) -> None:
    """Check packer options.

    Raises:
        ConfigError: On unknown options or an unsupported compression.
    """
    unknown = set(options) - PACKER_OPTIONS
    if unknown:
        raise ConfigError(f"Unknown packer options: {', '.join(sorted(unknown))}")
    compression = options.get("compression", "") or ""
    if compression not in COMPRESSIONS:
        raise ConfigError(
            f"Unsupported compression {compression!r} (expected one of: gz, bz2, xz)"
        )


class TarPacker:
    """Packs a directory into a tar stream.

    Entries are added in sorted order so that packing an unchanged
    directory twice yields the same member list. Patterns from the
    directory's .tarsyncignore file are left out, the same as for
    triggering.
    """

    def pack(
        self,
        directory: Path,
        fileobj: IO[bytes],
        options: dict[str, Any] | None = None,
        exclude: Iterable[Path] = (),
    ) -> None:
        options = dict(options or {})
        validate_options(options)

        directory = Path(directory)
        compression = options.get("compression", "") or ""
        dereference = bool(options.get("dereference", False))
        root_name = str(options.get("root_name", "") or "").strip("/")
        ignore = IgnorePatterns(options.get("ignore_patterns"), exact_paths=exclude)
        ignore.load_from_file(directory / IGNORE_FILE_NAME)

        def _on_walk_error(err: OSError) -> None:
            # A subdirectory removed mid-walk is not an error; anything else is
            if isinstance(err, FileNotFoundError) and Path(err.filename or "") != directory:
                logger.debug("Skipping vanished directory %s", err.filename)
                return
            raise err

        # Directory identities from the root down to each walked directory
        lineage: dict[Path, frozenset[tuple[int, int]]] = {}

        count = 0
        with tarfile.open(
            fileobj=fileobj,
            mode=f"w|{compression}",
            dereference=dereference,
            format=tarfile.PAX_FORMAT,
        ) as tar:
            for dirpath, dirnames, filenames in os.walk(
                directory, onerror=_on_walk_error, followlinks=dereference
            ):
                current = Path(dirpath)
                entries = [f for f in filenames if not ignore.should_ignore(current / f, directory)]
                subdirs: list[str] = []
                for name in dirnames:
                    path = current / name
                    if ignore.should_ignore(path, directory):
                        continue
                    if not dereference and path.is_symlink():
                        # Stored as a link entry, never descended into
                        entries.append(name)
                    else:
                        subdirs.append(name)

                if dereference:
                    if current == directory:
                        lineage[current] = frozenset({_identity(current)})
                    subdirs = self._prune_loops(current, subdirs, lineage)

                dirnames[:] = sorted(subdirs)
                if current != directory:
                    count += self._add(tar, current, directory, root_name)
                for name in sorted(entries):
                    count += self._add(tar, current / name, directory, root_name)

        logger.debug("Packed %d entries from %s", count, directory)

    def _prune_loops(
        self,
        current: Path,
        subdirs: list[str],
        lineage: dict[Path, frozenset[tuple[int, int]]],
    ) -> list[str]:
        """Drop subdirectories that lead back to one of their ancestors."""
        ancestors = lineage.pop(current, frozenset())
        kept: list[str] = []
        for name in subdirs:
            path = current / name
            try:
                identity = _identity(path)
            except OSError:
                logger.debug("Skipping unreadable directory %s", path)
                continue
            if identity in ancestors:
                logger.warning("Skipping symlink loop at %s", path)
                continue
            lineage[path] = ancestors | {identity}
            kept.append(name)
        return kept

    def _add(self, tar: tarfile.TarFile, path: Path, base: Path, root_name: str) -> int:
        """Add one entry; returns 1 if added, 0 if it vanished meanwhile."""
        arcname = path.relative_to(base).as_posix()
        if root_name:
            arcname = f"{root_name}/{arcname}"
        try:
            tar.add(path, arcname=arcname, recursive=False)
        except FileNotFoundError:
            # Removed between listing and reading; the unlink event triggers a rerun
            logger.debug("Skipping vanished entry %s", path)
            return 0
        return 1


def _identity(path: Path) -> tuple[int, int]:
    st = path.stat()
    return st.st_dev, st.st_ino


def unpack(fileobj: IO[bytes], destination: Path) -> list[str]:
    """Extract an archive stream into destination.

    Compression is detected automatically. Members with absolute paths or
    links escaping destination are rejected by tarfile's data filter.

    Args:
        fileobj: Readable binary stream positioned at the archive start.
        destination: Directory to extract into (created if missing).

    Returns:
        Names of the extracted members.
    """
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)

    names: list[str] = []
    with tarfile.open(fileobj=fileobj, mode="r|*") as tar:
        for member in tar:
            tar.extract(member, destination, filter="data")
            names.append(member.name)

    logger.debug("Unpacked %d entries into %s", len(names), destination)
    return names
