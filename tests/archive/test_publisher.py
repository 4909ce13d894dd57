"""Tests for the publisher and the atomic publish guarantee."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from tarsync.archive.publisher import Publisher
from tarsync.archive.writer import ArchiveWriter
from tarsync.core.types import PublishError

from conftest import FailingFileSystem


class TestPublisher:
    """Tests for Publisher."""

    def test_publish_renames_temp(self, tmp_path: Path) -> None:
        """Should move the temp file over the destination."""
        temp = tmp_path / "test.tar~"
        temp.write_bytes(b"new")
        destination = tmp_path / "test.tar"
        destination.write_bytes(b"old")

        result = Publisher().publish(temp, destination)

        assert result.ok
        assert result.archive_path == destination
        assert destination.read_bytes() == b"new"
        assert not temp.exists()

    def test_missing_temp_is_failure(self, tmp_path: Path) -> None:
        """A missing temp file is a failure, not a no-op."""
        destination = tmp_path / "test.tar"
        destination.write_bytes(b"old")

        result = Publisher().publish(tmp_path / "test.tar~", destination)

        assert not result.ok
        assert isinstance(result.error, PublishError)
        assert destination.read_bytes() == b"old"

    def test_rename_failure_keeps_previous(self, tmp_path: Path) -> None:
        """A failed rename should leave the previous archive untouched."""
        fs = FailingFileSystem()
        fs.fail_replace = True
        temp = tmp_path / "test.tar~"
        temp.write_bytes(b"new")
        destination = tmp_path / "test.tar"
        destination.write_bytes(b"old")

        result = Publisher(filesystem=fs).publish(temp, destination)

        assert not result.ok
        assert isinstance(result.error, PublishError)
        assert isinstance(result.error.__cause__, OSError)
        assert destination.read_bytes() == b"old"


class TestAtomicPublish:
    """A reader of the archive only ever sees complete archives."""

    def test_crash_between_write_and_rename(
        self,
        watch_dir: Path,
        tmp_path: Path,
        make_file: Callable[..., Path],
        read_archive: Callable[[Path], dict[str, bytes]],
    ) -> None:
        """The previous archive should be intact if the rename never happens."""
        destination = tmp_path / "test.tar"
        writer = ArchiveWriter()
        publisher = Publisher()

        make_file(watch_dir, "a.txt")
        first = writer.write(watch_dir, destination)
        assert publisher.publish(first.temp_path, destination).ok

        # Second run writes its temp file, then the process "crashes"
        make_file(watch_dir, "b.txt")
        second = writer.write(watch_dir, destination)
        assert second.ok

        assert read_archive(destination) == {"a.txt": b"hello world"}
        assert set(read_archive(second.temp_path)) == {"a.txt", "b.txt"}

        # The next run overwrites the stale temp file and publishes normally
        third = writer.write(watch_dir, destination)
        assert publisher.publish(third.temp_path, destination).ok
        assert set(read_archive(destination)) == {"a.txt", "b.txt"}

    def test_failed_rename_keeps_readable_archive(
        self,
        watch_dir: Path,
        tmp_path: Path,
        make_file: Callable[..., Path],
        read_archive: Callable[[Path], dict[str, bytes]],
    ) -> None:
        """A failed publish should leave the previous archive readable."""
        fs = FailingFileSystem()
        destination = tmp_path / "test.tar"
        writer = ArchiveWriter(filesystem=fs)
        publisher = Publisher(filesystem=fs)

        make_file(watch_dir, "a.txt")
        assert publisher.publish(writer.write(watch_dir, destination).temp_path, destination).ok

        make_file(watch_dir, "b.txt")
        fs.fail_replace = True
        result = publisher.publish(writer.write(watch_dir, destination).temp_path, destination)

        assert not result.ok
        assert read_archive(destination) == {"a.txt": b"hello world"}
