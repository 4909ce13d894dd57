"""Tests for the tar packer and unpacker."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from tarsync.archive.packer import TarPacker, unpack, validate_options
from tarsync.core.types import ConfigError

DUMMY_DATA = "hello world"


def pack_to_bytes(directory: Path, options: dict | None = None, exclude: tuple[Path, ...] = ()) -> bytes:
    buffer = io.BytesIO()
    TarPacker().pack(directory, buffer, options, exclude=exclude)
    return buffer.getvalue()


def member_names(data: bytes) -> list[str]:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
        return tar.getnames()


class TestTarPacker:
    """Tests for TarPacker."""

    def test_round_trip(self, watch_dir: Path, tmp_path: Path) -> None:
        """Unpacking should reproduce file a with its exact content."""
        (watch_dir / "a").write_text(DUMMY_DATA)

        data = pack_to_bytes(watch_dir)
        extract_dir = tmp_path / "extract"
        unpack(io.BytesIO(data), extract_dir)

        assert (extract_dir / "a").read_bytes() == DUMMY_DATA.encode()

    def test_empty_directory(self, watch_dir: Path) -> None:
        """An empty directory should produce a valid, empty archive."""
        data = pack_to_bytes(watch_dir)
        assert data
        assert member_names(data) == []

    def test_nested_entries_relative_and_sorted(
        self, watch_dir: Path, make_file: Callable[..., Path]
    ) -> None:
        """Entries should be relative to the directory, in sorted order."""
        make_file(watch_dir, "b.txt")
        make_file(watch_dir, "a.txt")
        make_file(watch_dir, "sub/c.txt")
        (watch_dir / "empty").mkdir()

        names = member_names(pack_to_bytes(watch_dir))
        assert names == ["a.txt", "b.txt", "empty", "sub", "sub/c.txt"]

    def test_root_name_prefix(self, watch_dir: Path, make_file: Callable[..., Path]) -> None:
        """root_name should prefix every entry."""
        make_file(watch_dir, "a.txt")
        names = member_names(pack_to_bytes(watch_dir, {"root_name": "snapshot"}))
        assert names == ["snapshot/a.txt"]

    def test_ignore_patterns(self, watch_dir: Path, make_file: Callable[..., Path]) -> None:
        """Ignored files and directories should be left out."""
        make_file(watch_dir, "keep.txt")
        make_file(watch_dir, "debug.log")
        make_file(watch_dir, "cache/blob.bin")

        names = member_names(pack_to_bytes(watch_dir, {"ignore_patterns": ["*.log", "cache/"]}))
        assert names == ["keep.txt"]

    def test_exclude_paths(self, watch_dir: Path, make_file: Callable[..., Path]) -> None:
        """Excluded paths (the archive itself) should never be packed."""
        make_file(watch_dir, "keep.txt")
        archive = make_file(watch_dir, "self.tar")

        names = member_names(pack_to_bytes(watch_dir, exclude=(archive,)))
        assert names == ["keep.txt"]

    @pytest.mark.parametrize("compression", ["gz", "bz2", "xz"])
    def test_compression(
        self, compression: str, watch_dir: Path, tmp_path: Path, make_file: Callable[..., Path]
    ) -> None:
        """Compressed archives should unpack transparently."""
        make_file(watch_dir, "a.txt")
        data = pack_to_bytes(watch_dir, {"compression": compression})

        extract_dir = tmp_path / "extract"
        names = unpack(io.BytesIO(data), extract_dir)
        assert names == ["a.txt"]
        assert (extract_dir / "a.txt").read_text() == DUMMY_DATA

    def test_symlink_kept_as_link(self, watch_dir: Path, make_file: Callable[..., Path]) -> None:
        """Symlinks should be stored as links unless dereference is set."""
        make_file(watch_dir, "target.txt")
        (watch_dir / "link.txt").symlink_to("target.txt")

        with tarfile.open(fileobj=io.BytesIO(pack_to_bytes(watch_dir)), mode="r:") as tar:
            assert tar.getmember("link.txt").issym()

        data = pack_to_bytes(watch_dir, {"dereference": True})
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            assert tar.getmember("link.txt").isfile()

    def test_symlinked_directory_kept_as_link(
        self, watch_dir: Path, make_file: Callable[..., Path]
    ) -> None:
        """A symlink to a directory is stored as a link, not skipped or followed."""
        make_file(watch_dir, "real/f.txt")
        (watch_dir / "link").symlink_to("real", target_is_directory=True)
        (watch_dir / "flink").symlink_to("real/f.txt")

        with tarfile.open(fileobj=io.BytesIO(pack_to_bytes(watch_dir)), mode="r:") as tar:
            assert tar.getnames() == ["flink", "link", "real", "real/f.txt"]
            link = tar.getmember("link")
            assert link.issym()
            assert link.linkname == "real"

    def test_dereference_follows_directory_links(
        self, watch_dir: Path, make_file: Callable[..., Path]
    ) -> None:
        """With dereference, a linked directory is archived as a copy."""
        make_file(watch_dir, "real/f.txt")
        (watch_dir / "link").symlink_to("real", target_is_directory=True)

        names = member_names(pack_to_bytes(watch_dir, {"dereference": True}))
        assert names == ["link", "link/f.txt", "real", "real/f.txt"]

    def test_dereference_stops_at_symlink_loop(
        self, watch_dir: Path, make_file: Callable[..., Path]
    ) -> None:
        """A link back to an ancestor directory is not followed."""
        make_file(watch_dir, "sub/f.txt")
        (watch_dir / "sub" / "up").symlink_to("..", target_is_directory=True)

        names = member_names(pack_to_bytes(watch_dir, {"dereference": True}))
        assert names == ["sub", "sub/f.txt"]

    def test_ignore_file_applies(self, watch_dir: Path, make_file: Callable[..., Path]) -> None:
        """Patterns from .tarsyncignore should be left out of the archive."""
        make_file(watch_dir, ".tarsyncignore", "*.log\n")
        make_file(watch_dir, "keep.txt")
        make_file(watch_dir, "debug.log")

        names = member_names(pack_to_bytes(watch_dir))
        assert names == [".tarsyncignore", "keep.txt"]

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        """Packing a directory that does not exist should fail."""
        with pytest.raises(OSError):
            pack_to_bytes(tmp_path / "missing")


class TestValidateOptions:
    """Tests for packer option validation."""

    def test_unknown_option(self) -> None:
        """Should reject unknown options."""
        with pytest.raises(ConfigError, match="Unknown packer options"):
            validate_options({"gzip": True})

    def test_bad_compression(self) -> None:
        """Should reject unsupported compression."""
        with pytest.raises(ConfigError, match="Unsupported compression"):
            validate_options({"compression": "zstd"})

    def test_valid(self) -> None:
        """Should accept known options."""
        validate_options({"compression": "", "dereference": True, "root_name": "x"})


class TestUnpack:
    """Tests for unpack."""

    def test_rejects_escaping_member(self, tmp_path: Path) -> None:
        """Members escaping the destination should be refused."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo("../evil.txt")
            payload = b"x"
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))
        buffer.seek(0)

        with pytest.raises(tarfile.FilterError):
            unpack(buffer, tmp_path / "dest")
        assert not (tmp_path / "evil.txt").exists()
