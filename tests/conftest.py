"""Shared fixtures and fakes for tarsync tests."""

from __future__ import annotations

import os
import tarfile
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import IO, Any

import pytest

from tarsync.archive.packer import TarPacker
from tarsync.core.filesystem import LocalFileSystem
from tarsync.core.types import TriggerEvent
from tarsync.sync.registry import CoordinationRegistry

DUMMY_DATA = "hello world"


class GatedPacker:
    """TarPacker wrapper that can hold runs open and inject failures.

    Each pack() waits on `gate` before packing, so a test can keep a run in
    flight while it fires more requests.
    """

    def __init__(self) -> None:
        self._inner = TarPacker()
        self._cond = threading.Condition()
        self.gate = threading.Event()
        self.gate.set()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.fail_next = 0
        self.snapshots: list[list[str]] = []

    def pack(
        self,
        directory: Path,
        fileobj: IO[bytes],
        options: dict[str, Any] | None = None,
        exclude: Iterable[Path] = (),
    ) -> None:
        with self._cond:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            fail = self.fail_next > 0
            if fail:
                self.fail_next -= 1
            self._cond.notify_all()

        try:
            if not self.gate.wait(timeout=10):
                raise TimeoutError("gate was never opened")
            if fail:
                raise OSError("simulated pack failure")
            with self._cond:
                self.snapshots.append(sorted(os.listdir(directory)))
            self._inner.pack(directory, fileobj, options, exclude)
        finally:
            with self._cond:
                self.active -= 1
                self._cond.notify_all()

    def wait_calls(self, count: int, timeout: float = 5.0) -> bool:
        """Wait until pack() has been entered count times."""
        with self._cond:
            return self._cond.wait_for(lambda: self.calls >= count, timeout)


class FailingFileSystem(LocalFileSystem):
    """LocalFileSystem whose rename can be made to fail."""

    def __init__(self) -> None:
        self.fail_replace = False
        self.replaced: list[tuple[Path, Path]] = []

    def replace(self, src: Path, dst: Path) -> None:
        if self.fail_replace:
            raise OSError("simulated rename failure")
        self.replaced.append((Path(src), Path(dst)))
        super().replace(src, dst)


class FakeChangeSource:
    """Change source driven by the test."""

    def __init__(self) -> None:
        self.events: frozenset[TriggerEvent] = frozenset()
        self.callback: Callable[[TriggerEvent, Path], None] | None = None
        self.subscribed = False
        self.unsubscribe_calls = 0

    def subscribe(self, events: Iterable[TriggerEvent], callback: Callable[[TriggerEvent, Path], None]) -> None:
        self.events = frozenset(events)
        self.callback = callback
        self.subscribed = True

    def unsubscribe(self) -> None:
        self.subscribed = False
        self.unsubscribe_calls += 1

    def emit(self, event: TriggerEvent = TriggerEvent.ADD, path: Path | None = None) -> bool:
        """Deliver an event if subscribed to it; returns whether it was delivered."""
        if not self.subscribed or self.callback is None or event not in self.events:
            return False
        self.callback(event, path or Path("changed"))
        return True


def archive_members(archive: Path) -> dict[str, bytes]:
    """Read an archive's regular files into a name -> content dict."""
    contents: dict[str, bytes] = {}
    with tarfile.open(archive, "r:*") as tar:
        for member in tar.getmembers():
            if member.isfile():
                f = tar.extractfile(member)
                assert f is not None
                contents[member.name] = f.read()
    return contents


def create_dummy_file(directory: Path, name: str, data: str = DUMMY_DATA) -> Path:
    """Create a file (and its parent directories) with dummy content."""
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data)
    return path


@pytest.fixture
def registry() -> CoordinationRegistry:
    """Isolated coordination registry (not the process-wide one)."""
    return CoordinationRegistry()


@pytest.fixture
def gated_packer() -> GatedPacker:
    """Packer that can hold runs in flight."""
    return GatedPacker()


@pytest.fixture
def change_source() -> FakeChangeSource:
    """Test-driven change source."""
    return FakeChangeSource()


@pytest.fixture
def watch_dir(tmp_path: Path) -> Path:
    """Empty directory to watch."""
    path = tmp_path / "test"
    path.mkdir()
    return path


@pytest.fixture
def read_archive() -> Callable[[Path], dict[str, bytes]]:
    """Archive reader helper."""
    return archive_members


@pytest.fixture
def make_file() -> Callable[..., Path]:
    """Dummy file helper."""
    return create_dummy_file
