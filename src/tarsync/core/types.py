"""Shared types for tarsync.

This module provides:
- TarSyncError and subclasses: Exception taxonomy
- TriggerEvent: Change kinds reported by a change source
- KeyState: Per-directory coordination state
- WriteResult, PublishResult, ArchiveOutcome: Pipeline results
- CoordinatorStats: Coordinator counters
- Type aliases for callbacks
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path


class TarSyncError(Exception):
    """Base exception for tarsync errors."""


class SourceError(TarSyncError):
    """The watched directory cannot be listed or read."""


class ArchiveWriteError(TarSyncError):
    """Packing the directory into the temporary archive failed."""


class PublishError(TarSyncError):
    """Promoting the temporary archive to its final path failed."""


class StateError(TarSyncError):
    """Illegal synchronizer lifecycle transition."""


class ConfigError(TarSyncError):
    """Invalid configuration."""


class TriggerEvent(str, Enum):
    """Kinds of change a change source reports.

    Values match the names used in config files and on the command line.
    """

    ADD = "add"
    ADD_DIR = "addDir"
    CHANGE = "change"
    UNLINK = "unlink"
    UNLINK_DIR = "unlinkDir"
    ALL = "all"

    @classmethod
    def parse(cls, value: str | TriggerEvent) -> TriggerEvent:
        """Parse an event name, raising ConfigError on unknown names."""
        if isinstance(value, TriggerEvent):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(e.value for e in cls)
            raise ConfigError(f"Unknown trigger event {value!r} (expected one of: {valid})") from None


DEFAULT_TRIGGER_EVENTS = frozenset({TriggerEvent.ADD, TriggerEvent.CHANGE, TriggerEvent.UNLINK})

# Every concrete kind, what "all" expands to
CONCRETE_EVENTS = frozenset(e for e in TriggerEvent if e is not TriggerEvent.ALL)


def expand_events(events: set[TriggerEvent] | frozenset[TriggerEvent]) -> frozenset[TriggerEvent]:
    """Expand ALL into the concrete event kinds."""
    if TriggerEvent.ALL in events:
        return CONCRETE_EVENTS
    return frozenset(events)


class KeyState(Enum):
    """Coordination state of one watched directory.

    RUNNING_WITH_PENDING means a request arrived while an archive run was
    in flight and one more run is owed once it completes.
    """

    IDLE = auto()
    RUNNING = auto()
    RUNNING_WITH_PENDING = auto()


@dataclass
class WriteResult:
    """Result of packing a directory into a temporary archive."""

    temp_path: Path
    size: int = 0
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """Check if the write succeeded."""
        return self.error is None


@dataclass
class PublishResult:
    """Result of promoting a temporary archive."""

    archive_path: Path
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """Check if the publish succeeded."""
        return self.error is None


@dataclass
class ArchiveOutcome:
    """A completed archive operation.

    Attributes:
        key: Coordination key (watched directory).
        archive_path: Canonical archive path.
        size: Archive size in bytes.
        started_at: Wall-clock start time.
        finished_at: Wall-clock finish time.
    """

    key: str
    archive_path: Path
    size: int
    started_at: float
    finished_at: float = field(default_factory=time.time)

    @property
    def duration(self) -> float:
        """Get the operation duration in seconds."""
        return self.finished_at - self.started_at


@dataclass
class CoordinatorStats:
    """Counters kept by the trigger coordinator."""

    requests: int = 0
    runs_started: int = 0
    runs_succeeded: int = 0
    runs_failed: int = 0
    requests_coalesced: int = 0
    reruns: int = 0


# Callback type aliases
CompleteCallback = Callable[[ArchiveOutcome], None]
ErrorCallback = Callable[[str, Exception], None]
EventCallback = Callable[[TriggerEvent, Path], None]
