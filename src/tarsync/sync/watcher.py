"""Change source: watches a directory and reports trigger events.

This module provides:
- ChangeSource: Protocol the synchronizer subscribes to
- FileWatcher: Default change source using watchdog
- Settling: Events for a path are held until that path has been quiet for
  settle_s seconds, so a file being written triggers once it is finished
  without holding back events for other paths

Watcher options (passed through verbatim from the synchronizer):
    recursive: Watch subdirectories (default True)
    polling: Use a polling observer instead of native events (default False)
    poll_interval_s: Polling interval when polling is set (default 1.0)
    settle_s: Quiet period before an event is reported (default 0.25)
    ignore_patterns: gitignore-style patterns that never trigger
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from tarsync.core.ignore import IGNORE_FILE_NAME, IgnorePatterns
from tarsync.core.types import ConfigError, TriggerEvent, expand_events

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from tarsync.core.types import EventCallback

logger = logging.getLogger(__name__)

WATCHER_OPTIONS = frozenset({"recursive", "polling", "poll_interval_s", "settle_s", "ignore_patterns"})

DEFAULT_SETTLE_S = 0.25
DEFAULT_POLL_INTERVAL_S = 1.0


class ChangeSource(Protocol):
    """Reports changes under a watched directory."""

    def subscribe(self, events: Iterable[TriggerEvent], callback: EventCallback) -> None:
        """Start reporting events of the given kinds to callback."""
        ...

    def unsubscribe(self) -> None:
        """Stop reporting events and release OS resources."""
        ...


@dataclass
class PendingChange:
    """A change held back until its path settles."""

    path: Path
    event: TriggerEvent
    timestamp: float = field(default_factory=time.monotonic)


def merge_events(previous: TriggerEvent, current: TriggerEvent) -> TriggerEvent:
    """Combine two events seen for the same path within one settle window."""
    # A file created then written is still a creation
    if previous is TriggerEvent.ADD and current is TriggerEvent.CHANGE:
        return previous
    return current


class SettlingEventHandler(FileSystemEventHandler):
    """Translates watchdog events into trigger events, holding them until settled."""

    def __init__(
        self,
        base_path: Path,
        events: Iterable[TriggerEvent],
        callback: EventCallback,
        settle_s: float = DEFAULT_SETTLE_S,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            base_path: Watched directory.
            events: Event kinds to report.
            callback: Function(event, path) called for each settled event.
            settle_s: Quiet period before an event is reported (0 reports immediately).
            ignore_patterns: Paths that never trigger.
        """
        super().__init__()
        self._base_path = base_path
        self._events = expand_events(set(events))
        self._callback = callback
        self._settle_s = settle_s
        self._ignore = ignore_patterns or IgnorePatterns()

        # Pending changes keyed by path
        self._pending: dict[str, PendingChange] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._active = True

    def _schedule_flush(self, delay: float) -> None:
        """Schedule a flush of settled changes (caller holds the lock)."""
        self._timer = threading.Timer(delay, self._flush_changes)
        self._timer.daemon = True
        self._timer.start()

    def _flush_changes(self) -> None:
        """Report changes whose path has been quiet for settle_s."""
        with self._lock:
            self._timer = None
            if not self._active or not self._pending:
                return

            now = time.monotonic()
            settled = [c for c in self._pending.values() if now - c.timestamp >= self._settle_s]
            for change in settled:
                del self._pending[str(change.path)]

            # Paths still being written keep their own deadline
            if self._pending:
                next_due = min(c.timestamp for c in self._pending.values()) + self._settle_s
                self._schedule_flush(max(next_due - now, 0.0))

        # Call callback outside lock
        for change in settled:
            self._emit(change.event, change.path)

    def _emit(self, event: TriggerEvent, path: Path) -> None:
        """Invoke the callback; failures never reach the observer thread."""
        if not self._active:
            return
        logger.debug("Change event %s %s", event.value, path)
        try:
            self._callback(event, path)
        except Exception:
            logger.exception("Change handler failed for %s %s", event.value, path)

    def _record(self, event: TriggerEvent, path: Path) -> None:
        """Queue one translated event, subject to filtering and settling."""
        if event not in self._events:
            return
        if self._ignore.should_ignore(path, self._base_path):
            return

        if self._settle_s <= 0:
            self._emit(event, path)
            return

        with self._lock:
            if not self._active:
                return
            key = str(path)
            previous = self._pending.get(key)
            if previous is not None:
                event = merge_events(previous.event, event)
            self._pending[key] = PendingChange(path=path, event=event)
            if self._timer is None:
                self._schedule_flush(self._settle_s)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        kind = TriggerEvent.ADD_DIR if isinstance(event, DirCreatedEvent) else TriggerEvent.ADD
        self._record(kind, _src_path(event))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        # Directory mtime changes duplicate the events of their children
        if isinstance(event, FileModifiedEvent):
            self._record(TriggerEvent.CHANGE, _src_path(event))

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        kind = TriggerEvent.UNLINK_DIR if isinstance(event, DirDeletedEvent) else TriggerEvent.UNLINK
        if isinstance(event, FileDeletedEvent | DirDeletedEvent):
            self._record(kind, _src_path(event))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event as a removal plus a creation."""
        if not isinstance(event, FileMovedEvent | DirMovedEvent):
            return
        is_dir = isinstance(event, DirMovedEvent)
        self._record(TriggerEvent.UNLINK_DIR if is_dir else TriggerEvent.UNLINK, _src_path(event))

        dest = event.dest_path
        if isinstance(dest, bytes):
            dest = dest.decode("utf-8", errors="replace")
        dest_path = Path(dest)
        if dest_path.is_relative_to(self._base_path):
            self._record(TriggerEvent.ADD_DIR if is_dir else TriggerEvent.ADD, dest_path)

    def stop(self) -> None:
        """Cancel pending timers and drop unreported changes."""
        with self._lock:
            self._active = False
            self._pending.clear()
            if self._timer:
                self._timer.cancel()
                self._timer = None


def _src_path(event: FileSystemEvent) -> Path:
    src_path = event.src_path
    if isinstance(src_path, bytes):
        src_path = src_path.decode("utf-8", errors="replace")
    return Path(src_path)


def validate_options(options: dict[str, Any]) -> None:
    """Check watcher options.

    Raises:
        ConfigError: On unknown or invalid options.
    """
    unknown = set(options) - WATCHER_OPTIONS
    if unknown:
        raise ConfigError(f"Unknown watcher options: {', '.join(sorted(unknown))}")
    for name in ("settle_s", "poll_interval_s"):
        if name in options and float(options[name]) < 0:
            raise ConfigError(f"Watcher option '{name}' must not be negative")


class FileWatcher:
    """Watches a directory with watchdog and reports trigger events.

    Paths passed as exclude (the archive and its temporary file) never
    trigger, so an archive written inside the watched tree cannot cause
    an endless archive loop.
    """

    def __init__(
        self,
        watch_path: Path,
        options: dict[str, Any] | None = None,
        exclude: Iterable[Path] = (),
    ) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch.
            options: Watcher options (see module docstring).
            exclude: Absolute paths that never trigger.
        """
        options = dict(options or {})
        validate_options(options)

        self._watch_path = Path(watch_path).resolve()
        self._recursive = bool(options.get("recursive", True))
        self._polling = bool(options.get("polling", False))
        self._poll_interval_s = float(options.get("poll_interval_s", DEFAULT_POLL_INTERVAL_S))
        self._settle_s = float(options.get("settle_s", DEFAULT_SETTLE_S))

        self._ignore = IgnorePatterns(options.get("ignore_patterns"), exact_paths=exclude)
        self._ignore.load_from_file(self._watch_path / IGNORE_FILE_NAME)

        self._handler: SettlingEventHandler | None = None
        self._observer: BaseObserver | None = None

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._observer is not None

    def subscribe(self, events: Iterable[TriggerEvent], callback: EventCallback) -> None:
        """Start watching and report events of the given kinds.

        Raises:
            ValueError: If the watch path is not a directory.
        """
        if self._observer is not None:
            return
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {self._watch_path}")

        self._handler = SettlingEventHandler(
            base_path=self._watch_path,
            events=events,
            callback=callback,
            settle_s=self._settle_s,
            ignore_patterns=self._ignore,
        )
        observer: BaseObserver
        if self._polling:
            observer = PollingObserver(timeout=self._poll_interval_s)
        else:
            observer = Observer()
        observer.schedule(self._handler, str(self._watch_path), recursive=self._recursive)
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self._watch_path)

    def unsubscribe(self) -> None:
        """Stop watching for changes."""
        if self._observer is None:
            return

        if self._handler is not None:
            self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        self._handler = None
        logger.info("Stopped watching %s", self._watch_path)
