"""Synchronizer: keeps one directory's archive up to date.

TarSync wires a change source to the trigger coordinator for one watched
directory:

    start():  archive once (errors raised), then subscribe to changes
    change:   coordinator.request(key), fire and forget
    stop():   unsubscribe, release coordination state (no waiting)

States: CREATED -> STARTED -> STOPPED. A stopped synchronizer cannot be
restarted; create a new one instead.

Caveat: stop() does not wait for a run already in flight. Such a run
still publishes its archive after stop() returns.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tarsync.archive.packer import validate_options as validate_packer_options
from tarsync.archive.publisher import Publisher
from tarsync.archive.writer import ArchiveWriter
from tarsync.core.config import DEFAULT_EXTENSION, SyncConfig, parse_events
from tarsync.core.filesystem import LocalFileSystem
from tarsync.core.types import DEFAULT_TRIGGER_EVENTS, SourceError, StateError
from tarsync.sync.coordinator import TriggerCoordinator
from tarsync.sync.watcher import FileWatcher

if TYPE_CHECKING:
    from tarsync.archive.packer import Packer
    from tarsync.core.filesystem import FileSystem
    from tarsync.core.types import (
        ArchiveOutcome,
        CompleteCallback,
        ErrorCallback,
        TriggerEvent,
    )
    from tarsync.sync.registry import CoordinationRegistry
    from tarsync.sync.watcher import ChangeSource

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Lifecycle state of a synchronizer."""

    CREATED = auto()
    STARTED = auto()
    STOPPED = auto()


class TarSync:
    """Keeps "<output>.<extension>" in step with a watched directory.

    Usage:
        sync = TarSync("workspace")          # archive at workspace.tar
        sync.start()                         # initial archive + watching
        ...
        sync.stop()

    Or as a context manager:
        with TarSync("workspace", extension="tgz",
                     packer_options={"compression": "gz"}):
            ...
    """

    def __init__(
        self,
        path: str | Path,
        output_path: str | Path | None = None,
        trigger_on: Iterable[str | TriggerEvent] = DEFAULT_TRIGGER_EVENTS,
        watcher_options: dict[str, Any] | None = None,
        packer_options: dict[str, Any] | None = None,
        extension: str = DEFAULT_EXTENSION,
        verbose: bool = False,
        *,
        coordinator: TriggerCoordinator | None = None,
        registry: CoordinationRegistry | None = None,
        change_source: ChangeSource | None = None,
        packer: Packer | None = None,
        filesystem: FileSystem | None = None,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            path: Directory to watch.
            output_path: Archive path without extension (defaults to path).
            trigger_on: Event kinds that trigger a new archive.
            watcher_options: Options passed through to the change source.
            packer_options: Options passed through to the packer.
            extension: Archive file extension.
            verbose: Enable debug logging for tarsync between start() and stop().
            coordinator: Shared coordinator (one is created if omitted; an
                injected coordinator is not shut down by stop()).
            registry: Coordination registry for an owned coordinator
                (defaults to the process-wide registry).
            change_source: Change source (defaults to a FileWatcher).
            packer: Packer for an owned coordinator (defaults to TarPacker).
            filesystem: Filesystem for listing and writing (defaults to local disk).
            on_complete: Called after each successful archive.
            on_error: Called with (key, error) when a triggered archive fails.

        Raises:
            ConfigError: If options are invalid.
        """
        self._config = SyncConfig(
            watch_path=Path(path),
            output_path=Path(output_path) if output_path is not None else None,
            trigger_on=parse_events(trigger_on),
            watcher_options=dict(watcher_options or {}),
            packer_options=dict(packer_options or {}),
            extension=extension,
            verbose=verbose,
        )
        config = self._config
        validate_packer_options(config.packer_options)

        self._fs = filesystem or LocalFileSystem()
        self._owns_coordinator = coordinator is None
        if coordinator is None:
            coordinator = TriggerCoordinator(
                writer=ArchiveWriter(packer=packer, filesystem=self._fs),
                publisher=Publisher(filesystem=self._fs),
                registry=registry,
                on_complete=on_complete,
                on_error=on_error,
            )
        else:
            if on_complete is not None:
                coordinator.set_on_complete(on_complete)
            if on_error is not None:
                coordinator.set_on_error(on_error)
        self._coordinator = coordinator

        self._change_source: ChangeSource = change_source or FileWatcher(
            config.watch_path,
            options=config.watcher_options,
            exclude=(config.archive_path, config.temp_path),
        )

        self._state = SyncState.CREATED
        self._lock = threading.Lock()
        self._saved_log_level: int | None = None

    @classmethod
    def from_config(cls, config: SyncConfig, **kwargs: Any) -> TarSync:
        """Create a synchronizer from a SyncConfig.

        Keyword arguments are the collaborator arguments of __init__.
        """
        return cls(
            config.watch_path,
            output_path=config.output_path,
            trigger_on=config.trigger_on,
            watcher_options=config.watcher_options,
            packer_options=config.packer_options,
            extension=config.extension,
            verbose=config.verbose,
            **kwargs,
        )

    @property
    def config(self) -> SyncConfig:
        """Get the watch target configuration."""
        return self._config

    @property
    def state(self) -> SyncState:
        """Get the lifecycle state."""
        return self._state

    @property
    def key(self) -> str:
        """Get the coordination key (the watched directory)."""
        return self._config.key

    @property
    def watch_path(self) -> Path:
        """Get the watched directory."""
        return self._config.watch_path

    @property
    def archive_path(self) -> Path:
        """Get the canonical archive path."""
        return self._config.archive_path

    @property
    def temp_path(self) -> Path:
        """Get the temporary archive path."""
        return self._config.temp_path

    @property
    def watcher(self) -> ChangeSource:
        """Get the change source."""
        return self._change_source

    @property
    def coordinator(self) -> TriggerCoordinator:
        """Get the trigger coordinator."""
        return self._coordinator

    def start(self) -> ArchiveOutcome | None:
        """Archive the directory once, then keep the archive up to date.

        Returns:
            The initial archive outcome, or None if another synchronizer was
            already archiving the same directory (a rerun is then owed).

        Raises:
            StateError: If already started or stopped.
            SourceError: If the directory cannot be listed.
            ArchiveWriteError: If the initial archive could not be written.
            PublishError: If the initial archive could not be published.
        """
        with self._lock:
            if self._state is not SyncState.CREATED:
                raise StateError(f"Cannot start a synchronizer in state {self._state.name}")

            try:
                self._fs.listdir(self._config.watch_path)
            except OSError as e:
                raise SourceError(f"Cannot read directory {self._config.watch_path}: {e}") from e

            self._enable_verbose()
            self._coordinator.add_target(self._config)
            try:
                outcome = self._coordinator.run(self.key)
                self._change_source.subscribe(self._config.trigger_on, self._on_event)
            except Exception:
                self._coordinator.remove_target(self.key)
                self._restore_verbose()
                raise

            self._state = SyncState.STARTED

        logger.info("Synchronizing %s -> %s", self.watch_path, self.archive_path)
        return outcome

    def stop(self) -> None:
        """Stop watching and release coordination state.

        Does not wait for an archive run already in flight.
        """
        with self._lock:
            if self._state is SyncState.STOPPED:
                return
            was_started = self._state is SyncState.STARTED
            self._state = SyncState.STOPPED

        if was_started:
            self._change_source.unsubscribe()
            self._coordinator.remove_target(self.key)
        if self._owns_coordinator:
            self._coordinator.shutdown(wait=False)
        logger.info("Stopped synchronizing %s", self.watch_path)
        self._restore_verbose()

    def _enable_verbose(self) -> None:
        """Lower the tarsync logger to DEBUG while this instance runs."""
        if self._config.verbose and self._saved_log_level is None:
            tarsync_logger = logging.getLogger("tarsync")
            self._saved_log_level = tarsync_logger.level
            tarsync_logger.setLevel(logging.DEBUG)

    def _restore_verbose(self) -> None:
        if self._saved_log_level is not None:
            logging.getLogger("tarsync").setLevel(self._saved_log_level)
            self._saved_log_level = None

    def _on_event(self, event: TriggerEvent, path: Path) -> None:
        """Route a change event to the coordinator; never raises."""
        # Events can arrive between subscribe() and the STARTED transition
        if self._state is SyncState.STOPPED:
            return
        try:
            self._coordinator.request(self.key)
        except Exception:
            logger.exception("Failed to request archive of %s after %s %s", self.key, event.value, path)

    def __enter__(self) -> TarSync:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
