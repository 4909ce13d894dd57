"""Trigger coordinator: decides when to (re)build a directory's archive.

The coordinator is the core of tarsync:
1. Receives requests for a watched directory (usually from change events)
2. Starts an archive run if none is in flight for that directory
3. Otherwise records that one more run is owed (bursts coalesce into one)
4. Runs the pipeline (ArchiveWriter then Publisher) on a worker thread
5. On completion, reruns once if requests arrived meanwhile
6. Before archiving, waits for runs released by remove_target() on the
   same directory, so two runs never share the temporary archive

Decision table for request(key):
    | Registry state        | Action                                      |
    |-----------------------|---------------------------------------------|
    | IDLE                  | Mark RUNNING, submit run, return True       |
    | RUNNING               | Mark RUNNING_WITH_PENDING, return False     |
    | RUNNING_WITH_PENDING  | Nothing (rerun already owed), return False  |

Reruns are driven by a loop in the worker rather than recursion, so an
event storm cannot grow the stack.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tarsync.archive.publisher import Publisher
from tarsync.archive.writer import ArchiveWriter
from tarsync.core.types import ArchiveOutcome, CoordinatorStats, KeyState, TarSyncError
from tarsync.sync.registry import default_registry

if TYPE_CHECKING:
    from tarsync.core.config import SyncConfig
    from tarsync.core.types import CompleteCallback, ErrorCallback
    from tarsync.sync.registry import CoordinationRegistry, KeyRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class ArchiveTarget:
    """What to archive for one coordination key."""

    key: str
    watch_path: Path
    archive_path: Path
    packer_options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: SyncConfig) -> ArchiveTarget:
        """Build a target from a SyncConfig."""
        return cls(
            key=config.key,
            watch_path=config.watch_path,
            archive_path=config.archive_path,
            packer_options=dict(config.packer_options),
        )


class TriggerCoordinator:
    """Serializes archive runs per watched directory.

    Usage:
        coordinator = TriggerCoordinator(on_error=report)
        coordinator.add_target(config)

        coordinator.run(config.key)      # synchronous, raises on failure
        coordinator.request(config.key)  # asynchronous, failures go to on_error

        coordinator.remove_target(config.key)
        coordinator.shutdown()
    """

    def __init__(
        self,
        writer: ArchiveWriter | None = None,
        publisher: Publisher | None = None,
        registry: CoordinationRegistry | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            writer: Archive writer (defaults to a tar writer on local disk).
            publisher: Publisher (defaults to local disk).
            registry: Coordination registry (defaults to the process-wide one).
            max_workers: Worker threads for archive runs across all keys.
            on_complete: Called after each successful publish.
            on_error: Called with (key, error) after each failed triggered run.
        """
        self._writer = writer or ArchiveWriter()
        self._publisher = publisher or Publisher()
        self._registry = registry if registry is not None else default_registry()
        self._max_workers = max_workers
        self._on_complete = on_complete
        self._on_error = on_error

        self._targets: dict[str, ArchiveTarget] = {}
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False
        self._stats = CoordinatorStats()

    @property
    def registry(self) -> CoordinationRegistry:
        """Get the coordination registry."""
        return self._registry

    @property
    def stats(self) -> CoordinatorStats:
        """Get coordinator statistics."""
        return self._stats

    def set_on_complete(self, callback: CompleteCallback | None) -> None:
        """Set callback for successful archive runs."""
        self._on_complete = callback

    def set_on_error(self, callback: ErrorCallback | None) -> None:
        """Set callback for failed triggered runs.

        Args:
            callback: Function(key, error)
        """
        self._on_error = callback

    def add_target(self, config: SyncConfig) -> ArchiveTarget:
        """Register the directory described by config."""
        target = ArchiveTarget.from_config(config)
        with self._lock:
            self._targets[target.key] = target
        logger.debug("Registered target %s -> %s", target.key, target.archive_path)
        return target

    def remove_target(self, key: str | Path) -> None:
        """Unregister a directory and release its coordination state.

        A run already in flight is not awaited; it still publishes, and
        runs claimed for the key afterwards start once it has finished.
        """
        key = _normalize_key(key)
        with self._lock:
            self._targets.pop(key, None)
        self._registry.release(key)

    def state(self, key: str | Path) -> KeyState:
        """Get the coordination state of a directory."""
        return self._registry.state(_normalize_key(key))

    def request(self, key: str | Path) -> bool:
        """Request a fresh archive of a directory without waiting for it.

        Returns:
            True if a run was started, False if the request coalesced into
            a run that is in flight or already owed.

        Raises:
            TarSyncError: If no target is registered for key.
        """
        target = self._get_target(key)
        self._count("requests")

        record = self._registry.claim(target.key)
        if record is None:
            self._count("requests_coalesced")
            return False

        return self._submit(record, target) is not None

    def run(self, key: str | Path) -> ArchiveOutcome | None:
        """Archive a directory in the calling thread.

        Errors propagate to the caller. If requests arrive during the run,
        the owed rerun is handed to a worker thread.

        Returns:
            The outcome, or None if a run was already in flight for the key
            (a rerun is then owed and will reflect the current state).

        Raises:
            ArchiveWriteError: If packing failed.
            PublishError: If the archive could not be published.
            TarSyncError: If no target is registered for key.
        """
        target = self._get_target(key)
        self._count("requests")

        record = self._registry.claim(target.key)
        if record is None:
            self._count("requests_coalesced")
            return None

        try:
            return self._execute(target, record)
        except Exception:
            self._count("runs_failed")
            raise
        finally:
            if self._registry.complete(record):
                self._count("reruns")
                self._submit(record, target)

    def wait_idle(self, key: str | Path, timeout: float | None = None) -> bool:
        """Block until no run is in flight or owed for a directory.

        Returns:
            True if idle, False on timeout.
        """
        return self._registry.wait_idle(_normalize_key(key), timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting runs and shut down the worker threads."""
        with self._lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _get_target(self, key: str | Path) -> ArchiveTarget:
        normalized = _normalize_key(key)
        with self._lock:
            target = self._targets.get(normalized)
        if target is None:
            raise TarSyncError(f"No archive target registered for {key}")
        return target

    def _submit(self, record: KeyRecord, target: ArchiveTarget) -> Future[None] | None:
        """Hand a claimed record to a worker thread."""
        with self._lock:
            if self._closed:
                executor = None
            else:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self._max_workers,
                        thread_name_prefix="tarsync-archive",
                    )
                executor = self._executor

        if executor is None:
            logger.warning("Coordinator shut down, dropping archive of %s", target.key)
            self._registry.discard(record)
            return None

        return executor.submit(self._drain, record, target)

    def _drain(self, record: KeyRecord, target: ArchiveTarget) -> None:
        """Run the pipeline until no rerun is owed (worker thread)."""
        while True:
            try:
                self._execute(target, record)
            except Exception as e:
                self._count("runs_failed")
                logger.exception("Archive of %s failed", target.key)
                self._notify_error(target.key, e)

            if not self._registry.complete(record):
                return
            self._count("reruns")

    def _execute(self, target: ArchiveTarget, record: KeyRecord) -> ArchiveOutcome:
        """Write then publish one archive; raises on failure."""
        if not self._registry.wait_turn(record, timeout=0):
            logger.debug("Waiting for a released run of %s to finish", target.key)
            self._registry.wait_turn(record)

        self._count("runs_started")
        started_at = time.time()
        logger.debug("Archiving %s", target.key)

        written = self._writer.write(target.watch_path, target.archive_path, target.packer_options)
        if written.error is not None:
            raise written.error

        published = self._publisher.publish(written.temp_path, target.archive_path)
        if published.error is not None:
            raise published.error

        outcome = ArchiveOutcome(
            key=target.key,
            archive_path=published.archive_path,
            size=written.size,
            started_at=started_at,
        )
        self._count("runs_succeeded")
        logger.info(
            "Archived %s -> %s (%d bytes, %.2fs)",
            target.key,
            outcome.archive_path,
            outcome.size,
            outcome.duration,
        )
        self._notify_complete(outcome)
        return outcome

    def _notify_complete(self, outcome: ArchiveOutcome) -> None:
        if self._on_complete is None:
            return
        try:
            self._on_complete(outcome)
        except Exception:
            logger.exception("on_complete callback failed for %s", outcome.key)

    def _notify_error(self, key: str, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(key, error)
        except Exception:
            logger.exception("on_error callback failed for %s", key)

    def _count(self, name: str) -> None:
        with self._lock:
            setattr(self._stats, name, getattr(self._stats, name) + 1)


def _normalize_key(key: str | Path) -> str:
    return str(Path(key).expanduser().resolve())
