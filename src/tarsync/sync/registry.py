"""Coordination registry: per-directory archive state.

The registry maps a coordination key (the watched directory) to a small
record whose state is one of:

    IDLE                  no record in the registry
    RUNNING               an archive run is in flight
    RUNNING_WITH_PENDING  a run is in flight and one more run is owed

Transitions, all under one lock:

    | Call       | Before               | After                | Returns       |
    |------------|----------------------|----------------------|---------------|
    | claim      | IDLE                 | RUNNING              | new record    |
    | claim      | RUNNING              | RUNNING_WITH_PENDING | None          |
    | claim      | RUNNING_WITH_PENDING | RUNNING_WITH_PENDING | None          |
    | complete   | RUNNING_WITH_PENDING | RUNNING              | True (rerun)  |
    | complete   | RUNNING              | IDLE                 | False         |
    | release    | any                  | IDLE                 |               |

A record released while its run is still in flight is draining: the key
reads IDLE and can be claimed again, but completing the released record only
removes it from the draining list. A newer record for the same key must call
wait_turn() before it archives, so two runs never write the same temporary
archive at once.

The registry is shared process-wide by default (default_registry()), so two
synchronizers watching the same directory never archive it concurrently.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass

from tarsync.core.types import KeyState

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class KeyRecord:
    """Coordination record for one in-flight key.

    seq orders records of the same key: a record waits only for released
    records claimed before it.
    """

    key: str
    state: KeyState = KeyState.RUNNING
    seq: int = 0


class CoordinationRegistry:
    """Thread-safe map of coordination key to KeyRecord."""

    def __init__(self) -> None:
        self._records: dict[str, KeyRecord] = {}
        self._draining: dict[str, list[KeyRecord]] = {}
        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)

    def claim(self, key: str) -> KeyRecord | None:
        """Claim the right to run an archive for key.

        Returns:
            A new record if the key was idle (the caller must wait_turn, run
            and then complete it), None if a run is in flight (a rerun is now
            owed).
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = KeyRecord(key=key, seq=next(self._seq))
                self._records[key] = record
                return record

            if record.state is KeyState.RUNNING:
                record.state = KeyState.RUNNING_WITH_PENDING
                logger.debug("Archive of %s in flight, rerun pending", key)
            else:
                logger.debug("Archive of %s in flight, rerun already pending", key)
            return None

    def complete(self, record: KeyRecord) -> bool:
        """Mark the run owned by record as finished.

        Returns:
            True if a rerun is owed; the record stays RUNNING and the caller
            must run again and complete it once more. False otherwise.
        """
        with self._lock:
            if self._records.get(record.key) is not record:
                # Released while in flight
                self._drop_draining(record)
                return False

            if record.state is KeyState.RUNNING_WITH_PENDING:
                record.state = KeyState.RUNNING
                return True

            del self._records[record.key]
            self._changed.notify_all()
            return False

    def release(self, key: str) -> None:
        """Forget any state for key, even if a run is in flight.

        The released record keeps draining until its owner completes it.
        """
        with self._lock:
            record = self._records.pop(key, None)
            if record is not None:
                self._draining.setdefault(key, []).append(record)
                logger.debug("Released coordination state for %s", key)
                self._changed.notify_all()

    def discard(self, record: KeyRecord) -> None:
        """Drop a record whose run will never happen."""
        with self._lock:
            if self._records.get(record.key) is record:
                del self._records[record.key]
                self._changed.notify_all()
            else:
                self._drop_draining(record)

    def wait_turn(self, record: KeyRecord, timeout: float | None = None) -> bool:
        """Block until released runs claimed before record have finished.

        Returns:
            True if record may archive now, False on timeout.
        """
        with self._changed:
            return self._changed.wait_for(
                lambda: not any(r.seq < record.seq for r in self._draining.get(record.key, ())),
                timeout,
            )

    def state(self, key: str) -> KeyState:
        """Get the current state of key."""
        with self._lock:
            record = self._records.get(key)
            return record.state if record else KeyState.IDLE

    def active_keys(self) -> list[str]:
        """Get keys with a run in flight."""
        with self._lock:
            return list(self._records)

    def is_draining(self, key: str) -> bool:
        """Check if a released run for key is still in flight."""
        with self._lock:
            return key in self._draining

    def wait_idle(self, key: str, timeout: float | None = None) -> bool:
        """Block until key is idle and no released run for it is in flight.

        Returns:
            True if the key became idle, False on timeout.
        """
        with self._changed:
            return self._changed.wait_for(
                lambda: key not in self._records and key not in self._draining, timeout
            )

    def _drop_draining(self, record: KeyRecord) -> None:
        # Caller holds the lock
        draining = self._draining.get(record.key)
        if draining is None or record not in draining:
            return
        draining.remove(record)
        if not draining:
            del self._draining[record.key]
        self._changed.notify_all()


_default_registry = CoordinationRegistry()


def default_registry() -> CoordinationRegistry:
    """Get the process-wide registry shared by all synchronizers."""
    return _default_registry
