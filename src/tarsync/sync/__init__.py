"""Change-driven archive synchronization.

Architecture:
    FileWatcher → TarSync → TriggerCoordinator → ArchiveWriter → Publisher

Components:
- **FileWatcher**: Watches a directory with watchdog, reports settled events
- **TarSync**: Lifecycle facade for one watched directory
- **TriggerCoordinator**: At most one archive run per directory, coalescing
  requests that arrive meanwhile into a single rerun
- **CoordinationRegistry**: Per-directory state, shared process-wide by default
"""

from tarsync.sync.coordinator import ArchiveTarget, TriggerCoordinator
from tarsync.sync.registry import CoordinationRegistry, KeyRecord, default_registry
from tarsync.sync.synchronizer import SyncState, TarSync
from tarsync.sync.watcher import ChangeSource, FileWatcher, SettlingEventHandler

__all__ = [
    # Coordination
    "ArchiveTarget",
    "CoordinationRegistry",
    "KeyRecord",
    "TriggerCoordinator",
    "default_registry",
    # Synchronizer
    "SyncState",
    "TarSync",
    # Watcher
    "ChangeSource",
    "FileWatcher",
    "SettlingEventHandler",
]
