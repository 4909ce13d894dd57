"""tarsync - keep a tar archive of a directory continuously up to date."""

from tarsync.archive import ArchiveWriter, Publisher, TarPacker, unpack
from tarsync.core import (
    ArchiveOutcome,
    ArchiveWriteError,
    ConfigError,
    PublishError,
    SourceError,
    StateError,
    SyncConfig,
    TarSyncError,
    TriggerEvent,
    load_config,
)
from tarsync.sync import (
    CoordinationRegistry,
    FileWatcher,
    SyncState,
    TarSync,
    TriggerCoordinator,
    default_registry,
)

__version__ = "0.3.0"

__all__ = [
    "__version__",
    # Synchronizer
    "SyncState",
    "TarSync",
    # Coordination
    "CoordinationRegistry",
    "TriggerCoordinator",
    "default_registry",
    # Collaborators
    "ArchiveWriter",
    "FileWatcher",
    "Publisher",
    "TarPacker",
    "unpack",
    # Config and types
    "ArchiveOutcome",
    "SyncConfig",
    "TriggerEvent",
    "load_config",
    # Errors
    "ArchiveWriteError",
    "ConfigError",
    "PublishError",
    "SourceError",
    "StateError",
    "TarSyncError",
]
