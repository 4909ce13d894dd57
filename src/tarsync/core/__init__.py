"""Core module - Shared types, configuration and filesystem access."""

from tarsync.core.config import (
    DEFAULT_EXTENSION,
    TEMP_SUFFIX,
    SyncConfig,
    load_config,
    parse_events,
    save_config,
)
from tarsync.core.filesystem import FileSystem, LocalFileSystem
from tarsync.core.ignore import IGNORE_FILE_NAME, IgnorePatterns
from tarsync.core.types import (
    DEFAULT_TRIGGER_EVENTS,
    ArchiveOutcome,
    ArchiveWriteError,
    ConfigError,
    CoordinatorStats,
    KeyState,
    PublishError,
    PublishResult,
    SourceError,
    StateError,
    TarSyncError,
    TriggerEvent,
    WriteResult,
)

__all__ = [
    # Config
    "DEFAULT_EXTENSION",
    "TEMP_SUFFIX",
    "SyncConfig",
    "load_config",
    "parse_events",
    "save_config",
    # Filesystem
    "FileSystem",
    "LocalFileSystem",
    # Ignore
    "IGNORE_FILE_NAME",
    "IgnorePatterns",
    # Types
    "DEFAULT_TRIGGER_EVENTS",
    "ArchiveOutcome",
    "CoordinatorStats",
    "KeyState",
    "PublishResult",
    "TriggerEvent",
    "WriteResult",
    # Errors
    "ArchiveWriteError",
    "ConfigError",
    "PublishError",
    "SourceError",
    "StateError",
    "TarSyncError",
]
