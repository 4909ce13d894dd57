"""Configuration for a watched directory.

This module defines SyncConfig, the settings of one watch target, and the
JSON config file loader used by the command line.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tarsync.core.types import (
    DEFAULT_TRIGGER_EVENTS,
    ConfigError,
    TriggerEvent,
    expand_events,
)

DEFAULT_EXTENSION = "tar"
TEMP_SUFFIX = "~"


@dataclass
class SyncConfig:
    """Settings of one watch target.

    Attributes:
        watch_path: Directory to keep archived.
        output_path: Archive path without extension (defaults to watch_path).
        trigger_on: Event kinds that trigger a new archive.
        watcher_options: Options passed through to the change source.
        packer_options: Options passed through to the packer.
        extension: Archive file extension, without the leading dot.
        verbose: Enable debug logging for the tarsync logger.
    """

    watch_path: Path
    output_path: Path | None = None
    trigger_on: frozenset[TriggerEvent] = DEFAULT_TRIGGER_EVENTS
    watcher_options: dict[str, Any] = field(default_factory=dict)
    packer_options: dict[str, Any] = field(default_factory=dict)
    extension: str = DEFAULT_EXTENSION
    verbose: bool = False

    def __post_init__(self) -> None:
        """Normalize paths, extension and event set."""
        self.watch_path = Path(self.watch_path).expanduser().resolve()
        if self.output_path is None:
            self.output_path = self.watch_path
        else:
            self.output_path = Path(self.output_path).expanduser().resolve()

        self.extension = (self.extension or "").lstrip(".")
        if not self.extension:
            raise ConfigError("Archive extension must not be empty")

        events = parse_events(self.trigger_on)
        if not events:
            raise ConfigError("At least one trigger event is required")
        self.trigger_on = events

    @property
    def key(self) -> str:
        """Get the coordination key (the watched directory)."""
        return str(self.watch_path)

    @property
    def archive_path(self) -> Path:
        """Get the canonical archive path."""
        return Path(f"{self.output_path}.{self.extension}")

    @property
    def temp_path(self) -> Path:
        """Get the temporary path the archive is written to."""
        return Path(f"{self.archive_path}{TEMP_SUFFIX}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Build a config from a plain dict (e.g. a parsed JSON file).

        Raises:
            ConfigError: If required keys are missing or values are invalid.
        """
        if not data.get("watch_path"):
            raise ConfigError("Config is missing 'watch_path'")

        known = {
            "watch_path",
            "output_path",
            "trigger_on",
            "watcher_options",
            "packer_options",
            "extension",
            "verbose",
        }
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {"watch_path": Path(data["watch_path"])}
        if data.get("output_path"):
            kwargs["output_path"] = Path(data["output_path"])
        if "trigger_on" in data:
            kwargs["trigger_on"] = data["trigger_on"]
        for name in ("watcher_options", "packer_options"):
            if name in data:
                if not isinstance(data[name], dict):
                    raise ConfigError(f"'{name}' must be an object")
                kwargs[name] = dict(data[name])
        if "extension" in data:
            kwargs["extension"] = str(data["extension"])
        if "verbose" in data:
            kwargs["verbose"] = bool(data["verbose"])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict.

        A defaulted output_path is written as null so it keeps following
        watch_path when the config is loaded and the path overridden.
        """
        output = None if self.output_path == self.watch_path else str(self.output_path)
        return {
            "watch_path": str(self.watch_path),
            "output_path": output,
            "trigger_on": sorted(e.value for e in self.trigger_on),
            "watcher_options": dict(self.watcher_options),
            "packer_options": dict(self.packer_options),
            "extension": self.extension,
            "verbose": self.verbose,
        }


def parse_events(events: Iterable[str | TriggerEvent]) -> frozenset[TriggerEvent]:
    """Parse event names into a concrete event set ("all" is expanded)."""
    if isinstance(events, str):
        events = [events]
    return expand_events({TriggerEvent.parse(e) for e in events})


def load_config(path: Path) -> SyncConfig:
    """Load a SyncConfig from a JSON file.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return SyncConfig.from_dict(data)


def save_config(config: SyncConfig, path: Path) -> None:
    """Save a SyncConfig to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
