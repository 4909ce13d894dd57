"""Command-line interface for tarsync.

Commands:
- watch: Keep an archive of a directory up to date until interrupted
- pack: Archive a directory once
- extract: Unpack an archive into a directory
"""

from __future__ import annotations

import logging
import sys
import tarfile
import time
from pathlib import Path
from typing import Any

import click

from tarsync import __version__
from tarsync.archive.packer import COMPRESSIONS, unpack
from tarsync.core.config import SyncConfig, load_config
from tarsync.core.types import TarSyncError, TriggerEvent
from tarsync.sync.coordinator import TriggerCoordinator
from tarsync.sync.registry import CoordinationRegistry
from tarsync.sync.synchronizer import TarSync

logger = logging.getLogger(__name__)

COMPRESSION_CHOICES = ["none", *(c for c in COMPRESSIONS if c)]


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes records to stderr through click."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(verbosity: int) -> None:
    """Attach the CLI handler to the tarsync logger.

    Args:
        verbosity: 0 for warnings, 1 for info, 2 or more for debug.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    tarsync_logger = logging.getLogger("tarsync")
    if not any(isinstance(h, ClickEchoHandler) for h in tarsync_logger.handlers):
        handler = ClickEchoHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        tarsync_logger.addHandler(handler)
    tarsync_logger.setLevel(level)


def build_config(
    path: Path | None,
    config_file: Path | None,
    overrides: dict[str, Any],
    packer_overrides: dict[str, Any],
    watcher_overrides: dict[str, Any],
) -> SyncConfig:
    """Merge a config file with command-line flags (flags win).

    Raises:
        ConfigError: If the result is invalid.
    """
    data: dict[str, Any] = load_config(config_file).to_dict() if config_file else {}
    if path is not None:
        data["watch_path"] = str(path)

    for name, value in overrides.items():
        if value is not None:
            data[name] = value

    for section, extra in (("packer_options", packer_overrides), ("watcher_options", watcher_overrides)):
        merged = dict(data.get(section) or {})
        merged.update({k: v for k, v in extra.items() if v is not None})
        data[section] = merged

    return SyncConfig.from_dict(data)


def _wait_for_interrupt() -> None:
    """Block until Ctrl+C."""
    while True:
        time.sleep(1)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _compression(value: str | None) -> str | None:
    if value is None:
        return None
    return "" if value == "none" else value


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """tarsync - keep a tar archive of a directory up to date."""


@cli.command()
@click.argument("path", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Archive path without extension.")
@click.option("--extension", "-e", help="Archive extension (default: tar).")
@click.option(
    "--on",
    "trigger_on",
    multiple=True,
    type=click.Choice([e.value for e in TriggerEvent]),
    help="Event kind that triggers a new archive (repeatable).",
)
@click.option("--polling", is_flag=True, default=None, help="Poll instead of using native events.")
@click.option("--settle", type=float, help="Seconds a path must be quiet before it triggers.")
@click.option("--ignore", "ignore_patterns", multiple=True, help="Pattern to ignore (repeatable).")
@click.option("--compression", type=click.Choice(COMPRESSION_CHOICES), help="Archive compression.")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON config file.",
)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity.")
def watch(
    path: Path | None,
    output: Path | None,
    extension: str | None,
    trigger_on: tuple[str, ...],
    polling: bool | None,
    settle: float | None,
    ignore_patterns: tuple[str, ...],
    compression: str | None,
    config_file: Path | None,
    verbose: int,
) -> None:
    """Keep PATH.tar up to date until interrupted.

    Archives PATH once, then rebuilds the archive whenever files under PATH
    are added, changed or removed.
    """
    configure_logging(verbose)

    if path is None and config_file is None:
        _fail("A PATH or --config is required.")

    def report(key: str, error: Exception) -> None:
        click.echo(f"Warning: archive of {key} failed: {error}", err=True)

    try:
        config = build_config(
            path,
            config_file,
            overrides={
                "output_path": str(output) if output else None,
                "extension": extension,
                "trigger_on": list(trigger_on) or None,
            },
            packer_overrides={
                "compression": _compression(compression),
                "ignore_patterns": list(ignore_patterns) or None,
            },
            watcher_overrides={
                "polling": polling,
                "settle_s": settle,
                "ignore_patterns": list(ignore_patterns) or None,
            },
        )
        sync = TarSync.from_config(config, on_error=report)
        outcome = sync.start()
    except TarSyncError as e:
        _fail(str(e))
        return

    if outcome is not None:
        click.echo(f"Archived {sync.watch_path} -> {outcome.archive_path} ({outcome.size} bytes)")
    click.echo(f"Watching {sync.watch_path} (Ctrl+C to stop)")

    try:
        _wait_for_interrupt()
    except KeyboardInterrupt:
        click.echo("Stopping...")
    finally:
        sync.stop()


@cli.command()
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Archive path without extension.")
@click.option("--extension", "-e", help="Archive extension (default: tar).")
@click.option("--ignore", "ignore_patterns", multiple=True, help="Pattern to leave out (repeatable).")
@click.option("--compression", type=click.Choice(COMPRESSION_CHOICES), help="Archive compression.")
@click.option("--verbose", "-v", count=True, help="Increase log verbosity.")
def pack(
    path: Path,
    output: Path | None,
    extension: str | None,
    ignore_patterns: tuple[str, ...],
    compression: str | None,
    verbose: int,
) -> None:
    """Archive PATH once and exit."""
    configure_logging(verbose)

    try:
        config = build_config(
            path,
            None,
            overrides={"output_path": str(output) if output else None, "extension": extension},
            packer_overrides={
                "compression": _compression(compression),
                "ignore_patterns": list(ignore_patterns) or None,
            },
            watcher_overrides={},
        )
    except TarSyncError as e:
        _fail(str(e))
        return

    if not config.watch_path.is_dir():
        _fail(f"Not a directory: {config.watch_path}")

    coordinator = TriggerCoordinator(registry=CoordinationRegistry())
    coordinator.add_target(config)
    try:
        outcome = coordinator.run(config.key)
    except TarSyncError as e:
        _fail(str(e))
        return
    finally:
        coordinator.shutdown()

    if outcome is not None:
        click.echo(f"Archived {config.watch_path} -> {outcome.archive_path} ({outcome.size} bytes)")


@cli.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("destination", type=click.Path(file_okay=False, path_type=Path))
@click.option("--verbose", "-v", count=True, help="Increase log verbosity.")
def extract(archive: Path, destination: Path, verbose: int) -> None:
    """Unpack ARCHIVE into DESTINATION."""
    configure_logging(verbose)

    try:
        with open(archive, "rb") as f:
            names = unpack(f, destination)
    except (OSError, tarfile.TarError) as e:
        _fail(f"Cannot extract {archive}: {e}")
        return

    click.echo(f"Extracted {len(names)} entries into {destination}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
