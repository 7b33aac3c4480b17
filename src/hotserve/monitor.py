"""Filesystem monitoring loop with a simple polling backend."""
from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .config import WatchConfig
from .events import ChangeEvent, EventType, FileEvent

logger = logging.getLogger(__name__)

Snapshot = Dict[Path, float]
ChangeCallback = Callable[[ChangeEvent], None]


class MonitorError(Exception):
    """Raised when a change detector cannot establish its initial state."""


@dataclass
class MonitorStats:
    """Counters emitted by the monitor for observability."""

    cycles: int = 0
    events_emitted: int = 0
    scan_errors: int = 0


def is_excluded_dir(name: str, config: WatchConfig) -> bool:
    """Hidden directories and dependency caches are never watched."""

    return name.startswith(".") or name in config.exclude_dirs


def is_excluded(relative: Path, config: WatchConfig) -> bool:
    """Apply the exclusion rule to a path relative to the watched root."""

    parts = relative.parts
    if not parts:
        return False
    if any(is_excluded_dir(part, config) for part in parts):
        return True
    return any(parts[-1].endswith(suffix) for suffix in config.ignore_suffixes)


def take_snapshot(root: Path, config: WatchConfig) -> Snapshot:
    """Map every non-excluded file under ``root`` to its modification time.

    Excluded directories are pruned from the walk. An unreadable root raises
    :class:`OSError`; unreadable subdirectories are skipped.
    """

    def _on_error(exc: OSError) -> None:
        if exc.filename is not None and Path(exc.filename) == root:
            raise exc
        logger.debug("Skipping unreadable directory %s: %s", exc.filename, exc)

    if not root.is_dir():
        raise NotADirectoryError(f"Watched root is not a directory: {root}")

    results: Snapshot = {}
    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames[:] = [name for name in dirnames if not is_excluded_dir(name, config)]
        directory = Path(dirpath)
        for filename in filenames:
            path = directory / filename
            if is_excluded(path.relative_to(root), config):
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            results[path] = stat.st_mtime
    return results


def diff_snapshots(old: Snapshot, new: Snapshot) -> List[FileEvent]:
    """Derive created, modified and deleted paths between two snapshots."""

    events: List[FileEvent] = []
    seen: Set[Path] = set()

    for path, mtime in new.items():
        old_mtime = old.get(path)
        if old_mtime is None:
            events.append(FileEvent(event_type=EventType.CREATED, path=path, mtime=mtime))
        elif mtime > old_mtime:
            events.append(FileEvent(event_type=EventType.MODIFIED, path=path, mtime=mtime))
        seen.add(path)

    for path, mtime in old.items():
        if path not in seen:
            events.append(FileEvent(event_type=EventType.DELETED, path=path, mtime=mtime))

    return events


class DirectoryMonitor:
    """Polls a directory tree and emits a ChangeEvent whenever it differs."""

    def __init__(self, root_path: Path, config: WatchConfig, on_change: ChangeCallback):
        self._root = root_path
        self._config = config
        self._on_change = on_change
        self._stop_event = threading.Event()
        self._snapshot: Optional[Snapshot] = None
        self._stats = MonitorStats()
        self._thread: Optional[threading.Thread] = None

    @property
    def stats(self) -> MonitorStats:
        return self._stats

    @property
    def snapshot(self) -> Snapshot:
        return dict(self._snapshot or {})

    def prime(self) -> None:
        """Take the baseline snapshot. Failure here is fatal."""

        try:
            self._snapshot = take_snapshot(self._root, self._config)
        except OSError as exc:
            raise MonitorError(f"Cannot take initial snapshot of {self._root}: {exc}") from exc
        logger.info("Tracking %s files under %s", len(self._snapshot), self._root)

    def poll_once(self) -> Optional[ChangeEvent]:
        """Rescan the tree and emit one ChangeEvent if anything changed."""

        if self._snapshot is None:
            self.prime()
            return None

        self._stats.cycles += 1
        try:
            new_snapshot = take_snapshot(self._root, self._config)
        except OSError as exc:
            self._stats.scan_errors += 1
            logger.warning("Scan of %s failed, retrying next cycle: %s", self._root, exc)
            return None

        changes = diff_snapshots(self._snapshot, new_snapshot)
        if not changes:
            return None

        self._snapshot = new_snapshot
        event = ChangeEvent(changes=tuple(changes))
        self._stats.events_emitted += 1
        logger.debug("Detected %s change(s): %s", len(changes), event.describe())
        self._on_change(event)
        return event

    def run(self) -> None:
        """Run the monitoring loop until stopped."""

        logger.info("Polling %s every %ss", self._root, self._config.poll_interval)
        try:
            if self._snapshot is None:
                self.prime()
            while not self._stop_event.is_set():
                start_time = time.monotonic()
                self.poll_once()
                self._sleep_until_next_cycle(start_time)
        finally:
            logger.info(
                "Monitor stopped after %s cycles, %s events",
                self._stats.cycles,
                self._stats.events_emitted,
            )

    def start(self) -> None:
        """Establish the baseline, then poll on a background thread."""

        self.prime()
        self._thread = threading.Thread(target=self.run, name="hotserve-poll", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal the monitor to stop at the next opportunity."""

        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._config.poll_interval * 2)

    def _sleep_until_next_cycle(self, started_at: float) -> None:
        elapsed = time.monotonic() - started_at
        remaining = max(self._config.poll_interval - elapsed, 0.0)
        if remaining > 0:
            self._stop_event.wait(remaining)
