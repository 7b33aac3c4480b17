"""Event-driven change detection on top of ``watchdog``.

Every non-excluded directory under the root gets its own non-recursive watch,
so hidden directories and dependency caches are never subscribed to. New
directories are registered as they appear.
"""
from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Set

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from .config import WatchConfig
from .events import ChangeEvent, EventType, FileEvent
from .monitor import ChangeCallback, MonitorError, is_excluded, is_excluded_dir

logger = logging.getLogger(__name__)

_EVENT_TYPES = {
    EVENT_TYPE_CREATED: EventType.CREATED,
    EVENT_TYPE_MODIFIED: EventType.MODIFIED,
    EVENT_TYPE_DELETED: EventType.DELETED,
    EVENT_TYPE_MOVED: EventType.MOVED,
}


class _TreeEventHandler(FileSystemEventHandler):
    """Translates raw watchdog events into ChangeEvents."""

    def __init__(self, owner: "EventObserver"):
        super().__init__()
        self._owner = owner

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            self._owner.handle(event)
        except Exception:
            logger.exception("Failed to handle filesystem event %s", event)


class EventObserver:
    """Subscribes to OS change notifications for a directory tree."""

    def __init__(self, root_path: Path, config: WatchConfig, on_change: ChangeCallback):
        self._root = root_path
        self._config = config
        self._on_change = on_change
        self._observer = Observer()
        self._handler = _TreeEventHandler(self)
        self._watches: Dict[Path, ObservedWatch] = {}
        self._lock = threading.Lock()
        self._events_emitted = 0

    @property
    def events_emitted(self) -> int:
        return self._events_emitted

    def watched_directories(self) -> Set[Path]:
        with self._lock:
            return set(self._watches)

    def start(self) -> None:
        """Register the tree and start the observer thread. Failure is fatal."""

        if not self._root.is_dir():
            raise MonitorError(f"Cannot watch {self._root}: not a directory")
        try:
            self._register_tree(self._root, strict=True)
            self._observer.start()
        except OSError as exc:
            raise MonitorError(f"Cannot subscribe to changes under {self._root}: {exc}") from exc
        logger.info("Watching %s directories under %s", len(self._watches), self._root)

    def stop(self) -> None:
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join()
        logger.info("Observer stopped after %s events", self._events_emitted)

    def handle(self, event: FileSystemEvent) -> None:
        """Process one raw event from the observer thread."""

        event_type = _EVENT_TYPES.get(event.event_type)
        if event_type is None:
            return

        path = Path(os.fsdecode(event.src_path))
        dest_path: Optional[Path] = None
        if event_type is EventType.MOVED:
            dest_path = Path(os.fsdecode(event.dest_path))

        target = dest_path or path
        if self._excluded(target) and (dest_path is None or self._excluded(path)):
            return

        if event.is_directory:
            if event_type is EventType.MODIFIED:
                return
            if event_type in (EventType.DELETED, EventType.MOVED):
                self._forget_tree(path)
            if event_type in (EventType.CREATED, EventType.MOVED) and not self._excluded(target):
                self._register_tree(target, strict=False)

        if event_type is EventType.MOVED:
            file_event = FileEvent(event_type=event_type, path=target, previous_path=path)
        else:
            file_event = FileEvent(event_type=event_type, path=path)

        self._events_emitted += 1
        logger.debug("Filesystem event: %s", file_event.describe())
        self._on_change(ChangeEvent(changes=(file_event,)))

    def _excluded(self, path: Path) -> bool:
        try:
            relative = path.relative_to(self._root)
        except ValueError:
            return True
        return is_excluded(relative, self._config)

    def _register_tree(self, top: Path, *, strict: bool) -> None:
        def _on_error(exc: OSError) -> None:
            if strict:
                raise exc
            logger.warning("Cannot list %s for watching: %s", exc.filename, exc)

        for dirpath, dirnames, _filenames in os.walk(top, onerror=_on_error):
            dirnames[:] = [name for name in dirnames if not is_excluded_dir(name, self._config)]
            self._schedule(Path(dirpath), strict=strict)

    def _schedule(self, directory: Path, *, strict: bool) -> None:
        with self._lock:
            if directory in self._watches:
                return
            try:
                watch = self._observer.schedule(self._handler, str(directory), recursive=False)
            except OSError as exc:
                if strict:
                    raise
                logger.warning("Cannot watch new directory %s: %s", directory, exc)
                return
            self._watches[directory] = watch
        logger.debug("Watching %s", directory)

    def _forget_tree(self, top: Path) -> None:
        with self._lock:
            stale = [path for path in self._watches if path == top or top in path.parents]
            for path in stale:
                watch = self._watches.pop(path)
                try:
                    self._observer.unschedule(watch)
                except KeyError:
                    # the emitter already went away with the directory
                    pass
        if stale:
            logger.debug("Stopped watching %s removed directories under %s", len(stale), top)
