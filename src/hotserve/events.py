"""Event models shared between the change detectors and the broadcast hub."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


class EventType(str, Enum):
    """Types of filesystem changes observed under the served root."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True)
class FileEvent:
    """A single change observed in the watched directory tree."""

    event_type: EventType
    path: Path
    previous_path: Optional[Path] = None
    mtime: Optional[float] = None

    def describe(self) -> str:
        if self.previous_path is not None:
            return f"{self.event_type.value} {self.previous_path} -> {self.path}"
        return f"{self.event_type.value} {self.path}"


@dataclass(frozen=True)
class ChangeEvent:
    """Logical signal that the served tree changed since the last notification.

    ``changes`` is advisory: downstream consumers only care that a change
    happened, the per-path details are kept for logging.
    """

    changes: Tuple[FileEvent, ...] = ()
    detected_at: float = field(default_factory=time.time)

    @property
    def paths(self) -> List[Path]:
        return [change.path for change in self.changes]

    def describe(self, limit: int = 3) -> str:
        if not self.changes:
            return "tree changed"
        shown = ", ".join(change.describe() for change in self.changes[:limit])
        remaining = len(self.changes) - limit
        if remaining > 0:
            shown += f" (+{remaining} more)"
        return shown
