"""Leading-edge debouncing of change signals."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .events import ChangeEvent

logger = logging.getLogger(__name__)


class Debouncer:
    """Forward at most one signal per quiet window.

    The first signal of a burst is forwarded immediately; anything arriving
    within ``window`` seconds of the last forwarded signal is dropped. Nothing
    is flushed after the burst ends.
    """

    def __init__(
        self,
        window: float,
        callback: Callable[[ChangeEvent], None],
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window
        self._callback = callback
        self._clock = clock
        self._lock = threading.Lock()
        self._last_forwarded: Optional[float] = None
        self.forwarded = 0
        self.dropped = 0

    def submit(self, signal: ChangeEvent) -> bool:
        """Forward ``signal`` unless it falls inside the current window."""

        with self._lock:
            now = self._clock()
            if self._last_forwarded is not None and now - self._last_forwarded <= self.window:
                self.dropped += 1
                logger.debug("Dropping change signal %.3fs after the last one", now - self._last_forwarded)
                return False
            self._last_forwarded = now
            self.forwarded += 1

        self._callback(signal)
        return True
