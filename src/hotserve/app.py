"""Wiring of detector, debouncer, hub and HTTP server into one process."""
from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple, Union

from .config import AppConfig, WatchStrategy, validate_root
from .debounce import Debouncer
from .events import ChangeEvent
from .hub import BroadcastHub, Message
from .monitor import DirectoryMonitor
from .observer import EventObserver
from .server import LiveReloadHTTPServer, create_server

logger = logging.getLogger(__name__)

Detector = Union[DirectoryMonitor, EventObserver]


class LiveReloadServer:
    """Serves a directory and reloads connected browsers when it changes."""

    def __init__(self, config: AppConfig):
        self._config = config
        self._root = validate_root(config)
        self.hub = BroadcastHub()
        self.debouncer = Debouncer(config.watch.debounce, self._notify)
        self.detector: Detector = self._create_detector()
        self._httpd: Optional[LiveReloadHTTPServer] = None
        self._serve_thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        if self._httpd is None:
            return self._config.server.host, self._config.server.port
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    @property
    def url(self) -> str:
        host, port = self.address
        if host in ("", "0.0.0.0", "::"):
            host = "localhost"
        return f"http://{host}:{port}/"

    def start(self) -> None:
        """Bind the listen address and start the detector and HTTP threads.

        Raises :class:`OSError` if the address cannot be bound and
        :class:`~hotserve.monitor.MonitorError` if the tree cannot be watched.
        """

        server_config = self._config.server
        self._httpd = create_server(
            server_config.host,
            server_config.port,
            self._root,
            self.hub,
            self._config.clients,
        )
        try:
            self.detector.start()
        except Exception:
            self._httpd.server_close()
            self._httpd = None
            raise

        self._serve_thread = threading.Thread(
            target=self._httpd.serve_forever,
            name="hotserve-http",
            daemon=True,
        )
        self._serve_thread.start()
        logger.info("Serving %s at %s", self._root, self.url)

    def run(self) -> None:
        """Start and block until interrupted or stopped."""

        self.start()
        logger.info("Press Ctrl+C to stop")
        try:
            while not self._stopped.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Server interrupted by user")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop watching, drop every client and close the listening socket."""

        if self._stopped.is_set() and self._httpd is None:
            return
        self._stopped.set()
        self.detector.stop()
        self.hub.close()
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        logger.info(
            "Server stopped after %s reloads sent to %s clients",
            self.hub.stats.broadcasts,
            self.hub.stats.deliveries,
        )

    def _create_detector(self) -> Detector:
        watch_config = self._config.watch
        if watch_config.strategy is WatchStrategy.POLL:
            return DirectoryMonitor(self._root, watch_config, self.debouncer.submit)
        return EventObserver(self._root, watch_config, self.debouncer.submit)

    def _notify(self, event: ChangeEvent) -> None:
        logger.info("Change detected: %s", event.describe())
        self.hub.broadcast(Message.reload(event.detected_at))
