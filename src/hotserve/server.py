"""HTTP serving: static files with script injection and the push endpoint."""
from __future__ import annotations

import logging
import os
import selectors
import socket
import time
import urllib.parse
from functools import partial
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional, Tuple

from .config import ClientConfig
from .hub import BroadcastHub, ClientSession, Message
from .inject import inject_script, render_client_script

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = b": keep-alive\n\n"


def encode_event(message: Message) -> bytes:
    """Render a message as one text/event-stream frame."""

    lines = [f"event: {message.event}"]
    lines.extend(f"data: {line}" for line in (message.data.splitlines() or [""]))
    return ("\n".join(lines) + "\n\n").encode("utf-8")


class LiveReloadHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the hub and push-channel settings."""

    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        root_path: Path,
        hub: BroadcastHub,
        client_config: ClientConfig,
    ):
        self.root_path = root_path
        self.hub = hub
        self.client_config = client_config
        self.client_script = render_client_script(client_config.endpoint, client_config.reconnect_delay)
        handler = partial(LiveReloadRequestHandler, directory=str(root_path))
        super().__init__(server_address, handler)


class LiveReloadRequestHandler(SimpleHTTPRequestHandler):
    """Serves the root directory, injecting the client script into HTML pages."""

    server: LiveReloadHTTPServer

    def do_GET(self) -> None:
        url_path = urllib.parse.urlsplit(self.path).path
        if url_path == self.server.client_config.endpoint:
            self._serve_event_stream()
            return

        html_path = self._resolve_html(url_path)
        if html_path is not None:
            self._serve_html(html_path)
            return

        super().do_GET()

    def do_HEAD(self) -> None:
        html_path = self._resolve_html(urllib.parse.urlsplit(self.path).path)
        if html_path is not None:
            self._serve_html(html_path, include_body=False)
            return

        super().do_HEAD()

    def end_headers(self) -> None:
        self.send_header("Cache-Control", "no-cache")
        super().end_headers()

    def log_message(self, format: str, *args) -> None:
        message = format % args
        if self.server.client_config.endpoint in message:
            logger.debug("%s - %s", self.address_string(), message)
        else:
            logger.info("%s - %s", self.address_string(), message)

    def _resolve_html(self, url_path: str) -> Optional[str]:
        """Return the HTML file that receives the client script, if any."""

        path = self.translate_path(self.path)
        if os.path.isdir(path):
            index = os.path.join(path, "index.html")
            if url_path.endswith("/") and os.path.isfile(index):
                return index
        elif path.lower().endswith(".html") and os.path.isfile(path):
            return path
        return None

    def _serve_html(self, path: str, include_body: bool = True) -> None:
        try:
            with open(path, "rb") as f:
                content = f.read()
        except OSError:
            self.send_error(HTTPStatus.NOT_FOUND, "File not found")
            return

        content = inject_script(content, self.server.client_script)
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(content)))
        self.end_headers()
        if include_body:
            self.wfile.write(content)

    def _serve_event_stream(self) -> None:
        config = self.server.client_config
        hub = self.server.hub

        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Connection", "keep-alive")
        self.send_header("X-Accel-Buffering", "no")
        self.end_headers()
        self.close_connection = True

        session = ClientSession(peer=self.address_string(), buffer_size=config.buffer_size)
        hub.register(session)
        try:
            self._write(encode_event(Message.connected(session.id)))
            next_keepalive = time.monotonic() + config.keepalive_interval
            while session.is_active:
                timeout = min(max(next_keepalive - time.monotonic(), 0.0), config.liveness_interval)
                message = session.next_message(timeout)
                if message is not None:
                    self._write(encode_event(message))
                    continue
                if not session.is_active or self._peer_closed():
                    break
                if time.monotonic() >= next_keepalive:
                    self._write(KEEPALIVE_FRAME)
                    next_keepalive = time.monotonic() + config.keepalive_interval
        except OSError as exc:
            logger.debug("Client %s went away: %s", session.id, exc)
        finally:
            session.begin_closing()
            hub.deregister(session)
            session.mark_closed()

    def _write(self, payload: bytes) -> None:
        self.wfile.write(payload)
        self.wfile.flush()

    def _peer_closed(self) -> bool:
        """True once the browser has closed its end of the connection."""

        try:
            with selectors.DefaultSelector() as selector:
                selector.register(self.connection, selectors.EVENT_READ)
                if not selector.select(timeout=0):
                    return False
            return self.connection.recv(1, socket.MSG_PEEK) == b""
        except (OSError, ValueError):
            return True


def create_server(
    host: str,
    port: int,
    root_path: Path,
    hub: BroadcastHub,
    client_config: Optional[ClientConfig] = None,
) -> LiveReloadHTTPServer:
    """Bind the HTTP server. Raises :class:`OSError` when the address is unavailable."""

    return LiveReloadHTTPServer((host, port), root_path, hub, client_config or ClientConfig())
