"""Helpers shared by the hotserve tests."""

import os
import select
import socket
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from hotserve.config import AppConfig, ClientConfig, ServerConfig, WatchConfig, WatchStrategy


INDEX_HTML = "<html><head><title>site</title></head><body><p>original body</p></body></html>"


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def place_file(path: Path, text: str) -> None:
    """Create ``path`` in one step by renaming a hidden scratch file into place."""
    scratch = path.parent / f".scratch-{path.name}"
    scratch.write_text(text)
    os.replace(scratch, path)


def make_config(root: Path, strategy: WatchStrategy = WatchStrategy.POLL, **client_options) -> AppConfig:
    clients = {"liveness_interval": 0.1, "keepalive_interval": 25.0}
    clients.update(client_options)
    return AppConfig(
        server=ServerConfig(root_path=root, host="127.0.0.1", port=0),
        watch=WatchConfig(strategy=strategy, poll_interval=0.05, debounce=0.1),
        clients=ClientConfig(**clients),
    )


class EventStreamClient:
    """Minimal text/event-stream reader over a raw socket."""

    def __init__(self, address: Tuple[str, int], path: str = "/__livereload", timeout: float = 5.0):
        host, port = address
        self.sock = socket.create_connection((host, port), timeout=timeout)
        request = f"GET {path} HTTP/1.1\r\nHost: {host}:{port}\r\nAccept: text/event-stream\r\n\r\n"
        self.sock.sendall(request.encode("ascii"))
        self._reader = self.sock.makefile("rb", buffering=0)
        self.status_line = self.read_line()
        self.headers: Dict[str, str] = {}
        while True:
            line = self.read_line()
            if not line:
                break
            name, _, value = line.partition(":")
            self.headers[name.strip().lower()] = value.strip()

    def read_line(self) -> str:
        line = self._reader.readline()
        if not line:
            raise EOFError("event stream closed")
        return line.decode("utf-8").rstrip("\r\n")

    def next_event(self) -> Tuple[Optional[str], str]:
        """Return the next named event, skipping comment-only frames."""
        event: Optional[str] = None
        data = []
        while True:
            line = self.read_line()
            if not line:
                if event is None and not data:
                    continue
                return event, "\n".join(data)
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            value = value[1:] if value.startswith(" ") else value
            if field == "event":
                event = value
            elif field == "data":
                data.append(value)

    def has_pending(self, wait: float) -> bool:
        readable, _, _ = select.select([self.sock], [], [], wait)
        return bool(readable)

    def close(self) -> None:
        self._reader.close()
        self.sock.close()
