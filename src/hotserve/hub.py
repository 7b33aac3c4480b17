"""Client registry and reload fan-out."""
from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle of one browser connection. Transitions only move forward."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


_ORDER = {
    SessionState.CONNECTING: 0,
    SessionState.ACTIVE: 1,
    SessionState.CLOSING: 2,
    SessionState.CLOSED: 3,
}


@dataclass(frozen=True)
class Message:
    """One push frame sent to a browser."""

    event: str
    data: str = ""

    @classmethod
    def reload(cls, timestamp: Optional[float] = None) -> "Message":
        return cls(event="reload", data=str(int(time.time() if timestamp is None else timestamp)))

    @classmethod
    def connected(cls, session_id: str) -> "Message":
        return cls(event="connected", data=session_id)


class ClientSession:
    """A connected browser and its bounded outbound queue."""

    def __init__(self, peer: str = "", buffer_size: int = 8):
        self.id = uuid.uuid4().hex[:12]
        self.peer = peer
        self.opened_at = time.time()
        self._state = SessionState.CONNECTING
        self._state_lock = threading.Lock()
        self._outbox: "queue.Queue[Optional[Message]]" = queue.Queue(maxsize=buffer_size)

    def __repr__(self) -> str:
        return f"ClientSession(id={self.id!r}, peer={self.peer!r}, state={self._state.value})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    def activate(self) -> None:
        self._advance(SessionState.ACTIVE)

    def begin_closing(self) -> None:
        if self._advance(SessionState.CLOSING):
            self._wake()

    def mark_closed(self) -> None:
        self._advance(SessionState.CLOSED)

    def offer(self, message: Message) -> bool:
        """Queue ``message`` without blocking. False when full or no longer active."""

        if not self.is_active:
            return False
        try:
            self._outbox.put_nowait(message)
        except queue.Full:
            return False
        return True

    def next_message(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Wait up to ``timeout`` seconds for the next queued message."""

        try:
            return self._outbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def _advance(self, target: SessionState) -> bool:
        with self._state_lock:
            if _ORDER[target] <= _ORDER[self._state]:
                return False
            logger.debug("Session %s: %s -> %s", self.id, self._state.value, target.value)
            self._state = target
            return True

    def _wake(self) -> None:
        try:
            self._outbox.put_nowait(None)
        except queue.Full:
            # a full queue already wakes the waiting endpoint
            pass


@dataclass
class HubStats:
    """Counters emitted by the hub for observability."""

    broadcasts: int = 0
    deliveries: int = 0
    drops: int = 0


class BroadcastHub:
    """Concurrency-safe registry of client sessions with fan-out delivery.

    All registry access happens under one lock that is only held for the
    in-memory work; queueing a message for a client never blocks.
    """

    def __init__(self):
        self._sessions: Dict[str, ClientSession] = {}
        self._lock = threading.Lock()
        self._stats = HubStats()

    @property
    def stats(self) -> HubStats:
        return self._stats

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __len__(self) -> int:
        return self.client_count

    def sessions(self) -> List[ClientSession]:
        with self._lock:
            return list(self._sessions.values())

    def register(self, session: ClientSession) -> None:
        with self._lock:
            self._sessions[session.id] = session
            session.activate()
            count = len(self._sessions)
        logger.info("Client %s connected from %s (%s connected)", session.id, session.peer or "?", count)

    def deregister(self, session: ClientSession) -> bool:
        """Remove ``session``. Removing an absent session is a no-op."""

        with self._lock:
            removed = self._sessions.get(session.id) is session
            if removed:
                del self._sessions[session.id]
            count = len(self._sessions)
        if removed:
            logger.info("Client %s disconnected (%s connected)", session.id, count)
        return removed

    def broadcast(self, message: Optional[Message] = None) -> int:
        """Offer ``message`` to every registered session and return the delivery count.

        Sessions that cannot accept the message are closed and removed within
        the same pass; their endpoints notice and exit.
        """

        if message is None:
            message = Message.reload()

        with self._lock:
            targets = list(self._sessions.values())

        delivered = 0
        failed: List[ClientSession] = []
        for session in targets:
            if session.offer(message):
                delivered += 1
            else:
                failed.append(session)

        if failed:
            with self._lock:
                for session in failed:
                    if self._sessions.get(session.id) is session:
                        del self._sessions[session.id]
            for session in failed:
                logger.debug("Dropping unresponsive client %s", session.id)
                session.begin_closing()

        self._stats.broadcasts += 1
        self._stats.deliveries += delivered
        self._stats.drops += len(failed)
        logger.info("Sent %s to %s client(s)", message.event, delivered)
        return delivered

    def close(self) -> None:
        """Close every session and empty the registry."""

        with self._lock:
            targets = list(self._sessions.values())
            self._sessions.clear()
        for session in targets:
            session.begin_closing()
        if targets:
            logger.info("Closed %s client session(s)", len(targets))
