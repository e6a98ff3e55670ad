"""
broadcast_hub.py
================
Live notification connections and the fan-out to them.

Each browser tab is a Connection: a small outbox the hub drops messages into
without blocking. The websocket request thread that owns the socket drains
the outbox (see ui_server.accept_notifications), so a slow or dead client
never stalls a broadcast.
"""

import logging
import queue
import threading

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 16

_CLOSE = object()


class ConnectionClosedError(ConnectionError):
    """The connection can no longer take messages."""


class Connection:
    """Hub-side handle of one notification client."""

    def __init__(self, label: str = "", maxsize: int = OUTBOX_SIZE):
        self.label = label
        self._outbox: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<Connection {self.label or hex(id(self))} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, payload: str):
        if self.closed:
            raise ConnectionClosedError(f"{self!r} is closed")
        try:
            self._outbox.put_nowait(payload)
        except queue.Full:
            raise ConnectionClosedError(f"{self!r} outbox is full") from None

    def close(self):
        if self.closed:
            return
        self._closed.set()
        try:
            self._outbox.put_nowait(_CLOSE)
        except queue.Full:
            # writer sees the closed flag once the outbox drains
            pass

    def next_message(self, timeout: float = None):
        """Next payload, or None on timeout. Raises ConnectionClosedError
        once the connection is closed and everything queued before the
        close has been handed out."""
        try:
            item = self._outbox.get(timeout=timeout)
        except queue.Empty:
            if self.closed:
                raise ConnectionClosedError(f"{self!r} is closed") from None
            return None
        if item is _CLOSE:
            raise ConnectionClosedError(f"{self!r} is closed")
        return item


class BroadcastHub:
    """Thread-safe set of connections with broadcast and reset."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: set = set()

    def __len__(self):
        with self._lock:
            return len(self._connections)

    def register(self, conn):
        with self._lock:
            self._connections.add(conn)
        logger.debug("registered %r", conn)

    def unregister(self, conn):
        with self._lock:
            self._connections.discard(conn)

    def reset(self):
        """Drop and close every connection."""
        with self._lock:
            dropped, self._connections = self._connections, set()
        for conn in dropped:
            conn.close()

    def broadcast(self, payload: str, full_reload: bool = True) -> int:
        """Send ``payload`` to every connection, return the success count.

        After a full reload every connection that was sent to is dropped,
        since the reloaded page opens a fresh one. Connections registered
        while the broadcast was running are kept for the next one.
        """
        with self._lock:
            targets = list(self._connections)

        logger.info("Updating %d clients", len(targets))
        delivered = 0
        failed = []
        for conn in targets:
            try:
                conn.send(payload)
            except ConnectionError as exc:
                logger.warning("Dropping connection %r: %s", conn, exc)
                failed.append(conn)
            else:
                delivered += 1

        dropped = targets if full_reload else failed
        with self._lock:
            self._connections.difference_update(dropped)
        for conn in dropped:
            conn.close()
        return delivered
