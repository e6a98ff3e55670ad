"""
file_watcher.py
===============
Watches the served tree and turns bursts of raw watchdog events into one
batch of changed paths per edit.

Every directory gets its own non-recursive watch so that dot-directories
(.git, .venv, ...) are never subscribed to. The watch set grows when
directories appear and shrinks when they are moved away or deleted.

Observer threads only enqueue raw events; ChangeDebouncer.run() is the one
thread that touches the watch set, the pending changes and the debounce
deadline.
"""

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

DEBOUNCE_WINDOW = 0.1      # seconds of quiet before a batch goes out
POLL_INTERVAL = 0.5        # idle wake-up to check on the observer

QUALIFYING_EVENTS = {
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
}

# characters a browser leaves unescaped in URL paths
URL_PATH_SAFE = "/!$&'()*+,;=:@[]|^"

# extensions the client can swap in place instead of reloading the page
ASSET_PATCH_EXTENSIONS = {".css"}

_STOP = object()


class WatcherError(RuntimeError):
    """The notification source failed; the watcher cannot continue."""


def ignore(name: str) -> bool:
    return name.startswith(".")


@dataclass(frozen=True)
class ChangedPath:
    url_path: str

    @property
    def full_reload(self) -> bool:
        return PurePosixPath(self.url_path).suffix.lower() not in ASSET_PATCH_EXTENSIONS

    @classmethod
    def from_path(cls, root: Path, path: str):
        """Build from an absolute path, None if it is not under ``root``.
        The URL form is percent-encoded the way browsers report pathnames."""
        try:
            relative = Path(path).relative_to(root)
        except ValueError:
            return None
        posix = relative.as_posix()
        return cls("/" if posix == "." else "/" + quote(posix, safe=URL_PATH_SAFE))


def encode_batch(batch) -> str:
    return "\x1f".join(change.url_path for change in batch)


def needs_full_reload(batch) -> bool:
    return any(change.full_reload for change in batch)


class _RawEventHandler(FileSystemEventHandler):
    def __init__(self, sink):
        super().__init__()
        self.sink = sink

    def on_any_event(self, event):
        self.sink(event)


class ChangeDebouncer:
    def __init__(self, root, out_queue: queue.Queue,
                 window: float = DEBOUNCE_WINDOW, observer_factory=Observer):
        self.root = Path(root).resolve()
        self.out_queue = out_queue
        self.window = window

        self._observer = observer_factory()
        self._handler = _RawEventHandler(self.feed)
        self._raw: queue.Queue = queue.Queue()
        self._watches: dict = {}
        self._watches_lock = threading.Lock()
        self._pending: dict = {}
        self._stopping = threading.Event()

    # ── Watch set ─────────────────────────────────────────────────────────────
    def watched_directories(self) -> list:
        with self._watches_lock:
            return sorted(self._watches)

    def _watch(self, directory: str):
        with self._watches_lock:
            if directory in self._watches:
                return
        try:
            handle = self._observer.schedule(self._handler, directory, recursive=False)
        except FileNotFoundError:
            # gone again before we got to it
            logger.debug("not watching vanished directory %s", directory)
            return
        except OSError as exc:
            raise WatcherError(f"cannot watch {directory}: {exc}") from exc
        with self._watches_lock:
            self._watches[directory] = handle

    def _watch_tree(self, base: str):
        """Register ``base`` and every non-ignored directory below it."""
        if not os.path.isdir(base):
            return
        if base != str(self.root) and ignore(os.path.basename(base)):
            return
        self._watch(base)
        for dirpath, dirnames, _ in os.walk(base):
            dirnames[:] = [d for d in dirnames if not ignore(d)]
            for name in dirnames:
                self._watch(os.path.join(dirpath, name))

    def _unwatch_tree(self, base: str):
        prefix = base + os.sep
        with self._watches_lock:
            gone = [d for d in self._watches if d == base or d.startswith(prefix)]
            handles = [self._watches.pop(d) for d in gone]
        for handle in handles:
            try:
                self._observer.unschedule(handle)
            except KeyError:
                # observer already forgot it
                pass
        if gone:
            logger.debug("unwatched %s", gone)

    # ── Lifecycle ─────────────────────────────────────────────────────────────
    def start(self):
        self._watch_tree(str(self.root))
        self._observer.start()
        logger.info("Watching: %s", self.watched_directories())

    def stop(self):
        self._stopping.set()
        self._raw.put(_STOP)
        self._observer.stop()

    def join(self, timeout: float = None):
        if self._observer.is_alive():
            self._observer.join(timeout)

    def feed(self, event):
        """Hand a raw watchdog event to the loop. Safe from any thread."""
        self._raw.put(event)

    # ── Loop ──────────────────────────────────────────────────────────────────
    def run(self):
        deadline = None
        while not self._stopping.is_set():
            if deadline is None:
                timeout = POLL_INTERVAL
            else:
                timeout = max(0.0, deadline - time.monotonic())

            try:
                event = self._raw.get(timeout=timeout)
            except queue.Empty:
                event = None

            if event is _STOP:
                break
            if event is not None and self._handle(event):
                deadline = time.monotonic() + self.window

            if deadline is not None and time.monotonic() >= deadline:
                self.flush()
                deadline = None

            if not self._stopping.is_set() and not self._observer.is_alive():
                raise WatcherError("filesystem observer stopped unexpectedly")

    def _handle(self, event) -> bool:
        """Apply one raw event; True if it was recorded as a change."""
        if event.event_type not in QUALIFYING_EVENTS:
            return False
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            # mirrors the change to a child, which arrives on its own
            return False

        src = os.fsdecode(event.src_path)
        changed = []
        # each side of a move is filtered on its own
        if not ignore(os.path.basename(src)):
            changed.append(src)
            if event.event_type == EVENT_TYPE_CREATED:
                self._watch_tree(src)
            elif event.event_type in (EVENT_TYPE_MOVED, EVENT_TYPE_DELETED):
                self._unwatch_tree(src)

        if event.event_type == EVENT_TYPE_MOVED:
            dest = os.fsdecode(event.dest_path)
            if not ignore(os.path.basename(dest)) and Path(dest).is_relative_to(self.root):
                self._watch_tree(dest)
                changed.append(dest)

        if not changed:
            return False
        logger.debug("event %s %s", event.event_type, changed)
        for path in changed:
            # re-recording moves the key to the end and re-arms the window
            self._pending.pop(path, None)
            self._pending[path] = True
        return True

    def flush(self):
        """Deliver everything pending as one batch."""
        if not self._pending:
            return
        paths, self._pending = list(self._pending), {}
        batch = []
        for path in paths:
            change = ChangedPath.from_path(self.root, path)
            if change is not None and change not in batch:
                batch.append(change)
        if batch:
            self.out_queue.put(batch)
