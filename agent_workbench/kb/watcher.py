"""
Corpus watcher — rebuilds the search index when reference documents change.

Uses watchdog to monitor the corpus root.  Events for indexable files are
coalesced: each one (re)arms a debounce timer, and when the timer fires a
background refresh of the :class:`~agent_workbench.kb.generation.IndexHandle`
is started.  Queries keep using the previous generation meanwhile.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class CorpusEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler that schedules debounced index refreshes.

    Parameters
    ----------
    handle:
        The :class:`~agent_workbench.kb.generation.IndexHandle` to refresh.
    include_extensions:
        Only events on files with these extensions trigger a refresh.
    debounce_seconds:
        Quiet period after the last event before refreshing.
    corpus_root:
        When given, hidden directories are only checked below this root.
    """

    def __init__(
        self,
        handle,
        include_extensions: tuple[str, ...],
        debounce_seconds: float = 1.0,
        corpus_root: Optional[str] = None,
    ) -> None:
        super().__init__()
        self._root = os.path.abspath(corpus_root) if corpus_root else None
        self._handle = handle
        self._extensions = {e.lower() for e in include_extensions}
        self._debounce = debounce_seconds
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    # ------------------------------------------------------------------
    # Watchdog event dispatch
    # ------------------------------------------------------------------

    def on_modified(self, event) -> None:
        if not event.is_directory:
            self._handle_change(event.src_path)

    def on_created(self, event) -> None:
        if not event.is_directory:
            self._handle_change(event.src_path)

    def on_deleted(self, event) -> None:
        if not event.is_directory:
            self._handle_change(event.src_path)

    def on_moved(self, event) -> None:
        if not event.is_directory:
            self._handle_change(event.src_path)
            self._handle_change(event.dest_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _should_ignore(self, path: str) -> bool:
        if os.path.splitext(path)[1].lower() not in self._extensions:
            return True
        if self._root is not None:
            path = os.path.relpath(os.path.abspath(path), self._root)
        parts = path.replace("\\", "/").split("/")
        return any(part.startswith(".") and part not in (".", "..") for part in parts[:-1])

    def _handle_change(self, path) -> None:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if self._should_ignore(path):
            return
        logger.debug("[KB watcher] Change detected: %s", path)
        self.schedule()

    def schedule(self) -> None:
        """(Re)arm the debounce timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        if self._handle.refresh_in_background():
            logger.info("[KB watcher] Corpus changed, refreshing index")
        else:
            # a rebuild is already running; try again once it had time to finish
            self.schedule()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class CorpusWatcher:
    """
    Watches a corpus directory and keeps an index handle up to date.

    Usage::

        watcher = CorpusWatcher(handle, corpus_root, include_extensions)
        watcher.start()   # non-blocking; watchdog runs its own thread
        ...
        watcher.stop()
    """

    def __init__(
        self,
        handle,
        corpus_root: str,
        include_extensions: tuple[str, ...],
        debounce_seconds: float = 1.0,
    ) -> None:
        self._corpus_root = os.path.abspath(corpus_root)
        self._handler = CorpusEventHandler(
            handle, include_extensions, debounce_seconds, self._corpus_root,
        )
        self._observer: Optional[Observer] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start watching; does nothing if already started."""
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self._handler, self._corpus_root, recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("[KB watcher] Watching %s", self._corpus_root)

    def stop(self) -> None:
        """Stop the observer and cancel any pending refresh."""
        self._handler.cancel()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("[KB watcher] Stopped")
