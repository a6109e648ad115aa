"""
Index generations — the process-wide handle on the current search index.

Each successful build produces a new immutable :class:`Generation`; the
handle swaps its reference to it in a single assignment.  Readers take one
snapshot of the reference per query and never lock, so a query running
during a rebuild finishes against the previous generation and no reader can
observe a half-built index.

Lifecycle is explicit: nothing is built until :meth:`IndexHandle.load` is
called, and queries before that raise :class:`IndexNotReady`.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .cache import cache_path, corpus_fingerprint, load_cached_corpus, save_cached_corpus
from .index import Index, build_index
from .query import ScoredSegment, SearchHit, query, search
from .store import (
    DEFAULT_INCLUDE_EXTENSIONS,
    DEFAULT_MAX_SEGMENT_CHARS,
    CorpusUnavailable,
    LoadedCorpus,
    load_corpus,
)

logger = logging.getLogger(__name__)


class IndexNotReady(Exception):
    """Raised when the index is queried before any generation was loaded."""


@dataclass(frozen=True)
class Generation:
    """An immutable index snapshot."""

    number: int
    index: Index
    corpus_root: str
    built_at: str
    elapsed_seconds: float
    warnings: tuple[str, ...] = ()
    from_cache: bool = False


class IndexHandle:
    """
    Holds the current :class:`Generation` and rebuilds it on request.

    Parameters
    ----------
    include_extensions:
        Corpus file extensions to index.
    max_segment_chars:
        Segment size bound passed to the document store.
    cache_dir:
        Directory for the on-disk corpus cache, or None to disable caching.
    progress_callback:
        Passed to :func:`load_corpus` when a build reads the corpus.
    """

    def __init__(
        self,
        include_extensions: tuple[str, ...] = DEFAULT_INCLUDE_EXTENSIONS,
        max_segment_chars: int = DEFAULT_MAX_SEGMENT_CHARS,
        cache_dir: Optional[str] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> None:
        self._include_extensions = tuple(include_extensions)
        self._max_segment_chars = max_segment_chars
        self._cache_dir = cache_dir
        self._progress_callback = progress_callback
        self._corpus_root: Optional[str] = None
        self._current: Optional[Generation] = None
        self._refresh_lock = threading.Lock()
        self._building = False
        self._last_error: Optional[str] = None
        self._thread: Optional[threading.Thread] = None
        self._thread_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self, corpus_root: str) -> Generation:
        """
        Build the first generation from *corpus_root* (blocking).

        Calling ``load`` again with a different root re-targets the handle.

        Raises
        ------
        CorpusUnavailable
            If the corpus root is missing or unreadable.  Any previously
            installed generation is kept.
        """
        self._corpus_root = os.path.abspath(corpus_root)
        return self.refresh()

    def load_in_background(self, corpus_root: str) -> bool:
        """Like :meth:`load`, but build on a daemon thread."""
        self._corpus_root = os.path.abspath(corpus_root)
        return self.refresh_in_background()

    def refresh(self) -> Generation:
        """Rebuild from the current corpus root and install the result."""
        if self._corpus_root is None:
            raise IndexNotReady("No corpus loaded; call load() first.")
        with self._refresh_lock:
            self._building = True
            try:
                generation = self._build(self._corpus_root)
            except CorpusUnavailable as exc:
                self._last_error = str(exc)
                logger.error("[KB] Index build failed: %s", exc)
                raise
            finally:
                self._building = False
            self._current = generation
            self._last_error = None
        logger.info(
            "[KB] Generation %d ready: %d documents, %d segments (%.2fs)",
            generation.number, generation.index.document_count,
            generation.index.segment_count, generation.elapsed_seconds,
        )
        return generation

    def refresh_in_background(self) -> bool:
        """
        Start a rebuild on a daemon thread.

        Returns False without starting anything when a background rebuild
        is already running.
        """
        if self._corpus_root is None:
            raise IndexNotReady("No corpus loaded; call load() first.")

        def _run() -> None:
            try:
                self.refresh()
            except CorpusUnavailable:
                pass  # recorded in status() by refresh()
            except Exception as exc:
                self._last_error = str(exc)
                logger.exception("[KB] Background refresh failed: %s", exc)

        with self._thread_lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            self._thread = threading.Thread(target=_run, daemon=True, name="kb-refresh")
            self._thread.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until a running background rebuild finishes."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _build(self, corpus_root: str) -> Generation:
        t0 = time.perf_counter()
        corpus: Optional[LoadedCorpus] = None
        from_cache = False
        fingerprint = ""
        if self._cache_dir:
            if not os.path.isdir(corpus_root):
                raise CorpusUnavailable(f"Corpus root not found: {corpus_root}")
            fingerprint = corpus_fingerprint(
                corpus_root, self._include_extensions, self._max_segment_chars,
            )
            corpus = load_cached_corpus(cache_path(self._cache_dir), fingerprint)
            from_cache = corpus is not None

        if corpus is None:
            corpus = load_corpus(
                corpus_root, self._include_extensions, self._max_segment_chars,
                progress_callback=self._progress_callback,
            )
            if self._cache_dir:
                save_cached_corpus(cache_path(self._cache_dir), fingerprint, corpus)

        index = build_index(corpus.documents)
        previous = self._current.number if self._current is not None else 0
        return Generation(
            number=previous + 1,
            index=index,
            corpus_root=corpus_root,
            built_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            elapsed_seconds=round(time.perf_counter() - t0, 3),
            warnings=corpus.warnings,
            from_cache=from_cache,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def current(self) -> Optional[Generation]:
        return self._current

    @property
    def corpus_root(self) -> Optional[str]:
        return self._corpus_root

    def require(self) -> Generation:
        """Return the current generation or raise :class:`IndexNotReady`."""
        generation = self._current
        if generation is None:
            if self._building:
                raise IndexNotReady("The documentation index is still being built.")
            if self._last_error:
                raise IndexNotReady(f"Search unavailable: {self._last_error}")
            raise IndexNotReady("No corpus loaded; call load() first.")
        return generation

    def query(self, text: str, top_k: int) -> list[ScoredSegment]:
        return query(self.require().index, text, top_k)

    def search(self, text: str, top_k: int) -> list[SearchHit]:
        return search(self.require().index, text, top_k)

    def status(self) -> dict:
        """Return a JSON-serialisable description of the handle's state."""
        generation = self._current
        if self._building:
            state = "building"
        elif generation is not None:
            state = "ready"
        elif self._last_error:
            state = "error"
        else:
            state = "empty"

        info: dict = {
            "state": state,
            "corpus_root": self._corpus_root,
            "last_error": self._last_error,
            "generation": None,
        }
        if generation is not None:
            info["generation"] = {
                "number": generation.number,
                "corpus_root": generation.corpus_root,
                "built_at": generation.built_at,
                "elapsed_seconds": generation.elapsed_seconds,
                "document_count": generation.index.document_count,
                "segment_count": generation.index.segment_count,
                "term_count": generation.index.term_count,
                "avg_segment_length": round(generation.index.avg_segment_length, 3),
                "from_cache": generation.from_cache,
                "warnings": list(generation.warnings),
            }
        return info
