"""
On-disk cache of a loaded corpus, keyed by a fingerprint of the corpus files
and of the tokenization/segmentation settings.

The cache only saves the cost of reading and segmenting documents; the index
itself is always rebuilt from the cached documents.  A cache that is missing,
stale or unreadable is simply ignored.
"""

from __future__ import annotations

import hashlib
import logging
import os
import pickle
from typing import Optional

from .store import LoadedCorpus, walk_corpus
from .tokenizer import TOKENIZER_VERSION

logger = logging.getLogger(__name__)

CACHE_FILENAME = "index_cache.pkl"
_CACHE_FORMAT = 1


def cache_path(data_dir: str) -> str:
    return os.path.join(data_dir, CACHE_FILENAME)


def corpus_fingerprint(
    corpus_root: str,
    include_extensions: tuple[str, ...],
    max_segment_chars: int,
) -> str:
    """Hash the candidate files' (path, size, mtime) plus the index settings."""
    root = os.path.abspath(corpus_root)
    digest = hashlib.sha256()
    digest.update(f"{_CACHE_FORMAT}|{TOKENIZER_VERSION}|{max_segment_chars}|".encode())
    digest.update(",".join(sorted(e.lower() for e in include_extensions)).encode())
    digest.update(root.encode("utf-8"))
    for rel_path in walk_corpus(root, include_extensions):
        try:
            st = os.stat(os.path.join(root, *rel_path.split("/")))
        except OSError:
            continue
        digest.update(f"\n{rel_path}|{st.st_size}|{st.st_mtime_ns}".encode("utf-8"))
    return digest.hexdigest()


def load_cached_corpus(path: str, fingerprint: str) -> Optional[LoadedCorpus]:
    """Return the cached corpus if *path* holds one matching *fingerprint*."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "rb") as fh:
            payload = pickle.load(fh)
    except Exception as exc:
        logger.warning("[KB] Ignoring unreadable index cache %s: %s", path, exc)
        return None
    if not isinstance(payload, dict) or payload.get("fingerprint") != fingerprint:
        logger.info("[KB] Index cache outdated, rebuilding")
        return None
    corpus = payload.get("corpus")
    if not isinstance(corpus, LoadedCorpus):
        return None
    logger.info("[KB] Loaded %d documents from index cache", len(corpus.documents))
    return corpus


def save_cached_corpus(path: str, fingerprint: str, corpus: LoadedCorpus) -> None:
    """Write *corpus* to *path* atomically; failures are logged, not raised."""
    tmp_path = path + ".tmp"
    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(tmp_path, "wb") as fh:
            pickle.dump(
                {"fingerprint": fingerprint, "corpus": corpus},
                fh, protocol=pickle.HIGHEST_PROTOCOL,
            )
        os.replace(tmp_path, path)
        logger.debug("[KB] Saved index cache to %s", path)
    except (OSError, pickle.PicklingError) as exc:
        logger.warning("[KB] Failed to save index cache: %s", exc)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
