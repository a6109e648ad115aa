"""
Atomic file writes with a compare-and-swap content check.
"""

from __future__ import annotations

import logging
import os
import threading
import weakref
from typing import Optional

from .models import content_hash

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".workbench_tmp"

_locks_guard = threading.Lock()
# entries disappear once no writer holds the lock
_path_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()


def _lock_for(path: str) -> threading.Lock:
    with _locks_guard:
        lock = _path_locks.get(path)
        if lock is None:
            lock = _path_locks[path] = threading.Lock()
        return lock


def read_text(path: str) -> str:
    """Read *path* as UTF-8 without translating line endings."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def safe_write(path: str, text: str) -> None:
    """Write *text* to *path* atomically via temp file + rename."""
    abs_path = os.path.abspath(path)
    tmp_path = abs_path + _TMP_SUFFIX
    try:
        with open(tmp_path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(tmp_path, abs_path)
    except Exception:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
        raise


def write_if_unchanged(path: str, expected_hash: Optional[str], text: str) -> bool:
    """
    Atomically replace *path* with *text* if its content still hashes to
    *expected_hash*.

    Returns False, leaving the file untouched, when another writer changed
    it first.  A missing file counts as changed unless *expected_hash* is
    None.
    """
    abs_path = os.path.abspath(path)
    with _lock_for(abs_path):
        if expected_hash is not None:
            try:
                on_disk = read_text(abs_path)
            except FileNotFoundError:
                return False
            if content_hash(on_disk) != expected_hash:
                logger.info("[Patch] %s changed on disk; write refused", path)
                return False
        safe_write(abs_path, text)
    return True
