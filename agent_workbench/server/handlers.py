"""
Tool handlers — the operations an agent can call through the server.

Each handler takes the request's ``arguments`` mapping and returns a JSON
serialisable dict.  Bad input and unavailable subsystems raise
:class:`ToolDispatchError`; patch outcomes, including failures, are
returned as results.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional

from ..config import Config
from ..editing import (
    EditRequest,
    PatchResult,
    PatchStatus,
    content_hash,
    patch,
    read_text,
    strict_validators,
    write_if_unchanged,
)
from ..editing.metrics import log_patch_metric, read_patch_stats
from ..editing.resolver import line_bounds
from ..executor import run_verify
from ..kb import IndexHandle, IndexNotReady
from ..kb.query import search
from ..kb.store import CorpusUnavailable
from .registry import ToolDispatchError, ToolRegistry

logger = logging.getLogger(__name__)

INSTRUCTIONS = """\
# Workbench usage manual

## Finding information
- `search_docs(query, limit?)` ranks sections of the local reference
  documentation by relevance. Results carry `source_id` (the document path),
  `heading` and the section text in `excerpt`. Use specific terms; common
  English words are ignored.
- `index_status()` tells whether the documentation index is ready.
  `refresh_index(wait?)` rebuilds it after the documents changed.

## Editing files
1. Always `read_file(path)` first. Keep the returned `content_hash`.
2. Call `patch_file` with exactly one way of locating the edit:
   - `anchor`: text copied from the file that occurs exactly once.
     Indentation and spacing differences are tolerated, line structure is
     not. Line-number prefixes (`0001 | `) are not part of the file.
   - `start_line` and `end_line`: an inclusive 1-based line range; the
     replacement takes the place of those whole lines.
   Pass `expected_hash` so an edit against an outdated read is refused.
3. Read the `status` of the result:
   - `applied`: done. The result carries the new `content_hash`.
   - `unchanged`: the file already contains the replacement.
   - `anchor_not_found`: re-read the file and copy the anchor exactly.
     A `hint` explains near misses.
   - `anchor_ambiguous`: add surrounding lines; `candidate_lines` lists
     where the anchor matched.
   - `range_out_of_bounds`: the range is outside the file.
   - `stale_span`: the file changed since you read it. Read it again.
   - `validation_failed`: the edit would break the file (strict mode).
4. Pass `verify: true`, or call `run_check()`, to run the project's
   configured build check after editing.

Never rewrite whole files when a targeted patch will do.
"""


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------

def _require_str(arguments: dict, key: str, allow_empty: bool = False) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or (not allow_empty and not value):
        raise ToolDispatchError("INVALID_PARAMS", f"'{key}' must be a non-empty string.")
    return value


def _optional_str(arguments: dict, key: str) -> Optional[str]:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ToolDispatchError("INVALID_PARAMS", f"'{key}' must be a string.")
    return value


def _optional_int(arguments: dict, key: str) -> Optional[int]:
    value = arguments.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ToolDispatchError("INVALID_PARAMS", f"'{key}' must be an integer.")
    return value


def _optional_bool(arguments: dict, key: str, default: bool = False) -> bool:
    value = arguments.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ToolDispatchError("INVALID_PARAMS", f"'{key}' must be a boolean.")
    return value


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class WorkbenchTools:
    """
    The tool implementations, bound to one configuration and one index handle.

    Parameters
    ----------
    config:
        Resolved :class:`Config`.
    handle:
        The index handle queries are served from.
    verify_runner:
        Callable ``(command, cwd, timeout) -> dict``; defaults to
        :func:`run_verify`.
    """

    def __init__(
        self,
        config: Config,
        handle: IndexHandle,
        verify_runner: Callable[[str, str, int], dict] = run_verify,
        watcher=None,
    ) -> None:
        self._config = config
        self._handle = handle
        self._verify_runner = verify_runner
        self.watcher = watcher
        self._workspace = os.path.realpath(config.WORKSPACE_ROOT)

    def register(self, registry: ToolRegistry) -> None:
        registry.register("search_docs", self.search_docs,
                          "Rank local documentation sections for a free-text query.")
        registry.register("read_file", self.read_file,
                          "Read a workspace file with numbered lines and its content hash.")
        registry.register("patch_file", self.patch_file,
                          "Replace an anchored snippet or a line range in a workspace file.")
        registry.register("refresh_index", self.refresh_index,
                          "Rebuild the documentation index.")
        registry.register("index_status", self.index_status,
                          "Report the state of the documentation index.")
        registry.register("patch_stats", self.patch_stats,
                          "Rolling statistics of recent patch outcomes.")
        registry.register("run_check", self.run_check,
                          "Run the configured build/verify command.")
        registry.register("get_instructions", self.get_instructions,
                          "Usage manual for these tools.")

    # -- paths ---------------------------------------------------------------

    def resolve_path(self, path: str) -> tuple[str, str]:
        """Return ``(absolute, workspace-relative)`` for *path* or raise PATH_BLOCKED."""
        candidate = os.path.realpath(os.path.join(self._workspace, path))
        try:
            inside = os.path.commonpath([self._workspace, candidate]) == self._workspace
        except ValueError:
            inside = False
        if not inside:
            logger.warning("[Server] Blocked path outside workspace: %s", path)
            raise ToolDispatchError(
                "PATH_BLOCKED", f"Path is outside the workspace: {path}",
            )
        rel = os.path.relpath(candidate, self._workspace).replace(os.sep, "/")
        return candidate, rel

    def _read_workspace_file(self, path: str) -> tuple[str, str, str]:
        abs_path, rel = self.resolve_path(path)
        if not os.path.isfile(abs_path):
            raise ToolDispatchError("INVALID_PARAMS", f"File not found: {rel}")
        try:
            text = read_text(abs_path)
        except UnicodeDecodeError:
            raise ToolDispatchError("INVALID_PARAMS", f"{rel} is not UTF-8 text.")
        except OSError as exc:
            raise ToolDispatchError("INVALID_PARAMS", f"Cannot read {rel}: {exc.strerror}")
        return abs_path, rel, text

    # -- search ----------------------------------------------------------------

    def search_docs(self, arguments: dict) -> dict:
        text = _require_str(arguments, "query", allow_empty=True)
        limit = _optional_int(arguments, "limit")
        warnings: list[str] = []
        if limit is None:
            limit = self._config.SEARCH_DEFAULT_LIMIT
        elif limit < 1:
            raise ToolDispatchError("INVALID_PARAMS", "'limit' must be at least 1.")
        elif limit > self._config.SEARCH_MAX_LIMIT:
            warnings.append(f"limit capped at {self._config.SEARCH_MAX_LIMIT}")
            limit = self._config.SEARCH_MAX_LIMIT

        try:
            generation = self._handle.require()
        except IndexNotReady as exc:
            raise ToolDispatchError("INDEX_NOT_READY", str(exc))
        hits = search(generation.index, text, limit)
        return {
            "query": text,
            "count": len(hits),
            "generation": generation.number,
            "results": [hit.to_dict() for hit in hits],
            "__warnings__": warnings,
        }

    def refresh_index(self, arguments: dict) -> dict:
        wait = _optional_bool(arguments, "wait", default=False)
        root = self._handle.corpus_root or self._config.CORPUS_ROOT
        if not wait:
            if self._handle.corpus_root is None:
                scheduled = self._handle.load_in_background(root)
            else:
                scheduled = self._handle.refresh_in_background()
            return {"scheduled": scheduled, "status": self._handle.status()}
        try:
            if self._handle.corpus_root is None:
                self._handle.load(root)
            else:
                self._handle.refresh()
        except CorpusUnavailable as exc:
            raise ToolDispatchError("CORPUS_UNAVAILABLE", str(exc))
        return {"scheduled": False, "status": self._handle.status()}

    def index_status(self, arguments: dict) -> dict:
        status = self._handle.status()
        status["watching"] = bool(self.watcher is not None and self.watcher.is_running)
        return status

    # -- files -----------------------------------------------------------------

    def read_file(self, arguments: dict) -> dict:
        path = _require_str(arguments, "path")
        start = _optional_int(arguments, "start_line")
        end = _optional_int(arguments, "end_line")
        _, rel, text = self._read_workspace_file(path)

        starts, ends = line_bounds(text)
        line_count = len(starts)
        first = 1 if start is None else start
        last = line_count if end is None else min(end, line_count)
        if first < 1 or (end is not None and end < first) or (line_count and first > line_count):
            raise ToolDispatchError(
                "INVALID_PARAMS",
                f"Line range {first}-{end if end is not None else line_count} is "
                f"outside the file (1-{line_count}).",
            )

        numbered = []
        for i in range(first - 1, last):
            line = text[starts[i]:ends[i]].rstrip("\r\n")
            numbered.append(f"{i + 1:04d} | {line}")
        return {
            "path": rel,
            "content": "\n".join(numbered),
            "start_line": first if line_count else 0,
            "end_line": last,
            "line_count": line_count,
            "content_hash": content_hash(text),
        }

    def patch_file(self, arguments: dict) -> dict:
        t0 = time.perf_counter()
        path = _require_str(arguments, "path")
        replacement = _require_str(arguments, "replacement", allow_empty=True)
        verify = _optional_bool(arguments, "verify")
        try:
            edit = EditRequest(
                replacement=replacement,
                anchor=_optional_str(arguments, "anchor"),
                start_line=_optional_int(arguments, "start_line"),
                end_line=_optional_int(arguments, "end_line"),
                path=path,
                expected_hash=_optional_str(arguments, "expected_hash"),
            )
        except ValueError as exc:
            raise ToolDispatchError("INVALID_PARAMS", str(exc))

        abs_path, rel, text = self._read_workspace_file(path)
        validators = strict_validators(abs_path) if self._config.STRICT_APPLY else ()
        result = patch(rel, text, edit, validators)

        new_hash = content_hash(text)
        if result.applied:
            if write_if_unchanged(abs_path, new_hash, result.new_text):
                new_hash = content_hash(result.new_text)
                logger.info("[Patch] %s: applied at lines %d-%d", rel,
                            result.span.start_line, result.span.end_line)
            else:
                result = PatchResult(
                    status=PatchStatus.STALE_SPAN,
                    message=(
                        f"{rel} was modified by another writer while the patch "
                        "was being applied. Read it again and retry."
                    ),
                )

        elapsed_ms = round((time.perf_counter() - t0) * 1000, 2)
        if self._config.METRICS_ENABLED:
            log_patch_metric(
                {
                    "path": rel,
                    "status": result.status.value,
                    "mode": "range" if edit.is_range else "anchor",
                    "elapsed_ms": elapsed_ms,
                },
                self._config.DATA_DIR,
            )

        data = result.to_dict()
        data["path"] = rel
        data["content_hash"] = new_hash
        if verify and result.applied:
            data["verify"] = self._run_verify()
        return data

    def patch_stats(self, arguments: dict) -> dict:
        last_n = _optional_int(arguments, "last_n")
        if last_n is None:
            last_n = 50
        if last_n < 1:
            raise ToolDispatchError("INVALID_PARAMS", "'last_n' must be at least 1.")
        return read_patch_stats(last_n, self._config.DATA_DIR)

    # -- misc ------------------------------------------------------------------

    def _run_verify(self) -> dict:
        return self._verify_runner(
            self._config.VERIFY_COMMAND,
            self._config.WORKSPACE_ROOT,
            self._config.VERIFY_TIMEOUT,
        )

    def run_check(self, arguments: dict) -> dict:
        return self._run_verify()

    def get_instructions(self, arguments: dict) -> dict:
        return {"instructions": INSTRUCTIONS}
