"""
JSON-line STDIO server.

One request object per input line::

    {"id": 1, "method": "tools/call", "params": {"name": "search_docs", "arguments": {"query": "vec"}}}
    {"id": 2, "method": "read_file", "params": {"path": "src/main.rs"}}

Requests are dispatched on a thread pool; each response is written as one
JSON line (sorted keys) as soon as it is ready, so responses may arrive out
of order.  Clients match them by ``request_id``.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, TextIO

from ..config import Config
from ..kb import IndexHandle
from ..kb.watcher import CorpusWatcher
from .handlers import WorkbenchTools
from .registry import ToolDispatchError, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict


def success_response(request_id: str, result: dict, warnings: Optional[list] = None) -> dict:
    return {
        "request_id": request_id,
        "ok": True,
        "result": result,
        "warnings": warnings or [],
    }


def error_response(request_id: str, code: str, message: str) -> dict:
    return {
        "request_id": request_id,
        "ok": False,
        "result": {},
        "warnings": [],
        "error": {"code": code, "message": message},
    }


def _extract_result_warnings(result: dict) -> list[str]:
    raw = result.pop("__warnings__", None)
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, str)]


class StdioServer:
    """
    Routes JSON-line requests to the registered tools.

    Parameters
    ----------
    config:
        Resolved configuration.
    handle:
        Index handle to serve from.  A new one is created from *config*
        when omitted.
    tools:
        Tool implementations; built from *config* and *handle* when omitted.
    """

    def __init__(
        self,
        config: Config,
        handle: Optional[IndexHandle] = None,
        tools: Optional[WorkbenchTools] = None,
    ) -> None:
        self._config = config
        self._handle = handle or IndexHandle(
            include_extensions=tuple(config.INCLUDE_EXTENSIONS),
            max_segment_chars=config.MAX_SEGMENT_CHARS,
            cache_dir=config.DATA_DIR if config.INDEX_CACHE else None,
        )
        self._watcher: Optional[CorpusWatcher] = None
        self._tools = tools or WorkbenchTools(config, self._handle)
        self._registry = ToolRegistry()
        self._tools.register(self._registry)
        self._request_counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        self._output_lock = threading.Lock()

    @property
    def handle(self) -> IndexHandle:
        return self._handle

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin building the index and, if configured, watching the corpus."""
        logger.info("[Server] Workspace %s, corpus %s",
                    self._config.WORKSPACE_ROOT, self._config.CORPUS_ROOT)
        self._handle.load_in_background(self._config.CORPUS_ROOT)
        if self._config.WATCH_CORPUS:
            self._watcher = CorpusWatcher(
                self._handle,
                self._config.CORPUS_ROOT,
                tuple(self._config.INCLUDE_EXTENSIONS),
                self._config.WATCH_DEBOUNCE_SECONDS,
            )
            try:
                self._watcher.start()
            except OSError as exc:
                logger.warning("[Server] Corpus watcher not started: %s", exc)
                self._watcher = None
            self._tools.watcher = self._watcher

    def close(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
            self._tools.watcher = None

    def serve(self, in_stream: TextIO, out_stream: TextIO) -> None:
        """Process JSON-line requests until *in_stream* is exhausted."""
        workers = max(1, self._config.SERVER_WORKERS)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tool") as pool:
            for raw_line in in_stream:
                line = raw_line.strip()
                if not line:
                    continue
                pool.submit(self._serve_line, line, out_stream)

    def _serve_line(self, line: str, out_stream: TextIO) -> None:
        try:
            response = self.handle_json_line(line)
        except Exception:
            logger.exception("[Server] Unhandled error while serving a request")
            response = error_response(self.next_request_id(), "INTERNAL_ERROR",
                                      "Unhandled server error.")
        frame = json.dumps(response, sort_keys=True)
        with self._output_lock:
            out_stream.write(frame + "\n")
            out_stream.flush()

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handle_json_line(self, raw_line: str) -> dict:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            logger.warning("[Server] Invalid JSON request (%d chars)", len(raw_line))
            return error_response(self.next_request_id(), "INVALID_JSON",
                                  "Request must be valid JSON.")
        return self.handle_payload(payload)

    def handle_payload(self, payload: object) -> dict:
        """Validate and dispatch a parsed payload."""
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            return parsed
        request = parsed

        if request.method == "tools/list":
            return success_response(request.request_id, {"tools": self._registry.describe()})

        if request.method == "tools/call":
            name = request.params.get("name")
            arguments = request.params.get("arguments", {})
            if not isinstance(name, str) or not name:
                return error_response(request.request_id, "INVALID_PARAMS",
                                      "tools/call params.name must be a non-empty string.")
            if not isinstance(arguments, dict):
                return error_response(request.request_id, "INVALID_PARAMS",
                                      "tools/call params.arguments must be an object.")
        else:
            name = request.method
            arguments = request.params

        try:
            result = self._registry.dispatch(name, arguments)
        except ToolDispatchError as error:
            logger.info("[Server] %s %s -> %s", request.request_id, name, error.code)
            return error_response(request.request_id, error.code, error.message)
        except Exception:
            logger.exception("[Server] Tool %s failed", name)
            return error_response(request.request_id, "INTERNAL_ERROR",
                                  "Unhandled server error while executing tool.")

        warnings = _extract_result_warnings(result)
        logger.debug("[Server] %s %s -> ok", request.request_id, name)
        return success_response(request.request_id, result, warnings)

    def parse_request(self, payload: object):
        """Return a :class:`Request`, or an error envelope for invalid input."""
        if not isinstance(payload, dict):
            return error_response(self.next_request_id(), "INVALID_REQUEST",
                                  "Request must be an object.")

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})
        if params is None:
            params = {}

        if not isinstance(method, str) or not method:
            return error_response(request_id, "INVALID_REQUEST",
                                  "Request method must be a non-empty string.")
        if not isinstance(params, dict):
            return error_response(request_id, "INVALID_PARAMS",
                                  "Request params must be an object.")
        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        """Generate fallback request IDs for invalid/missing IDs."""
        with self._counter_lock:
            return f"req-{next(self._request_counter):06d}"
