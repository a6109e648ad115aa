"""
Unit tests for agent_workbench.server.stdio

Covers the request envelope, error codes and the threaded JSON-line loop.
"""

from __future__ import annotations

import io
import json
from unittest.mock import patch

import pytest

from agent_workbench.config import Config
from agent_workbench.kb import IndexHandle
from agent_workbench.server.stdio import StdioServer, _extract_result_warnings


@pytest.fixture
def config(tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "vec.md").write_text("# Vec\nVec supports push and pop.\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("alpha\nbeta\n", encoding="utf-8")
    return Config({
        "workspace_root": str(tmp_path),
        "corpus_root": "docs",
        "data_dir": ".wb",
        "index_cache": False,
        "search": {"max_limit": 5},
    })


@pytest.fixture
def server(config):
    handle = IndexHandle()
    handle.load(config.CORPUS_ROOT)
    return StdioServer(config, handle=handle)


class TestEnvelope:
    def test_tools_call_success(self, server):
        response = server.handle_payload({
            "id": 7, "method": "tools/call",
            "params": {"name": "search_docs", "arguments": {"query": "push"}},
        })
        assert response["request_id"] == "7"
        assert response["ok"] is True
        assert response["warnings"] == []
        assert response["result"]["results"][0]["source_id"] == "vec.md"
        assert "__warnings__" not in response["result"]

    def test_method_name_is_a_tool_name(self, server):
        response = server.handle_payload({
            "id": "r1", "method": "read_file", "params": {"path": "notes.txt"},
        })
        assert response["ok"] is True
        assert response["result"]["content"] == "0001 | alpha\n0002 | beta"

    def test_tool_warnings_move_to_envelope(self, server):
        response = server.handle_payload({
            "id": 1, "method": "search_docs", "params": {"query": "vec", "limit": 99},
        })
        assert response["warnings"] == ["limit capped at 5"]

    def test_tools_list(self, server):
        response = server.handle_payload({"id": 1, "method": "tools/list"})
        names = [tool["name"] for tool in response["result"]["tools"]]
        assert "search_docs" in names and "patch_file" in names

    def test_unknown_tool(self, server):
        response = server.handle_payload({"id": 1, "method": "drop_tables"})
        assert response["ok"] is False
        assert response["error"]["code"] == "UNKNOWN_TOOL"
        assert response["result"] == {}

    def test_tool_error_code_is_reported(self, server):
        response = server.handle_payload({
            "id": 1, "method": "read_file", "params": {"path": "../secret"},
        })
        assert response["error"]["code"] == "PATH_BLOCKED"

    def test_unexpected_exception_is_internal_error(self, server):
        def _boom(arguments):
            raise RuntimeError("boom")

        server.registry.register("boom", _boom)
        response = server.handle_payload({"id": 1, "method": "boom"})
        assert response["error"]["code"] == "INTERNAL_ERROR"
        assert "boom" not in response["error"]["message"]

    @pytest.mark.parametrize("payload, code", [
        ([1, 2], "INVALID_REQUEST"),
        ({"id": 1}, "INVALID_REQUEST"),
        ({"id": 1, "method": ""}, "INVALID_REQUEST"),
        ({"id": 1, "method": "read_file", "params": [1]}, "INVALID_PARAMS"),
        ({"id": 1, "method": "tools/call", "params": {"arguments": {}}}, "INVALID_PARAMS"),
        ({"id": 1, "method": "tools/call",
          "params": {"name": "read_file", "arguments": "x"}}, "INVALID_PARAMS"),
    ])
    def test_invalid_requests(self, server, payload, code):
        response = server.handle_payload(payload)
        assert response["ok"] is False
        assert response["error"]["code"] == code

    def test_invalid_json(self, server):
        response = server.handle_json_line("{not json")
        assert response["error"]["code"] == "INVALID_JSON"
        assert response["request_id"] == "req-000001"

    def test_fallback_request_ids(self, server):
        assert server.extract_request_id("abc") == "abc"
        assert server.extract_request_id(12) == "12"
        assert server.extract_request_id(True) == "req-000001"
        assert server.extract_request_id(None) == "req-000002"

    def test_extract_result_warnings(self):
        result = {"a": 1, "__warnings__": ["w", 3]}
        assert _extract_result_warnings(result) == ["w"]
        assert result == {"a": 1}


class TestServeLoop:
    def test_every_line_gets_one_response(self, server):
        requests = [
            {"id": "a", "method": "search_docs", "params": {"query": "pop"}},
            {"id": "b", "method": "get_instructions"},
            {"id": "c", "method": "index_status"},
        ]
        in_stream = io.StringIO(
            "\n".join(json.dumps(r) for r in requests) + "\n\n{broken\n"
        )
        out_stream = io.StringIO()

        server.serve(in_stream, out_stream)

        frames = [json.loads(line) for line in out_stream.getvalue().splitlines()]
        assert len(frames) == 4
        by_id = {frame["request_id"]: frame for frame in frames}
        assert by_id["a"]["result"]["count"] == 1
        assert "instructions" in by_id["b"]["result"]
        assert by_id["c"]["result"]["state"] == "ready"
        broken = [f for f in frames if f["request_id"] not in ("a", "b", "c")]
        assert broken[0]["error"]["code"] == "INVALID_JSON"


class TestLifecycle:
    def test_start_builds_index_in_background(self, config):
        server = StdioServer(config)
        server.start()
        server.handle.wait(timeout=10)
        try:
            assert server.handle.current.number == 1
            assert server.handle_payload({"id": 1, "method": "index_status"})[
                "result"]["watching"] is False
        finally:
            server.close()

    @patch("agent_workbench.kb.watcher.Observer")
    def test_start_with_watcher(self, mock_observer_cls, config):
        config.WATCH_CORPUS = True
        server = StdioServer(config)
        server.start()
        server.handle.wait(timeout=10)

        assert server.handle_payload({"id": 1, "method": "index_status"})[
            "result"]["watching"] is True
        server.close()
        mock_observer_cls.return_value.stop.assert_called_once()
