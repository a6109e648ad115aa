"""
Unit tests for agent_workbench.editing.metrics
"""

import json

import pytest

from agent_workbench.editing.metrics import log_patch_metric, read_patch_stats


class TestLogPatchMetric:
    def test_appends_jsonl_entries(self, tmp_path):
        log_patch_metric({"path": "a.py", "status": "applied"}, data_dir=str(tmp_path))
        log_patch_metric({"path": "b.py", "status": "stale_span"}, data_dir=str(tmp_path))

        lines = (tmp_path / "patch_metrics.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["path"] == "a.py"
        assert "timestamp" in first

    def test_creates_missing_directory(self, tmp_path):
        data_dir = tmp_path / "nested" / "data"
        log_patch_metric({"status": "applied"}, data_dir=str(data_dir))
        assert (data_dir / "patch_metrics.jsonl").is_file()


class TestReadPatchStats:
    def test_empty(self, tmp_path):
        stats = read_patch_stats(data_dir=str(tmp_path))
        assert stats["total_patches"] == 0
        assert stats["statuses"] == {}
        assert stats["failure_rate"] == 0.0

    def test_rates(self, tmp_path):
        for status, mode, ms in (
            ("applied", "anchor", 10),
            ("applied", "range", 20),
            ("unchanged", "anchor", 30),
            ("anchor_not_found", "anchor", 40),
        ):
            log_patch_metric({"status": status, "mode": mode, "elapsed_ms": ms},
                             data_dir=str(tmp_path))

        stats = read_patch_stats(data_dir=str(tmp_path))
        assert stats["total_patches"] == 4
        assert stats["applied_rate"] == pytest.approx(50.0)
        assert stats["unchanged_rate"] == pytest.approx(25.0)
        assert stats["failure_rate"] == pytest.approx(25.0)
        assert stats["avg_elapsed_ms"] == pytest.approx(25.0)
        assert stats["modes"] == {"anchor": 75.0, "range": 25.0}

    def test_last_n_window_and_bad_lines(self, tmp_path):
        log_patch_metric({"status": "stale_span"}, data_dir=str(tmp_path))
        with open(tmp_path / "patch_metrics.jsonl", "a", encoding="utf-8") as f:
            f.write("not json\n\n")
        log_patch_metric({"status": "applied"}, data_dir=str(tmp_path))

        stats = read_patch_stats(last_n=1, data_dir=str(tmp_path))
        assert stats["total_patches"] == 1
        assert stats["statuses"] == {"applied": 100.0}
