"""
Patch metrics — tracks patch outcomes in a JSONL log file.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_METRICS_FILE = "patch_metrics.jsonl"


def _metrics_path(data_dir: str | None = None) -> str:
    """Return the absolute path to the metrics file."""
    base = data_dir or os.path.join(os.getcwd(), ".workbench")
    return os.path.join(os.path.abspath(base), _METRICS_FILE)


def log_patch_metric(data: dict, data_dir: str | None = None) -> None:
    """Append a single patch metric entry to the JSONL log.

    Parameters
    ----------
    data:
        Metric fields to log (path, status, mode, elapsed_ms, ...).
    data_dir:
        Directory holding the log.  Defaults to ``.workbench`` under CWD.
    """
    path = _metrics_path(data_dir)
    entry = {"timestamp": datetime.now(timezone.utc).isoformat()}
    entry.update(data)

    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, sort_keys=True) + "\n")
    except OSError as exc:
        logger.warning("[Patch] Failed to write metrics: %s", exc)


def _read_entries(path: str) -> list[dict]:
    entries: list[dict] = []
    if not os.path.isfile(path):
        return entries
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
    except OSError as exc:
        logger.warning("[Patch] Failed to read metrics: %s", exc)
    return entries


def read_patch_stats(last_n: int = 50, data_dir: str | None = None) -> dict:
    """Compute rolling statistics from the metrics log.

    Returns
    -------
    dict
        ``total_patches``, ``applied_rate``, ``unchanged_rate``,
        ``failure_rate`` (percentages), ``avg_elapsed_ms``, and the
        ``statuses`` / ``modes`` breakdowns in percent.
    """
    entries = _read_entries(_metrics_path(data_dir))[-last_n:]

    if not entries:
        return {
            "total_patches": 0,
            "applied_rate": 0.0,
            "unchanged_rate": 0.0,
            "failure_rate": 0.0,
            "avg_elapsed_ms": 0.0,
            "statuses": {},
            "modes": {},
        }

    total = len(entries)
    statuses = Counter(e.get("status", "unknown") for e in entries)
    modes = Counter(e.get("mode", "unknown") for e in entries)
    elapsed = [e["elapsed_ms"] for e in entries if "elapsed_ms" in e]
    applied = statuses.get("applied", 0)
    unchanged = statuses.get("unchanged", 0)

    return {
        "total_patches": total,
        "applied_rate": applied / total * 100,
        "unchanged_rate": unchanged / total * 100,
        "failure_rate": (total - applied - unchanged) / total * 100,
        "avg_elapsed_ms": sum(elapsed) / len(elapsed) if elapsed else 0.0,
        "statuses": {
            status: count / total * 100
            for status, count in statuses.most_common()
        },
        "modes": {
            mode: count / total * 100
            for mode, count in modes.most_common()
        },
    }
