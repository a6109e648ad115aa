"""
`workbench` command line.

Commands
--------
workbench serve                     -- JSON-line tool server on stdin/stdout
workbench serve --watch             -- ... and refresh the index when docs change
workbench index                     -- build (and cache) the documentation index
workbench index --watch             -- build, then keep rebuilding on changes
workbench search "<query>"          -- ranked documentation search
workbench search "<query>" --top-k 5 --json
workbench status                    -- configuration, cache and patch summary
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Optional

from tqdm import tqdm

from .config import Config
from .editing.metrics import read_patch_stats
from .kb import IndexHandle, IndexNotReady
from .kb.cache import cache_path, corpus_fingerprint, load_cached_corpus
from .kb.store import CorpusUnavailable
from .kb.watcher import CorpusWatcher
from .logs import setup_logger

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace) -> Config:
    config = Config.load(args.config)
    config.override(
        workspace_root=args.workspace,
        corpus_root=args.corpus,
        data_dir=args.data_dir,
        log_level=args.log_level,
    )
    if getattr(args, "watch", False):
        config.WATCH_CORPUS = True
    if getattr(args, "strict", False):
        config.STRICT_APPLY = True
    return config


def _make_handle(config: Config, progress_callback=None) -> IndexHandle:
    return IndexHandle(
        include_extensions=tuple(config.INCLUDE_EXTENSIONS),
        max_segment_chars=config.MAX_SEGMENT_CHARS,
        cache_dir=config.DATA_DIR if config.INDEX_CACHE else None,
        progress_callback=progress_callback,
    )


def _print_hits(hits: list[dict], query: str) -> None:
    if not hits:
        print(f"  (no results for: {query})")
        return
    print(f"\n{query}  [{len(hits)} result(s)]")
    print("-" * 60)
    for hit in hits:
        location = hit["source_id"]
        if hit["heading"]:
            location += f"  > {hit['heading']}"
        print(f"  {hit['score']:>9.4f}  {location}")
        first_line = hit["excerpt"].strip().splitlines()[0] if hit["excerpt"].strip() else ""
        if first_line:
            print(f"             {first_line[:100]}")


def _watch_until_interrupted(handle: IndexHandle, config: Config) -> None:
    watcher = CorpusWatcher(
        handle, config.CORPUS_ROOT, tuple(config.INCLUDE_EXTENSIONS),
        config.WATCH_DEBOUNCE_SECONDS,
    )
    watcher.start()
    print("\nWatching for changes... (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nWatcher stopped.")
    finally:
        watcher.stop()


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_serve(args: argparse.Namespace, config: Config) -> int:
    from .server import StdioServer

    server = StdioServer(config)
    server.start()
    try:
        server.serve(sys.stdin, sys.stdout)
    except KeyboardInterrupt:
        logger.info("[Server] Interrupted")
    finally:
        server.close()
    return 0


def _cmd_index(args: argparse.Namespace, config: Config) -> int:
    print(f"Indexing corpus: {config.CORPUS_ROOT}")
    pbar = tqdm(total=None, unit="file", desc="Reading", file=sys.stderr)

    def _progress(current: int, total: int, doc_id: str) -> None:
        if pbar.total != total:
            pbar.total = total
            pbar.refresh()
        pbar.set_postfix_str(os.path.basename(doc_id), refresh=False)
        pbar.update(1)

    handle = _make_handle(config, progress_callback=_progress)
    try:
        generation = handle.load(config.CORPUS_ROOT)
    except CorpusUnavailable as exc:
        pbar.close()
        print(f"Index failed: {exc}", file=sys.stderr)
        return 1
    pbar.close()

    index = generation.index
    print(
        f"\nIndex complete{' (from cache)' if generation.from_cache else ''}:\n"
        f"  Documents: {index.document_count}\n"
        f"  Segments:  {index.segment_count}\n"
        f"  Terms:     {index.term_count}\n"
        f"  Warnings:  {len(generation.warnings)}\n"
        f"  Time:      {generation.elapsed_seconds:.2f}s"
    )
    for warning in generation.warnings:
        print(f"  ! {warning}")

    if args.watch:
        _watch_until_interrupted(handle, config)
    return 0


def _cmd_search(args: argparse.Namespace, config: Config) -> int:
    if args.top_k < 1:
        print("--top-k must be at least 1", file=sys.stderr)
        return 2
    handle = _make_handle(config)
    try:
        handle.load(config.CORPUS_ROOT)
        t0 = time.perf_counter()
        hits = [hit.to_dict() for hit in handle.search(args.query, args.top_k)]
        elapsed_ms = (time.perf_counter() - t0) * 1000
    except (CorpusUnavailable, IndexNotReady) as exc:
        print(f"Search unavailable: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({"query": args.query, "count": len(hits), "results": hits},
                         indent=2, sort_keys=True))
    else:
        _print_hits(hits, args.query)
        print(f"\n  Query time: {elapsed_ms:.1f}ms")
    return 0


def _cmd_status(args: argparse.Namespace, config: Config) -> int:
    print("\nWorkbench Status")
    print("=" * 40)
    for key, value in config.as_dict().items():
        print(f"  {key:<24} {value}")

    cache_state = "disabled"
    if config.INDEX_CACHE:
        path = cache_path(config.DATA_DIR)
        if not os.path.isfile(path):
            cache_state = "missing"
        elif not os.path.isdir(config.CORPUS_ROOT):
            cache_state = "corpus missing"
        else:
            fingerprint = corpus_fingerprint(
                config.CORPUS_ROOT, tuple(config.INCLUDE_EXTENSIONS),
                config.MAX_SEGMENT_CHARS,
            )
            cached = load_cached_corpus(path, fingerprint)
            cache_state = (f"current ({len(cached.documents)} documents)"
                           if cached is not None else "stale")
    print(f"\n  {'index cache':<24} {cache_state}")

    stats = read_patch_stats(50, config.DATA_DIR)
    print(f"  {'recent patches':<24} {stats['total_patches']}")
    if stats["total_patches"]:
        print(f"  {'applied rate':<24} {stats['applied_rate']:.1f}%")
        print(f"  {'failure rate':<24} {stats['failure_rate']:.1f}%")
    print()
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workbench",
        description="Local documentation search and safe file patching for coding agents",
    )
    parser.add_argument("--config", default=None, help="Path to a .workbench.yaml file")
    parser.add_argument("--workspace", default=None, help="Workspace root (file tools are confined to it)")
    parser.add_argument("--corpus", default=None, help="Documentation corpus directory")
    parser.add_argument("--data-dir", dest="data_dir", default=None,
                        help="Directory for logs, index cache and metrics")
    parser.add_argument("--log-level", dest="log_level", default=None,
                        choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- serve ---
    serve_p = subparsers.add_parser("serve", help="Run the JSON-line tool server on stdio")
    serve_p.add_argument("--watch", action="store_true",
                         help="Refresh the index when corpus files change")
    serve_p.add_argument("--strict", action="store_true",
                         help="Reject patches that break UTF-8 or introduce syntax errors")
    serve_p.set_defaults(func=_cmd_serve)

    # --- index ---
    index_p = subparsers.add_parser("index", help="Build the documentation index")
    index_p.add_argument("--watch", action="store_true",
                         help="After indexing, keep rebuilding when files change")
    index_p.set_defaults(func=_cmd_index)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Search the documentation")
    search_p.add_argument("query", help="Free-text query")
    search_p.add_argument("--top-k", dest="top_k", type=int, default=None,
                          help="Number of results (default: search.default_limit)")
    search_p.add_argument("--json", action="store_true", help="Print results as JSON")
    search_p.set_defaults(func=_cmd_search)

    # --- status ---
    status_p = subparsers.add_parser("status", help="Show configuration and index cache state")
    status_p.set_defaults(func=_cmd_status)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the ``workbench`` console script."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = _load_config(args)
    setup_logger(os.path.join(config.DATA_DIR, "logs"), config.LOG_LEVEL)

    if getattr(args, "top_k", 0) is None:
        args.top_k = config.SEARCH_DEFAULT_LIMIT
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
