"""
Configuration — loads settings from .workbench.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

from __future__ import annotations

import logging
import os

import yaml

from .kb.store import DEFAULT_INCLUDE_EXTENSIONS, DEFAULT_MAX_SEGMENT_CHARS

logger = logging.getLogger(__name__)

_ENV_PREFIX = "WORKBENCH_"

_DEFAULTS = {
    "workspace_root": ".",
    "corpus_root": "docs",
    "data_dir": ".workbench",
    "include_extensions": list(DEFAULT_INCLUDE_EXTENSIONS),
    "max_segment_chars": DEFAULT_MAX_SEGMENT_CHARS,
    "search_default_limit": 15,
    "search_max_limit": 50,
    "index_cache": True,
    "watch_corpus": False,
    "watch_debounce_seconds": 1.0,
    "strict_apply": False,
    "verify_command": "",
    "verify_timeout": 300,
    "log_level": "INFO",
    "metrics_enabled": True,
    "server_workers": 4,
}

# Config file search locations
_CONFIG_FILENAMES = [".workbench.yaml", ".workbench.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        logger.warning("[Config] Config file not found: %s", explicit_path)
        return None

    for d in (os.getcwd(), os.path.expanduser("~")):
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("[Config] Ignoring unreadable config %s: %s", path, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("[Config] Ignoring %s: top level is not a mapping", path)
        return {}
    return data


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _to_extensions(value) -> list[str]:
    if isinstance(value, str):
        value = [v for v in value.replace(";", ",").split(",")]
    exts = []
    for ext in value:
        ext = str(ext).strip().lower()
        if not ext:
            continue
        exts.append(ext if ext.startswith(".") else "." + ext)
    if not exts:
        raise ValueError("no extensions")
    return exts


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (applied by the caller through :meth:`override`)
    2. Environment variables (``WORKBENCH_<KEY>``)
    3. .workbench.yaml config file
    4. Built-in defaults

    A value that cannot be converted to the expected type is logged and
    skipped; the next source in the order above is used instead.
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = dict(yaml_data or {})
        search = yd.get("search")
        if isinstance(search, dict):
            for key in ("default_limit", "max_limit"):
                if key in search:
                    yd.setdefault(f"search_{key}", search[key])

        # Helper: env var > yaml > default
        def _get(key: str, cast=str):
            default = _DEFAULTS[key]
            env_key = _ENV_PREFIX + key.upper()
            for source, raw in (("env", os.getenv(env_key)), ("yaml", yd.get(key))):
                if raw is None:
                    continue
                try:
                    return cast(raw)
                except (TypeError, ValueError):
                    logger.warning("[Config] Ignoring invalid %s value for %s: %r",
                                   source, key, raw)
            return default

        self.WORKSPACE_ROOT = os.path.abspath(_get("workspace_root"))
        # relative corpus and data paths are anchored at the workspace root
        self._corpus_setting = _get("corpus_root")
        self._data_setting = _get("data_dir")
        self._anchor_paths()

        self.INCLUDE_EXTENSIONS = _get("include_extensions", cast=_to_extensions)
        self.MAX_SEGMENT_CHARS = _get("max_segment_chars", cast=int)

        self.SEARCH_DEFAULT_LIMIT = _get("search_default_limit", cast=int)
        self.SEARCH_MAX_LIMIT = _get("search_max_limit", cast=int)

        self.INDEX_CACHE = _get("index_cache", cast=_to_bool)
        self.WATCH_CORPUS = _get("watch_corpus", cast=_to_bool)
        self.WATCH_DEBOUNCE_SECONDS = _get("watch_debounce_seconds", cast=float)

        self.STRICT_APPLY = _get("strict_apply", cast=_to_bool)
        self.VERIFY_COMMAND = _get("verify_command")
        self.VERIFY_TIMEOUT = _get("verify_timeout", cast=int)

        self.LOG_LEVEL = _get("log_level").upper()
        self.METRICS_ENABLED = _get("metrics_enabled", cast=_to_bool)
        self.SERVER_WORKERS = _get("server_workers", cast=int)

        self._sanitize()

    def _sanitize(self) -> None:
        if self.MAX_SEGMENT_CHARS < 1:
            self.MAX_SEGMENT_CHARS = _DEFAULTS["max_segment_chars"]
        if self.SEARCH_MAX_LIMIT < 1:
            self.SEARCH_MAX_LIMIT = _DEFAULTS["search_max_limit"]
        if not 1 <= self.SEARCH_DEFAULT_LIMIT <= self.SEARCH_MAX_LIMIT:
            self.SEARCH_DEFAULT_LIMIT = min(_DEFAULTS["search_default_limit"],
                                            self.SEARCH_MAX_LIMIT)
        if self.SERVER_WORKERS < 1:
            self.SERVER_WORKERS = 1
        if self.WATCH_DEBOUNCE_SECONDS < 0:
            self.WATCH_DEBOUNCE_SECONDS = _DEFAULTS["watch_debounce_seconds"]

    def _anchor_paths(self) -> None:
        self.CORPUS_ROOT = os.path.abspath(
            os.path.join(self.WORKSPACE_ROOT, self._corpus_setting))
        self.DATA_DIR = os.path.abspath(
            os.path.join(self.WORKSPACE_ROOT, self._data_setting))

    def override(self, **values) -> "Config":
        """Apply CLI overrides (attribute names, any case); None is skipped."""
        if values.get("workspace_root") is not None:
            self.WORKSPACE_ROOT = os.path.abspath(values.pop("workspace_root"))
            self._anchor_paths()
        for name, value in values.items():
            if value is None:
                continue
            attr = name.upper()
            if not hasattr(self, attr):
                raise AttributeError(f"Unknown config setting: {name}")
            if attr in ("WORKSPACE_ROOT", "CORPUS_ROOT", "DATA_DIR"):
                value = os.path.abspath(value)
            setattr(self, attr, value)
        self._sanitize()
        return self

    def as_dict(self) -> dict:
        return {k: v for k, v in vars(self).items() if k.isupper()}

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        if path:
            logger.debug("[Config] Loaded %s", path)
        return cls(yaml_data)
