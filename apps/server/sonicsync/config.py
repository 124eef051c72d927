from __future__ import annotations

import logging
from collections.abc import Callable
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    FEEDBACK_INTERVAL_MS,
    HISTORY_QUERY_LIMIT,
    HISTORY_WINDOW_SIZE,
    WRITE_QUEUE_MAXSIZE,
)

SERVER_DIR = Path(__file__).resolve().parents[1]
"""Root of the ``apps/server/`` package tree."""

LOGGER = logging.getLogger(__name__)

VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8080},
    "engine": {
        "feedback_interval_ms": FEEDBACK_INTERVAL_MS,
        "history_window_size": HISTORY_WINDOW_SIZE,
    },
    "storage": {
        "history_db_path": "data/coherence.db",
        "persist_history": True,
        "write_queue_maxsize": WRITE_QUEUE_MAXSIZE,
        "query_limit": HISTORY_QUERY_LIMIT,
        "shutdown_flush_timeout_s": 5.0,
    },
    "logging": {"level": "INFO"},
}


def documented_default_config() -> dict[str, Any]:
    """Return runtime defaults in the shape documented by config.example.yaml."""
    return deepcopy(DEFAULT_CONFIG)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_config_path(path_text: str, config_path: Path) -> Path:
    path = Path(path_text)
    if path.is_absolute():
        return path
    return config_path.resolve().parent / path


_ENGINE_MINIMUMS: dict[str, int] = {
    "feedback_interval_ms": 0,
    "history_window_size": 1,
}


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"server.port must be 1-65535, got {self.port!r}")


@dataclass(slots=True)
class EngineConfig:
    feedback_interval_ms: int
    history_window_size: int

    def __post_init__(self) -> None:
        for name, floor in _ENGINE_MINIMUMS.items():
            value = getattr(self, name)
            if value < floor:
                LOGGER.warning("engine.%s=%s is below %s; using %s", name, value, floor, floor)
                setattr(self, name, floor)


@dataclass(slots=True)
class StorageConfig:
    history_db_path: Path
    persist_history: bool
    write_queue_maxsize: int
    query_limit: int
    shutdown_flush_timeout_s: float

    def __post_init__(self) -> None:
        if self.write_queue_maxsize < 1:
            raise ValueError(
                f"storage.write_queue_maxsize must be >= 1, got {self.write_queue_maxsize!r}"
            )
        if self.query_limit < 1:
            LOGGER.warning("storage.query_limit=%s is below 1; using 1", self.query_limit)
            self.query_limit = 1
        if self.shutdown_flush_timeout_s < 0:
            LOGGER.warning(
                "storage.shutdown_flush_timeout_s=%s is negative; using 0",
                self.shutdown_flush_timeout_s,
            )
            self.shutdown_flush_timeout_s = 0.0


@dataclass(slots=True)
class LoggingConfig:
    level: str

    def __post_init__(self) -> None:
        normalised = str(self.level or "INFO").upper()
        if normalised not in VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}, got {self.level!r}"
            )
        self.level = normalised


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    engine: EngineConfig
    storage: StorageConfig
    logging: LoggingConfig
    config_path: Path


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        LOGGER.info("No config file at %s; using defaults", path)
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a YAML object at the top level.")
    return data


def _coerce(cast: Callable[[Any], Any], value: Any, key: str) -> Any:
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number, got {value!r}") from None


def _storage_section(raw: dict[str, Any], config_path: Path) -> StorageConfig:
    persist = bool(raw["persist_history"])
    db_path_text = raw.get("history_db_path")
    if not isinstance(db_path_text, str) or not db_path_text.strip():
        if persist:
            raise ValueError(
                "storage.history_db_path must be configured when persist_history is true."
            )
        db_path_text = DEFAULT_CONFIG["storage"]["history_db_path"]
    return StorageConfig(
        history_db_path=_resolve_config_path(db_path_text, config_path),
        persist_history=persist,
        write_queue_maxsize=_coerce(
            int, raw["write_queue_maxsize"], "storage.write_queue_maxsize"
        ),
        query_limit=_coerce(int, raw["query_limit"], "storage.query_limit"),
        shutdown_flush_timeout_s=_coerce(
            float, raw["shutdown_flush_timeout_s"], "storage.shutdown_flush_timeout_s"
        ),
    )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Read *config_path* (default ``apps/server/config.yaml``) over the defaults.

    Raises ``ValueError`` naming the offending key for invalid values.
    """
    path = (config_path or SERVER_DIR / "config.yaml").resolve()
    merged = _deep_merge(DEFAULT_CONFIG, _read_yaml_mapping(path))
    server, engine = merged["server"], merged["engine"]

    app_config = AppConfig(
        server=ServerConfig(
            host=str(server["host"]),
            port=_coerce(int, server["port"], "server.port"),
        ),
        engine=EngineConfig(
            feedback_interval_ms=_coerce(
                int, engine["feedback_interval_ms"], "engine.feedback_interval_ms"
            ),
            history_window_size=_coerce(
                int, engine["history_window_size"], "engine.history_window_size"
            ),
        ),
        storage=_storage_section(merged["storage"], path),
        logging=LoggingConfig(level=str(merged["logging"]["level"])),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s history_db_path=%s persist_history=%s",
        app_config.config_path,
        app_config.storage.history_db_path,
        app_config.storage.persist_history,
    )
    return app_config
