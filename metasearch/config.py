"""Configuration management for metasearch."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from metasearch.ranking.config import MAX_RESULTS_PER_SOURCE
from metasearch.ranking.types import AggregationMethod

logger = logging.getLogger(__name__)

_CONFIG_VERSION = 2
DEFAULT_ENGINES = ("google", "bing", "duckduckgo")
DEFAULT_SERP_BASE_URL = "https://serpapi.com"


def _default_config_path() -> Path:
    """Get default config file path following XDG spec."""
    config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return config_home / "metasearch" / "config.json"


def _default_db_path() -> str:
    data_home = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return str(data_home / "metasearch" / "metasearch.db")


class Config:
    """Application configuration with persistence."""

    def __init__(self, config_path: Path | None = None) -> None:
        self._path = config_path or _default_config_path()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        """Load config from disk or return defaults."""
        if not self._path.exists():
            return self._defaults()
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
                data = self._migrate(data)
                if data.get("version") != _CONFIG_VERSION:
                    return self._defaults()
                return data
        except (OSError, json.JSONDecodeError):
            logger.warning("Unreadable config at %s, using defaults", self._path)
            return self._defaults()

    def _migrate(self, data: dict[str, Any]) -> dict[str, Any]:
        if data.get("version") == 1:
            # v1 only knew about the external engines.
            data["learning_index_enabled"] = True
            data["learning_index_limit"] = MAX_RESULTS_PER_SOURCE
            data["default_aggregation_method"] = data.pop(
                "aggregation_method", AggregationMethod.BORDA.value
            )
            data["version"] = 2
        return data

    def _defaults(self) -> dict[str, Any]:
        """Return default configuration."""
        return {
            "version": _CONFIG_VERSION,
            "serp_api_key": os.getenv("SERP_API_KEY", ""),
            "serp_base_url": os.getenv("SERP_BASE_URL", DEFAULT_SERP_BASE_URL),
            "engines": list(DEFAULT_ENGINES),
            "results_per_source": MAX_RESULTS_PER_SOURCE,
            "default_aggregation_method": AggregationMethod.BORDA.value,
            "learning_index_enabled": True,
            "learning_index_limit": MAX_RESULTS_PER_SOURCE,
            "db_path": os.getenv("METASEARCH_DB_PATH", _default_db_path()),
        }

    def save(self) -> None:
        """Persist config to disk."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError:
            logger.warning("Could not write config to %s", self._path)

    # -- Getters with env var fallback --

    @property
    def serp_api_key(self) -> str:
        return str(self._data.get("serp_api_key") or os.getenv("SERP_API_KEY", ""))

    @property
    def serp_base_url(self) -> str:
        return str(self._data.get("serp_base_url", DEFAULT_SERP_BASE_URL))

    @property
    def engines(self) -> list[str]:
        engines = self._data.get("engines", list(DEFAULT_ENGINES))
        return [str(e) for e in engines if str(e).strip()]

    @property
    def results_per_source(self) -> int:
        return int(self._data.get("results_per_source", MAX_RESULTS_PER_SOURCE))

    @property
    def default_aggregation_method(self) -> AggregationMethod:
        val = self._data.get("default_aggregation_method", AggregationMethod.BORDA.value)
        try:
            return AggregationMethod(val)
        except ValueError:
            return AggregationMethod.BORDA

    @property
    def learning_index_enabled(self) -> bool:
        return bool(self._data.get("learning_index_enabled", True))

    @property
    def learning_index_limit(self) -> int:
        return int(self._data.get("learning_index_limit", MAX_RESULTS_PER_SOURCE))

    @property
    def db_path(self) -> str:
        return str(self._data.get("db_path") or _default_db_path())

    # -- Setters --

    def set_serp_api_key(self, value: str) -> None:
        self._data["serp_api_key"] = value.strip()

    def set_serp_base_url(self, value: str) -> None:
        self._data["serp_base_url"] = value.strip()

    def set_engines(self, value: list[str]) -> None:
        self._data["engines"] = [e.strip() for e in value if e.strip()]

    def set_results_per_source(self, value: int) -> None:
        self._data["results_per_source"] = max(1, int(value))

    def set_default_aggregation_method(self, value: AggregationMethod) -> None:
        self._data["default_aggregation_method"] = value.value

    def set_learning_index_enabled(self, value: bool) -> None:
        self._data["learning_index_enabled"] = bool(value)

    def set_learning_index_limit(self, value: int) -> None:
        self._data["learning_index_limit"] = max(1, int(value))

    def set_db_path(self, value: str) -> None:
        self._data["db_path"] = value.strip()
