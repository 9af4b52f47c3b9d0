# src/paperinbox/infrastructure/services/feed_config_service.py
"""
Feed definitions from YAML.

Example::

    feeds:
      - name: Dark energy
        query: cat:astro-ph.CO AND abs:"dark energy"
        refresh_interval: daily      # preset name or seconds
        auto_refresh: true
        feeds_to_inbox: true
        max_results: 50

      - name: Cosmology group      # group feed: one staggered search per author
        authors: [Jane Doe, John Smith]
        categories: [astro-ph.CO, gr-qc]
        refresh_interval: daily
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from paperinbox.domain.inbox import Feed, RefreshIntervalPreset
from paperinbox.infrastructure.sources.group_feed_source import build_group_feed_query
from paperinbox.infrastructure.stores.feed_store import FeedStore

logger = logging.getLogger(__name__)

_PRESET_ALIASES = {
    "1h": RefreshIntervalPreset.ONE_HOUR,
    "hourly": RefreshIntervalPreset.ONE_HOUR,
    "3h": RefreshIntervalPreset.THREE_HOURS,
    "6h": RefreshIntervalPreset.SIX_HOURS,
    "12h": RefreshIntervalPreset.TWELVE_HOURS,
    "daily": RefreshIntervalPreset.DAILY,
    "weekly": RefreshIntervalPreset.WEEKLY,
}

DEFAULT_REFRESH_INTERVAL = RefreshIntervalPreset.SIX_HOURS.seconds


def parse_refresh_interval(value: Union[str, int, None]) -> int:
    """Seconds for a preset name (``daily``, ``6h``, ``six_hours``...) or a number."""
    if value is None:
        return DEFAULT_REFRESH_INTERVAL
    if isinstance(value, bool):
        raise ValueError(f"Invalid refresh_interval: {value}")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip().lower()
    if text.isdigit():
        return int(text)
    if text in _PRESET_ALIASES:
        return _PRESET_ALIASES[text].seconds
    for preset in RefreshIntervalPreset:
        if text in (preset.name.lower(), preset.display_name.lower()):
            return preset.seconds
    raise ValueError(f"Invalid refresh_interval: {value}")


class FeedConfigService:
    """Loads and validates the feed YAML, and syncs it into the FeedStore."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: Path to the feed YAML, defaults to config/inbox_feeds.yaml
        """
        if config_path is None:
            config_path = Path("config") / "inbox_feeds.yaml"

        self.config_path = Path(config_path)
        self._config: Optional[Dict[str, Any]] = None

    def load_config(self) -> Dict[str, Any]:
        if self._config is not None:
            return self._config

        if not self.config_path.exists():
            raise FileNotFoundError(f"Feed config not found: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}") from e

        self._validate_config()
        logger.info(f"Loaded feed config from {self.config_path}")
        return self._config

    def _validate_config(self) -> None:
        if not self._config or not isinstance(self._config, dict):
            raise ValueError("Config is empty")

        feeds = self._config.get("feeds")
        if feeds is None:
            raise ValueError("Missing 'feeds' section in config")
        if not isinstance(feeds, list):
            raise ValueError("'feeds' must be a list")
        if not feeds:
            logger.warning("No feeds configured")

        seen = set()
        for i, feed in enumerate(feeds):
            if not isinstance(feed, dict):
                raise ValueError(f"Feed at index {i} must be a mapping")
            name = str(feed.get("name") or "").strip()
            if not name:
                raise ValueError(f"Feed at index {i} missing 'name'")
            if feed.get("authors") is not None or feed.get("categories") is not None:
                _group_query(name, feed)
            elif not str(feed.get("query") or "").strip():
                raise ValueError(f"Feed '{name}' missing 'query'")
            if name in seen:
                raise ValueError(f"Duplicate feed name: '{name}'")
            seen.add(name)

            parse_refresh_interval(feed.get("refresh_interval"))
            for key in ("auto_refresh", "feeds_to_inbox"):
                if key in feed and not isinstance(feed[key], bool):
                    raise ValueError(f"Feed '{name}': {key} must be true or false")
            max_results = feed.get("max_results", 50)
            if isinstance(max_results, bool) or not isinstance(max_results, int) or max_results <= 0:
                raise ValueError(f"Feed '{name}': max_results must be a positive integer")

    def get_feed_configs(self) -> List[Dict[str, Any]]:
        """Feed entries with defaults applied."""
        config = self.load_config()
        rows = []
        for feed in config.get("feeds") or []:
            rows.append(
                {
                    "name": str(feed["name"]).strip(),
                    "query": _feed_query(feed),
                    "refresh_interval_seconds": parse_refresh_interval(feed.get("refresh_interval")),
                    "auto_refresh_enabled": feed.get("auto_refresh", True),
                    "feeds_to_inbox": feed.get("feeds_to_inbox", True),
                    "max_results": int(feed.get("max_results", 50)),
                }
            )
        return rows

    def sync_to_store(self, feed_store: FeedStore) -> List[Feed]:
        """Create or update one Feed per config entry; execution history is kept."""
        feeds = []
        for row in self.get_feed_configs():
            name = row.pop("name")
            feeds.append(feed_store.upsert_feed(name=name, **row))
        logger.info(f"Synced {len(feeds)} feeds from {self.config_path}")
        return feeds


def _group_query(name: str, feed: Dict[str, Any]) -> str:
    authors = feed.get("authors") or []
    categories = feed.get("categories") or []
    if not isinstance(authors, list) or not isinstance(categories, list):
        raise ValueError(f"Feed '{name}': authors and categories must be lists")
    try:
        return build_group_feed_query(authors, categories)
    except ValueError as e:
        raise ValueError(f"Feed '{name}': {e}") from e


def _feed_query(feed: Dict[str, Any]) -> str:
    if feed.get("authors") is not None or feed.get("categories") is not None:
        return _group_query(str(feed["name"]).strip(), feed)
    return str(feed["query"]).strip()
