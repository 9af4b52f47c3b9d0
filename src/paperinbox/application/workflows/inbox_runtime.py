# src/paperinbox/application/workflows/inbox_runtime.py
"""
Inbox runtime wiring.

Builds one instance of each inbox component against a single database and
hands out the references. The CLI and the API both go through here.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from paperinbox.application.ports.environment_port import (
    NetworkReachabilityProvider,
    PowerStateProvider,
)
from paperinbox.application.ports.paper_source_port import NullPaperSource, PaperSourcePort
from paperinbox.application.services.identifier_cache import IdentifierCache
from paperinbox.application.services.inbox_manager import InboxManager
from paperinbox.application.services.paper_fetch_service import PaperFetchService
from paperinbox.application.workflows.inbox_scheduler import CHECK_INTERVAL, InboxScheduler
from paperinbox.infrastructure.environment.providers import (
    SocketReachability,
    StaticPowerState,
    StaticReachability,
)
from paperinbox.infrastructure.harvesters.arxiv_harvester import ArxivHarvester
from paperinbox.infrastructure.services.feed_config_service import FeedConfigService
from paperinbox.infrastructure.sources.group_feed_source import (
    DEFAULT_STAGGER_SECONDS,
    GroupFeedSource,
)
from paperinbox.infrastructure.sources.harvester_source import HarvesterSource
from paperinbox.infrastructure.stores.feed_store import FeedStore
from paperinbox.infrastructure.stores.mute_store import MutedItemStore
from paperinbox.infrastructure.stores.publication_store import PublicationStore
from paperinbox.infrastructure.stores.sqlalchemy_db import get_db_url

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y")


def _network_provider_from_env() -> NetworkReachabilityProvider:
    host = os.getenv("PAPERINBOX_PROBE_HOST")
    if not host:
        return StaticReachability(True)
    port = int(os.getenv("PAPERINBOX_PROBE_PORT", "443"))
    return SocketReachability(host=host, port=port)


def source_from_env() -> PaperSourcePort:
    """
    Paper source named by PAPERINBOX_SOURCE.

    ``arxiv`` (default) searches the arXiv API, with group feeds expanded into
    staggered author searches; ``none`` disables fetching.
    """
    name = os.getenv("PAPERINBOX_SOURCE", "arxiv").strip().lower()
    if name == "none":
        return NullPaperSource()
    if name == "arxiv":
        stagger = float(os.getenv("PAPERINBOX_GROUP_STAGGER", str(DEFAULT_STAGGER_SECONDS)))
        return GroupFeedSource(HarvesterSource(ArxivHarvester(), name="arxiv"), stagger_seconds=stagger)
    raise ValueError(f"Unknown paper source: {name}")


@dataclass
class InboxRuntime:
    publication_store: PublicationStore
    feed_store: FeedStore
    mute_store: MutedItemStore
    identifier_cache: IdentifierCache
    inbox_manager: InboxManager
    fetch_service: PaperFetchService
    scheduler: InboxScheduler

    def sync_feeds(self, feeds_path: Optional[str] = None) -> int:
        """Load feed definitions from YAML into the FeedStore; returns the number synced."""
        path = feeds_path or os.getenv("PAPERINBOX_FEEDS_PATH")
        if not path:
            return 0
        feeds = FeedConfigService(config_path=path).sync_to_store(self.feed_store)
        return len(feeds)

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.fetch_service.source.close()
        self.close()

    def close(self) -> None:
        self.publication_store.close()
        self.feed_store.close()
        self.mute_store.close()


def build_inbox_runtime(
    db_url: Optional[str] = None,
    *,
    source: Optional[PaperSourcePort] = None,
    power_provider: Optional[PowerStateProvider] = None,
    network_provider: Optional[NetworkReachabilityProvider] = None,
    check_interval: Optional[float] = None,
    feeds_path: Optional[str] = None,
) -> InboxRuntime:
    """
    Wire up the inbox components.

    Unset arguments fall back to environment variables:
        PAPERINBOX_DB_URL, PAPERINBOX_SOURCE, PAPERINBOX_GROUP_STAGGER,
        PAPERINBOX_CHECK_INTERVAL, PAPERINBOX_FEEDS_PATH,
        PAPERINBOX_SKIP_ON_BATTERY, PAPERINBOX_SKIP_WHEN_OFFLINE,
        PAPERINBOX_PROBE_HOST / PAPERINBOX_PROBE_PORT
    """
    db_url = db_url or get_db_url()
    if check_interval is None:
        check_interval = float(os.getenv("PAPERINBOX_CHECK_INTERVAL", str(CHECK_INTERVAL)))

    publication_store = PublicationStore(db_url)
    feed_store = FeedStore(db_url)
    mute_store = MutedItemStore(db_url)

    identifier_cache = IdentifierCache(publication_store)
    identifier_cache.load_from_database()
    inbox_manager = InboxManager(publication_store, mute_store)
    inbox_manager.get_or_create_inbox()

    fetch_service = PaperFetchService(
        source=source or source_from_env(),
        publication_store=publication_store,
        feed_store=feed_store,
        identifier_cache=identifier_cache,
        inbox_manager=inbox_manager,
    )
    scheduler = InboxScheduler(
        fetch_service=fetch_service,
        feed_store=feed_store,
        power_provider=power_provider or StaticPowerState(False),
        network_provider=network_provider or _network_provider_from_env(),
        check_interval=check_interval,
        skip_on_battery=_env_flag("PAPERINBOX_SKIP_ON_BATTERY", "true"),
        skip_when_offline=_env_flag("PAPERINBOX_SKIP_WHEN_OFFLINE", "true"),
    )

    runtime = InboxRuntime(
        publication_store=publication_store,
        feed_store=feed_store,
        mute_store=mute_store,
        identifier_cache=identifier_cache,
        inbox_manager=inbox_manager,
        fetch_service=fetch_service,
        scheduler=scheduler,
    )
    synced = runtime.sync_feeds(feeds_path)
    if synced:
        logger.info(f"Inbox runtime ready with {synced} configured feeds")
    return runtime
