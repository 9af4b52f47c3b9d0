# src/paperinbox/application/services/paper_fetch_service.py
"""
Paper fetch service.

Single entry point for getting candidate results into the Inbox:
mute filter -> identifier dedup -> persist + index + inbox membership.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from paperinbox.application.ports.paper_source_port import PaperSourcePort
from paperinbox.application.services.identifier_cache import IdentifierCache
from paperinbox.application.services.inbox_manager import InboxManager
from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.errors import PersistenceWriteFailed, SourceFetchFailed
from paperinbox.domain.inbox import Feed, FetchState, FetchStatus
from paperinbox.infrastructure.stores.feed_store import FeedStore
from paperinbox.infrastructure.stores.publication_store import PublicationStore
from paperinbox.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaperFetchService:
    """
    Fetches feed results from a source and routes them into the Inbox.

    Batches are serialized; the source call itself runs outside the batch
    lock so a slow network round-trip never blocks a concurrent import.
    """

    def __init__(
        self,
        *,
        source: PaperSourcePort,
        publication_store: PublicationStore,
        feed_store: FeedStore,
        identifier_cache: IdentifierCache,
        inbox_manager: InboxManager,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.publication_store = publication_store
        self.feed_store = feed_store
        self.identifier_cache = identifier_cache
        self.inbox_manager = inbox_manager
        self._now = now_fn or _utcnow

        self._batch_lock = asyncio.Lock()
        self._status = FetchStatus.idle()
        self._last_fetch: Optional[datetime] = None

    @property
    def status(self) -> FetchStatus:
        return self._status

    @property
    def is_loading(self) -> bool:
        return self._status.state == FetchState.LOADING

    @property
    def last_fetch(self) -> Optional[datetime]:
        return self._last_fetch

    async def send_to_inbox(self, results: Iterable[CandidateResult]) -> int:
        """
        Filter, deduplicate and import ``results`` in input order.

        Returns the number of results that ended up in the Inbox.
        """
        batch = list(results)
        if not batch:
            return 0

        async with self._batch_lock:
            if not self.identifier_cache.is_loaded:
                self.identifier_cache.load_from_database()

            accepted = 0
            muted = 0
            duplicates = 0
            failed = 0

            for result in batch:
                if self.inbox_manager.should_filter_result(result):
                    muted += 1
                    logger.debug(f"Muted: {result.title[:60]}")
                    continue

                if self.identifier_cache.exists(result):
                    duplicates += 1
                    logger.debug(f"Duplicate: {result.title[:60]}")
                    continue

                if not self._accept(result):
                    failed += 1
                    continue
                accepted += 1

            Logger.info(
                f"Inbox batch: {len(batch)} results, {accepted} added, "
                f"{muted} muted, {duplicates} duplicates, {failed} failed",
                file=LogFiles.INBOX,
            )
            return accepted

    def _accept(self, result: CandidateResult) -> bool:
        """Persist one result into the Inbox; the cache only advances after the commit."""
        try:
            self.inbox_manager.import_result(result, date_added=self._now())
        except PersistenceWriteFailed as e:
            logger.error(f"Failed to add '{result.title[:60]}' to Inbox: {e}")
            return False

        self.identifier_cache.add_from_result(result)
        return True

    async def fetch_for_inbox(self, feed: Feed) -> int:
        """
        Run ``feed``'s query against the source and import the results.

        Feeds that do not feed the Inbox return 0 without touching the source.
        Raises:
            SourceFetchFailed: the source raised; the original is the cause.
        """
        if not feed.feeds_to_inbox:
            logger.debug(f"Feed '{feed.name}' does not feed the Inbox")
            return 0

        logger.info(f"Fetching Inbox feed '{feed.name}'")
        self._status = FetchStatus.loading()

        try:
            results = await self.source.search(feed.query, max_results=feed.max_results)
        except Exception as e:
            self._status = FetchStatus.failed(e, self._now())
            raise SourceFetchFailed(feed.name, str(e)) from e

        try:
            count = await self.send_to_inbox(results)
            executed_at = self._now()
            self.feed_store.record_execution(feed.id, executed_at=executed_at, fetch_count=count)
        except Exception as e:
            self._status = FetchStatus.failed(e, self._now())
            raise

        feed.date_last_executed = executed_at
        feed.last_fetch_count = count

        self._status = FetchStatus.completed(count, executed_at)
        self._last_fetch = executed_at
        Logger.info(f"Feed '{feed.name}': {len(results)} results, {count} new", file=LogFiles.FETCH)
        return count
