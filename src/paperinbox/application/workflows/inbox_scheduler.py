# src/paperinbox/application/workflows/inbox_scheduler.py
"""
Inbox scheduler.

Periodically checks which Inbox feeds are due and fetches them, one feed at
a time. Only one cycle runs at a time: a manual trigger that arrives while
the periodic loop (or another trigger) is mid-cycle joins that cycle and
returns its count.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from paperinbox.application.ports.environment_port import (
    NetworkReachabilityProvider,
    PowerStateProvider,
)
from paperinbox.application.services.paper_fetch_service import PaperFetchService
from paperinbox.domain.inbox import Feed, InboxFeedStatus, SchedulerStatistics
from paperinbox.infrastructure.stores.feed_store import FeedStore
from paperinbox.utils.logging_config import (
    LogFiles,
    Logger,
    clear_trace_id,
    generate_trace_id,
    set_trace_id,
)

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 60.0  # seconds between due checks
DEFAULT_REFRESH_INTERVAL = 24 * 60 * 60  # used when a feed has no positive interval
MINIMUM_REFRESH_INTERVAL = 15 * 60  # floor for any feed interval


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def effective_refresh_interval(feed: Feed) -> timedelta:
    seconds = feed.refresh_interval_seconds
    if seconds <= 0:
        seconds = DEFAULT_REFRESH_INTERVAL
    return timedelta(seconds=max(seconds, MINIMUM_REFRESH_INTERVAL))


@dataclass
class _Counters:
    last_check_date: Optional[datetime] = None
    total_papers_fetched: int = 0
    total_refresh_cycles: int = 0
    skipped_cycles_for_power: int = 0
    skipped_cycles_for_network: int = 0
    is_network_available: bool = True


class InboxScheduler:
    """
    Background refresh of Inbox feeds.

    ``start()`` spawns one loop task that runs a cycle immediately and then
    every ``check_interval`` seconds. ``stop()`` wakes the pending wait; a
    cycle already in progress is allowed to finish.
    """

    def __init__(
        self,
        *,
        fetch_service: PaperFetchService,
        feed_store: FeedStore,
        power_provider: Optional[PowerStateProvider] = None,
        network_provider: Optional[NetworkReachabilityProvider] = None,
        check_interval: float = CHECK_INTERVAL,
        skip_on_battery: bool = True,
        skip_when_offline: bool = True,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.fetch_service = fetch_service
        self.feed_store = feed_store
        self.power_provider = power_provider
        self.network_provider = network_provider
        self.check_interval = float(check_interval)
        self.skip_on_battery = skip_on_battery
        self.skip_when_offline = skip_when_offline
        self._now = now_fn or _utcnow

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._inflight: Optional[asyncio.Future] = None
        self._cycle_lock = asyncio.Lock()
        self._counters = _Counters()

    # --- lifecycle ---

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.debug("Scheduler already running")
            return

        self._running = True
        self._wake = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(), name="inbox-scheduler")
        Logger.info(
            f"Inbox scheduler started (check every {self.check_interval:g}s)",
            file=LogFiles.SCHEDULER,
        )

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._wake is not None:
            self._wake.set()

        task = self._loop_task
        self._loop_task = None
        if task is not None and task is not asyncio.current_task():
            await task
        Logger.info("Inbox scheduler stopped", file=LogFiles.SCHEDULER)

    async def _run_loop(self) -> None:
        wake = self._wake
        while self._running:
            try:
                await self.trigger_immediate_check()
            except Exception:
                logger.exception("Inbox check cycle failed")

            if not self._running or wake is None:
                break
            try:
                await asyncio.wait_for(wake.wait(), timeout=self.check_interval)
            except asyncio.TimeoutError:
                pass

    # --- due computation ---

    def due_feeds(self) -> List[Feed]:
        """Inbox feeds whose refresh interval has elapsed, in store order."""
        now = self._now()
        due: List[Feed] = []
        for feed in self.feed_store.list_inbox_feeds():
            if not feed.is_inbox_feed:
                continue
            if feed.date_last_executed is None:
                due.append(feed)
            elif now >= feed.date_last_executed + effective_refresh_interval(feed):
                due.append(feed)
        return due

    def next_refresh_time(self, feed_id: int) -> Optional[datetime]:
        """None when the feed was never executed (due now) or does not exist."""
        feed = self.feed_store.get_feed(feed_id)
        if feed is None or feed.date_last_executed is None:
            return None
        return feed.date_last_executed + effective_refresh_interval(feed)

    def feed_statuses(self) -> List[InboxFeedStatus]:
        statuses = []
        for feed in self.feed_store.list_inbox_feeds():
            next_refresh = None
            if feed.date_last_executed is not None:
                next_refresh = feed.date_last_executed + effective_refresh_interval(feed)
            statuses.append(
                InboxFeedStatus(
                    id=feed.id,
                    name=feed.name,
                    last_refresh=feed.date_last_executed,
                    next_refresh=next_refresh,
                    last_fetch_count=feed.last_fetch_count,
                    refresh_interval_seconds=feed.refresh_interval_seconds,
                )
            )
        return statuses

    # --- cycles ---

    async def trigger_immediate_check(self) -> int:
        """
        Run one check cycle and return the number of papers added.

        If a cycle is already in flight, wait for it and return its count
        instead of starting another one.
        """
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            logger.debug("Check cycle already in progress; joining it")
            return await asyncio.shield(inflight)

        self._inflight = asyncio.ensure_future(self._run_cycle())
        return await asyncio.shield(self._inflight)

    async def refresh_feed(self, feed_id: int) -> int:
        """
        Fetch one feed now, regardless of its schedule.

        Runs exclusive with check cycles. Source errors propagate.
        """
        feed = self.feed_store.get_feed(feed_id)
        if feed is None:
            raise KeyError(f"Unknown feed: {feed_id}")

        async with self._cycle_lock:
            count = await self.fetch_service.fetch_for_inbox(feed)
            self._counters.total_papers_fetched += count
        Logger.info(f"Manual refresh of '{feed.name}': {count} papers", file=LogFiles.SCHEDULER)
        return count

    async def _run_cycle(self) -> int:
        async with self._cycle_lock:
            trace_id = set_trace_id(generate_trace_id("cycle"))
            try:
                return await self._check_and_refresh(trace_id)
            finally:
                clear_trace_id()

    async def _check_and_refresh(self, trace_id: str) -> int:
        counters = self._counters
        counters.last_check_date = self._now()

        if self.skip_on_battery and self.power_provider is not None:
            if self.power_provider.is_power_constrained():
                counters.skipped_cycles_for_power += 1
                Logger.info("Skipping check cycle: power constrained", file=LogFiles.SCHEDULER)
                return 0

        if self.network_provider is not None:
            # providers may block on the network; keep that off the event loop
            available = bool(await asyncio.to_thread(self.network_provider.is_network_available))
            counters.is_network_available = available
            if self.skip_when_offline and not available:
                counters.skipped_cycles_for_network += 1
                Logger.info("Skipping check cycle: network unavailable", file=LogFiles.SCHEDULER)
                return 0

        due = self.due_feeds()
        logger.info(f"[{trace_id}] {len(due)} feed(s) due for refresh")

        total = 0
        for feed in due:
            try:
                total += await self.fetch_service.fetch_for_inbox(feed)
            except Exception as e:
                logger.exception(f"Feed '{feed.name}' failed")
                Logger.error(f"Feed '{feed.name}' failed: {e}", file=LogFiles.ERROR)

        counters.total_refresh_cycles += 1
        counters.total_papers_fetched += total
        Logger.info(
            f"Check cycle done: {len(due)} feed(s), {total} new paper(s)",
            file=LogFiles.SCHEDULER,
        )
        return total

    # --- statistics ---

    @property
    def statistics(self) -> SchedulerStatistics:
        c = self._counters
        return SchedulerStatistics(
            is_running=self._running,
            last_check_date=c.last_check_date,
            total_papers_fetched=c.total_papers_fetched,
            total_refresh_cycles=c.total_refresh_cycles,
            feed_count=len(self.feed_store.list_inbox_feeds()),
            skipped_cycles_for_power=c.skipped_cycles_for_power,
            skipped_cycles_for_network=c.skipped_cycles_for_network,
            is_network_available=c.is_network_available,
        )
