"""
InboxScheduler unit tests.
"""

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from paperinbox.application.workflows.inbox_scheduler import (
    CHECK_INTERVAL,
    DEFAULT_REFRESH_INTERVAL,
    MINIMUM_REFRESH_INTERVAL,
    InboxScheduler,
)
from paperinbox.domain.errors import SourceFetchFailed
from paperinbox.infrastructure.environment.providers import StaticPowerState, StaticReachability
from paperinbox.infrastructure.stores.feed_store import FeedStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR = 3600


@pytest.fixture
def feed_store(db_url):
    return FeedStore(db_url)


@pytest.fixture
def fetch_service():
    service = MagicMock()
    service.fetch_for_inbox = AsyncMock(return_value=0)
    return service


def _scheduler(fetch_service, feed_store, **kwargs):
    kwargs.setdefault("power_provider", StaticPowerState(False))
    kwargs.setdefault("network_provider", StaticReachability(True))
    kwargs.setdefault("now_fn", lambda: NOW)
    return InboxScheduler(fetch_service=fetch_service, feed_store=feed_store, **kwargs)


def test_constants():
    assert CHECK_INTERVAL == 60
    assert DEFAULT_REFRESH_INTERVAL == 24 * HOUR
    assert MINIMUM_REFRESH_INTERVAL == 15 * 60


class TestDueFeeds:
    def test_no_feeds(self, fetch_service, feed_store):
        assert _scheduler(fetch_service, feed_store).due_feeds() == []

    def test_never_executed_and_distant_past_are_due(self, fetch_service, feed_store):
        feed_store.create_feed(name="new", query="q")
        feed_store.create_feed(name="old", query="q", date_last_executed=datetime(2001, 1, 1, tzinfo=timezone.utc))

        names = [f.name for f in _scheduler(fetch_service, feed_store).due_feeds()]
        assert names == ["new", "old"]

    def test_recently_executed_is_not_due(self, fetch_service, feed_store):
        feed_store.create_feed(
            name="fresh", query="q", refresh_interval_seconds=HOUR, date_last_executed=NOW
        )
        assert _scheduler(fetch_service, feed_store).due_feeds() == []

    def test_disabled_feeds_are_never_due(self, fetch_service, feed_store):
        past = datetime(2001, 1, 1, tzinfo=timezone.utc)
        feed_store.create_feed(name="no-inbox", query="q", feeds_to_inbox=False, date_last_executed=past)
        feed_store.create_feed(name="manual", query="q", auto_refresh_enabled=False)
        assert _scheduler(fetch_service, feed_store).due_feeds() == []

    def test_minimum_interval_is_enforced(self, fetch_service, feed_store):
        feed_store.create_feed(
            name="eager",
            query="q",
            refresh_interval_seconds=60,
            date_last_executed=NOW - timedelta(minutes=10),
        )
        scheduler = _scheduler(fetch_service, feed_store)
        assert scheduler.due_feeds() == []

        later = _scheduler(fetch_service, feed_store, now_fn=lambda: NOW + timedelta(minutes=6))
        assert [f.name for f in later.due_feeds()] == ["eager"]

    def test_non_positive_interval_uses_default(self, fetch_service, feed_store):
        feed_store.create_feed(
            name="zero",
            query="q",
            refresh_interval_seconds=0,
            date_last_executed=NOW - timedelta(hours=2),
        )
        assert _scheduler(fetch_service, feed_store).due_feeds() == []

        later = _scheduler(fetch_service, feed_store, now_fn=lambda: NOW + timedelta(hours=23))
        assert len(later.due_feeds()) == 1

    def test_next_refresh_time(self, fetch_service, feed_store):
        never = feed_store.create_feed(name="never", query="q")
        hourly = feed_store.create_feed(
            name="hourly", query="q", refresh_interval_seconds=HOUR, date_last_executed=NOW
        )
        scheduler = _scheduler(fetch_service, feed_store)

        assert scheduler.next_refresh_time(never.id) is None
        assert scheduler.next_refresh_time(hourly.id) == NOW + timedelta(hours=1)

    def test_feed_statuses(self, fetch_service, feed_store):
        feed_store.create_feed(name="never", query="q")
        feed_store.create_feed(
            name="hourly", query="q", refresh_interval_seconds=HOUR, date_last_executed=NOW
        )
        statuses = {s.name: s for s in _scheduler(fetch_service, feed_store).feed_statuses()}

        assert statuses["never"].is_due(NOW)
        assert not statuses["hourly"].is_due(NOW)
        assert statuses["hourly"].next_refresh == NOW + timedelta(hours=1)


class TestCycles:
    @pytest.mark.asyncio
    async def test_cycle_fetches_due_feeds_in_order(self, fetch_service, feed_store):
        feed_store.create_feed(name="a", query="qa")
        feed_store.create_feed(name="b", query="qb")
        feed_store.create_feed(name="fresh", query="q", date_last_executed=NOW)
        fetch_service.fetch_for_inbox.side_effect = [2, 3]
        scheduler = _scheduler(fetch_service, feed_store)

        assert await scheduler.trigger_immediate_check() == 5

        called = [c.args[0].name for c in fetch_service.fetch_for_inbox.await_args_list]
        assert called == ["a", "b"]
        stats = scheduler.statistics
        assert stats.total_refresh_cycles == 1
        assert stats.total_papers_fetched == 5
        assert stats.last_check_date == NOW
        assert stats.feed_count == 3

    @pytest.mark.asyncio
    async def test_feeds_are_fetched_sequentially(self, fetch_service, feed_store):
        for name in ("a", "b", "c"):
            feed_store.create_feed(name=name, query=name)
        active = 0
        peak = 0

        async def fetch(feed):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1
            return 1

        fetch_service.fetch_for_inbox.side_effect = fetch
        assert await _scheduler(fetch_service, feed_store).trigger_immediate_check() == 3
        assert peak == 1

    @pytest.mark.asyncio
    async def test_failing_feed_does_not_stop_the_next(self, fetch_service, feed_store):
        feed_store.create_feed(name="broken", query="q")
        feed_store.create_feed(name="ok", query="q")
        fetch_service.fetch_for_inbox.side_effect = [SourceFetchFailed("broken", "boom"), 4]
        scheduler = _scheduler(fetch_service, feed_store)

        assert await scheduler.trigger_immediate_check() == 4
        assert fetch_service.fetch_for_inbox.await_count == 2
        assert scheduler.statistics.total_refresh_cycles == 1
        assert scheduler.statistics.total_papers_fetched == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [1, 2, 5])
    async def test_n_triggers_count_n_cycles(self, fetch_service, feed_store, n):
        feed_store.create_feed(name="a", query="q")
        scheduler = _scheduler(fetch_service, feed_store)
        for _ in range(n):
            await scheduler.trigger_immediate_check()
        assert scheduler.statistics.total_refresh_cycles == n

    @pytest.mark.asyncio
    async def test_power_constrained_skips_cycle(self, fetch_service, feed_store):
        feed_store.create_feed(name="a", query="q")
        network = MagicMock()
        scheduler = _scheduler(
            fetch_service,
            feed_store,
            power_provider=StaticPowerState(True),
            network_provider=network,
        )

        assert await scheduler.trigger_immediate_check() == 0

        stats = scheduler.statistics
        assert stats.skipped_cycles_for_power == 1
        assert stats.skipped_cycles_for_network == 0
        assert stats.total_refresh_cycles == 0
        assert stats.last_check_date == NOW
        fetch_service.fetch_for_inbox.assert_not_called()
        network.is_network_available.assert_not_called()

    @pytest.mark.asyncio
    async def test_offline_skips_cycle(self, fetch_service, feed_store):
        feed_store.create_feed(name="a", query="q")
        scheduler = _scheduler(fetch_service, feed_store, network_provider=StaticReachability(False))

        await scheduler.trigger_immediate_check()

        stats = scheduler.statistics
        assert stats.skipped_cycles_for_network == 1
        assert stats.total_refresh_cycles == 0
        assert stats.is_network_available is False
        fetch_service.fetch_for_inbox.assert_not_called()

    @pytest.mark.asyncio
    async def test_reachability_check_runs_off_the_event_loop(self, fetch_service, feed_store):
        class _ThreadRecordingReachability:
            thread_id = None

            def is_network_available(self):
                self.thread_id = threading.get_ident()
                return True

        provider = _ThreadRecordingReachability()
        scheduler = _scheduler(fetch_service, feed_store, network_provider=provider)

        await scheduler.trigger_immediate_check()

        assert provider.thread_id is not None
        assert provider.thread_id != threading.get_ident()
        assert scheduler.statistics.total_refresh_cycles == 1

    @pytest.mark.asyncio
    async def test_gating_switches(self, fetch_service, feed_store):
        feed_store.create_feed(name="a", query="q")
        scheduler = _scheduler(
            fetch_service,
            feed_store,
            power_provider=StaticPowerState(True),
            network_provider=StaticReachability(False),
            skip_on_battery=False,
            skip_when_offline=False,
        )

        await scheduler.trigger_immediate_check()
        assert scheduler.statistics.total_refresh_cycles == 1
        fetch_service.fetch_for_inbox.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_triggers_coalesce(self, fetch_service, feed_store):
        feed_store.create_feed(name="slow", query="q")
        release = asyncio.Event()

        async def slow_fetch(feed):
            await release.wait()
            return 7

        fetch_service.fetch_for_inbox.side_effect = slow_fetch
        scheduler = _scheduler(fetch_service, feed_store)

        first = asyncio.create_task(scheduler.trigger_immediate_check())
        await asyncio.sleep(0)
        second = asyncio.create_task(scheduler.trigger_immediate_check())
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(first, second) == [7, 7]
        assert fetch_service.fetch_for_inbox.await_count == 1
        assert scheduler.statistics.total_refresh_cycles == 1
        assert scheduler.statistics.total_papers_fetched == 7

    @pytest.mark.asyncio
    async def test_refresh_feed(self, fetch_service, feed_store):
        feed = feed_store.create_feed(name="a", query="q", date_last_executed=NOW)
        fetch_service.fetch_for_inbox.return_value = 2
        scheduler = _scheduler(fetch_service, feed_store)

        assert await scheduler.refresh_feed(feed.id) == 2
        assert scheduler.statistics.total_refresh_cycles == 0
        assert scheduler.statistics.total_papers_fetched == 2

        with pytest.raises(KeyError):
            await scheduler.refresh_feed(9999)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_a_cycle_immediately(self, fetch_service, feed_store):
        feed_store.create_feed(name="a", query="q")
        scheduler = _scheduler(fetch_service, feed_store, check_interval=3600)

        await scheduler.start()
        for _ in range(20):
            if scheduler.statistics.total_refresh_cycles:
                break
            await asyncio.sleep(0.01)

        assert scheduler.running
        assert scheduler.statistics.is_running
        assert scheduler.statistics.total_refresh_cycles == 1
        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_loop(self, fetch_service, feed_store):
        scheduler = _scheduler(fetch_service, feed_store, check_interval=3600)

        await scheduler.start()
        task = scheduler._loop_task
        await scheduler.start()

        assert scheduler._loop_task is task
        assert scheduler.running
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self, fetch_service, feed_store):
        scheduler = _scheduler(fetch_service, feed_store)
        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_lets_inflight_cycle_finish(self, fetch_service, feed_store):
        feed_store.create_feed(name="slow", query="q")
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_fetch(feed):
            started.set()
            await release.wait()
            return 1

        fetch_service.fetch_for_inbox.side_effect = slow_fetch
        scheduler = _scheduler(fetch_service, feed_store, check_interval=3600)

        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1)
        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        release.set()
        await asyncio.wait_for(stopping, timeout=1)

        assert not scheduler.running
        assert scheduler.statistics.total_refresh_cycles == 1
        assert scheduler.statistics.total_papers_fetched == 1

    @pytest.mark.asyncio
    async def test_loop_repeats_every_check_interval(self, fetch_service, feed_store):
        scheduler = _scheduler(fetch_service, feed_store, check_interval=0.01)

        await scheduler.start()
        for _ in range(100):
            if scheduler.statistics.total_refresh_cycles >= 3:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.statistics.total_refresh_cycles >= 3
