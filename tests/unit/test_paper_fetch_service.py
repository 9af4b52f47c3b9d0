"""
PaperFetchService unit tests.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from paperinbox.application.services.identifier_cache import IdentifierCache
from paperinbox.application.services.inbox_manager import InboxManager
from paperinbox.application.services.paper_fetch_service import PaperFetchService
from paperinbox.domain.errors import PersistenceWriteFailed, SourceFetchFailed
from paperinbox.domain.inbox import FetchState, MuteType
from paperinbox.infrastructure.stores.feed_store import FeedStore
from paperinbox.infrastructure.stores.mute_store import MutedItemStore
from paperinbox.infrastructure.stores.publication_store import PublicationStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def parts(db_url):
    publication_store = PublicationStore(db_url)
    feed_store = FeedStore(db_url)
    cache = IdentifierCache(publication_store)
    cache.load_from_database()
    manager = InboxManager(publication_store, MutedItemStore(db_url))
    source = AsyncMock()
    source.search.return_value = []
    service = PaperFetchService(
        source=source,
        publication_store=publication_store,
        feed_store=feed_store,
        identifier_cache=cache,
        inbox_manager=manager,
        now_fn=lambda: NOW,
    )
    return service, source, feed_store, manager


@pytest.mark.asyncio
async def test_send_empty_batch_has_no_side_effects(parts):
    service, _, _, manager = parts
    assert await service.send_to_inbox([]) == 0
    assert service.publication_store.count_publications() == 0
    assert manager.unread_count == 0


@pytest.mark.asyncio
async def test_send_distinct_results(parts, result_factory):
    service, _, _, manager = parts
    count = await service.send_to_inbox([result_factory(n) for n in range(1, 4)])

    assert count == 3
    assert manager.unread_count == 3
    assert [p.title for p in sorted(manager.inbox_papers(), key=lambda p: p.title)] == [
        "Paper 1",
        "Paper 2",
        "Paper 3",
    ]


@pytest.mark.asyncio
async def test_same_doi_in_two_batches(parts, result_factory):
    service, _, _, _ = parts
    first = await service.send_to_inbox([result_factory(1)])
    second = await service.send_to_inbox([result_factory(2, doi="10.1000/PAPER.1")])
    assert [first, second] == [1, 0]


@pytest.mark.asyncio
async def test_same_doi_twice_in_one_batch(parts, result_factory):
    service, _, _, _ = parts
    a = result_factory(1)
    b = result_factory(2, doi=a.doi)
    assert await service.send_to_inbox([a, b]) == 1
    assert service.publication_store.count_publications() == 1


@pytest.mark.asyncio
async def test_muted_author_is_filtered(parts, result_factory):
    service, _, _, manager = parts
    manager.mute(MuteType.AUTHOR, "Einstein")

    assert await service.send_to_inbox([result_factory(1, authors=["Albert Einstein"])]) == 0
    assert await service.send_to_inbox([result_factory(2, authors=["Newton, I."])]) == 1


@pytest.mark.asyncio
async def test_batch_with_one_muted(parts, result_factory):
    service, _, _, manager = parts
    manager.mute(MuteType.VENUE, "Tabloid")
    batch = [result_factory(1), result_factory(2, venue="Weekly Tabloid"), result_factory(3)]
    assert await service.send_to_inbox(batch) == 2


@pytest.mark.asyncio
async def test_mute_is_checked_before_dedup(parts, result_factory):
    """A muted result never reaches the cache, so unmuting lets it through."""
    service, _, _, manager = parts
    rule = manager.mute(MuteType.AUTHOR, "Einstein")
    muted = result_factory(1, authors=["Einstein"])

    assert await service.send_to_inbox([muted]) == 0
    assert not service.identifier_cache.exists(muted)

    manager.unmute(rule)
    assert await service.send_to_inbox([muted]) == 1


@pytest.mark.asyncio
async def test_persistence_failure_skips_one_result(parts, result_factory, monkeypatch):
    service, _, _, _ = parts
    store = service.publication_store
    original = store.create_publication

    def flaky(result, **kwargs):
        if result.title == "Paper 2":
            raise PersistenceWriteFailed("disk full")
        return original(result, **kwargs)

    monkeypatch.setattr(store, "create_publication", flaky)
    broken = result_factory(2)

    count = await service.send_to_inbox([result_factory(1), broken, result_factory(3)])

    assert count == 2
    assert not service.identifier_cache.exists(broken)


@pytest.mark.asyncio
async def test_fetch_for_non_inbox_feed_skips_source(parts):
    service, source, feed_store, _ = parts
    feed = feed_store.create_feed(name="Library only", query="q", feeds_to_inbox=False)

    assert await service.fetch_for_inbox(feed) == 0
    source.search.assert_not_called()
    assert feed_store.get_feed(feed.id).date_last_executed is None


@pytest.mark.asyncio
async def test_fetch_records_execution_even_when_nothing_new(parts):
    service, source, feed_store, _ = parts
    feed = feed_store.create_feed(name="Quiet", query="abs:nothing", max_results=25)

    assert await service.fetch_for_inbox(feed) == 0

    source.search.assert_awaited_once_with("abs:nothing", max_results=25)
    stored = feed_store.get_feed(feed.id)
    assert stored.date_last_executed == NOW
    assert stored.last_fetch_count == 0
    assert service.status.state == FetchState.COMPLETED
    assert service.last_fetch == NOW


@pytest.mark.asyncio
async def test_fetch_pipes_results_into_inbox(parts, result_factory):
    service, source, feed_store, manager = parts
    source.search.return_value = [result_factory(1), result_factory(2)]
    feed = feed_store.create_feed(name="Dark energy", query="dark energy")

    assert await service.fetch_for_inbox(feed) == 2
    assert feed.last_fetch_count == 2
    assert feed_store.get_feed(feed.id).last_fetch_count == 2
    assert manager.unread_count == 2


@pytest.mark.asyncio
async def test_source_error_propagates_as_source_fetch_failed(parts):
    service, source, feed_store, _ = parts
    source.search.side_effect = ConnectionError("ADS down")
    feed = feed_store.create_feed(name="Broken", query="q")

    with pytest.raises(SourceFetchFailed) as excinfo:
        await service.fetch_for_inbox(feed)

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert excinfo.value.feed_name == "Broken"
    assert service.status.state == FetchState.FAILED
    assert feed_store.get_feed(feed.id).date_last_executed is None


@pytest.mark.asyncio
async def test_failed_inbox_write_skips_only_that_result(parts, result_factory, monkeypatch):
    service, _, _, manager = parts
    original = manager.import_result

    def locked_once(result, **kwargs):
        if result.title == "Paper 1":
            raise PersistenceWriteFailed("locked")
        return original(result, **kwargs)

    monkeypatch.setattr(manager, "import_result", locked_once)
    first = result_factory(1)

    count = await service.send_to_inbox([first, result_factory(2), result_factory(3)])

    assert count == 2
    assert service.publication_store.count_publications() == 2
    assert not service.identifier_cache.exists(first)
    assert manager.unread_count == 2 == manager.recount_unread()


@pytest.mark.asyncio
async def test_persistence_error_after_search_marks_status_failed(parts, result_factory, monkeypatch):
    service, source, feed_store, _ = parts
    source.search.return_value = [result_factory(1)]
    feed = feed_store.create_feed(name="Flaky", query="q")

    def broken(*args, **kwargs):
        raise PersistenceWriteFailed("disk full")

    monkeypatch.setattr(feed_store, "record_execution", broken)

    with pytest.raises(PersistenceWriteFailed):
        await service.fetch_for_inbox(feed)

    assert service.status.state == FetchState.FAILED
    assert service.is_loading is False
