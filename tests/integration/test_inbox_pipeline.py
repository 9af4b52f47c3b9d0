"""
End-to-end inbox pipeline: YAML feeds -> scheduler -> harvester source ->
mute filter -> dedup -> inbox, against one SQLite database.
"""

import asyncio
import textwrap
from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from paperinbox.application.workflows.inbox_runtime import build_inbox_runtime
from paperinbox.domain.inbox import MuteType
from paperinbox.infrastructure.environment.providers import StaticPowerState, StaticReachability
from paperinbox.infrastructure.sources.harvester_source import HarvesterSource


@dataclass
class _HarvestResult:
    papers: List[dict] = field(default_factory=list)
    error: Optional[str] = None


class _FakeHarvester:
    """Returns canned papers per query and records every call."""

    def __init__(self, papers_by_query):
        self.papers_by_query = papers_by_query
        self.calls = []

    async def search(self, *, query, max_results):
        self.calls.append(query)
        papers = self.papers_by_query.get(query)
        if papers is None:
            return _HarvestResult(error=f"no such query: {query}")
        return _HarvestResult(papers=list(papers)[:max_results])

    async def close(self):
        return None


PAPERS = {
    "dark energy": [
        {"title": "DE 1", "doi": "10.1/de1", "authors": ["A. Riess"], "source": "ads"},
        {"title": "DE 2", "arxiv_id": "astro-ph.CO/0601001v2", "authors": ["S. Perlmutter"]},
        {"title": "DE 3", "doi": "10.1/de3", "authors": ["Albert Einstein"]},
    ],
    "cosmology": [
        {"title": "DE 1 again", "doi": "https://doi.org/10.1/DE1"},
        {"title": "Cosmo 1", "bibcode": "2024ApJ...900L...1X"},
    ],
}


@pytest.fixture
def feeds_file(tmp_path):
    path = tmp_path / "feeds.yaml"
    path.write_text(
        textwrap.dedent(
            """
            feeds:
              - name: Dark energy
                query: dark energy
                refresh_interval: daily
              - name: Cosmology
                query: cosmology
                refresh_interval: 6h
              - name: Broken
                query: missing
              - name: Library only
                query: dark energy
                feeds_to_inbox: false
            """
        ),
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def harvester():
    return _FakeHarvester(PAPERS)


@pytest.fixture
def runtime(db_url, feeds_file, harvester):
    rt = build_inbox_runtime(
        db_url,
        source=HarvesterSource(harvester, name="fake"),
        power_provider=StaticPowerState(False),
        network_provider=StaticReachability(True),
        check_interval=3600,
        feeds_path=feeds_file,
    )
    yield rt
    rt.close()


@pytest.mark.asyncio
async def test_full_cycle(runtime, harvester):
    runtime.inbox_manager.mute(MuteType.AUTHOR, "Einstein")

    count = await runtime.scheduler.trigger_immediate_check()

    # DE 1, DE 2 from the first feed; Cosmo 1 from the second (DE 1 again is a duplicate)
    assert count == 3
    assert harvester.calls == ["dark energy", "cosmology", "missing"]
    stats = runtime.scheduler.statistics
    assert stats.total_refresh_cycles == 1
    assert stats.total_papers_fetched == 3
    assert stats.feed_count == 3
    assert runtime.inbox_manager.unread_count == 3 == runtime.inbox_manager.recount_unread()

    feeds = {f.name: f for f in runtime.feed_store.list_feeds()}
    assert feeds["Dark energy"].last_fetch_count == 2
    assert feeds["Cosmology"].last_fetch_count == 1
    assert feeds["Broken"].date_last_executed is None
    assert feeds["Library only"].date_last_executed is None

    # Nothing is due any more except the broken feed
    assert [f.name for f in runtime.scheduler.due_feeds()] == ["Broken"]
    assert await runtime.scheduler.trigger_immediate_check() == 0
    assert runtime.scheduler.statistics.total_refresh_cycles == 2


@pytest.mark.asyncio
async def test_dismissed_paper_stays_out_after_restart(db_url, feeds_file, harvester, runtime):
    found = await runtime.fetch_service.source.search("dark energy")
    assert await runtime.fetch_service.send_to_inbox(found) == 3
    manager = runtime.inbox_manager
    target = next(p for p in manager.inbox_papers() if p.title == "DE 1")
    assert manager.dismiss_from_inbox(target.id)
    runtime.close()

    restarted = build_inbox_runtime(
        db_url,
        source=HarvesterSource(harvester, name="fake"),
        check_interval=3600,
    )
    try:
        again = await restarted.fetch_service.send_to_inbox(
            await restarted.fetch_service.source.search("cosmology")
        )
        # "DE 1 again" carries the dismissed DOI; only Cosmo 1 gets in
        assert again == 1
        titles = sorted(p.title for p in restarted.inbox_manager.inbox_papers())
        assert titles == ["Cosmo 1", "DE 2", "DE 3"]
    finally:
        restarted.close()


@pytest.mark.asyncio
async def test_scheduler_start_stop(runtime):
    await runtime.scheduler.start()
    await runtime.scheduler.start()
    assert runtime.scheduler.running
    for _ in range(50):
        if runtime.scheduler.statistics.total_refresh_cycles:
            break
        await asyncio.sleep(0.01)
    await runtime.scheduler.stop()
    assert not runtime.scheduler.running
    assert runtime.scheduler.statistics.total_refresh_cycles == 1
