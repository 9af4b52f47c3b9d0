"""Group feed query parsing and staggered author searches."""

import time
from unittest.mock import AsyncMock

import pytest

from paperinbox.infrastructure.sources.group_feed_source import (
    GroupFeedQuery,
    GroupFeedSource,
    author_matches,
    build_group_feed_query,
)

QUERY = "GROUP_FEED|authors:Jane Doe, John Smith|categories:astro-ph.CO,gr-qc|crosslisted:true"


def test_parse_group_feed_query():
    group = GroupFeedQuery.parse(QUERY)
    assert group.authors == ["Jane Doe", "John Smith"]
    assert group.categories == ["astro-ph.CO", "gr-qc"]
    assert group.author_query("Jane Doe") == 'au:"Jane Doe" AND (cat:astro-ph.CO OR cat:gr-qc)'


@pytest.mark.parametrize(
    "query,message",
    [
        ("cat:gr-qc", "Not a group feed"),
        ("GROUP_FEED|categories:gr-qc", "authors"),
        ("GROUP_FEED|authors:Jane Doe", "categories"),
    ],
)
def test_parse_rejects_incomplete_queries(query, message):
    with pytest.raises(ValueError, match=message):
        GroupFeedQuery.parse(query)


def test_build_group_feed_query_round_trips():
    query = build_group_feed_query([" Jane Doe ", ""], ["gr-qc"])
    assert query == "GROUP_FEED|authors:Jane Doe|categories:gr-qc"
    with pytest.raises(ValueError):
        build_group_feed_query([], ["gr-qc"])


@pytest.mark.parametrize(
    "paper_authors,expected",
    [
        (["Jane Doe"], True),
        (["J. Doe"], True),
        (["Jane A. Doe"], True),
        (["jane doe"], True),
        (["Jane Smith"], False),
        (["Doe, Jane"], False),
        ([], False),
    ],
)
def test_author_matches(paper_authors, expected):
    assert author_matches("Jane Doe", paper_authors) is expected


@pytest.mark.asyncio
async def test_plain_query_passes_through(result_factory):
    inner = AsyncMock()
    inner.search.return_value = [result_factory(1)]
    source = GroupFeedSource(inner, stagger_seconds=0)

    assert len(await source.search("cat:gr-qc", max_results=5)) == 1
    inner.search.assert_awaited_once_with("cat:gr-qc", max_results=5)


@pytest.mark.asyncio
async def test_group_feed_searches_each_author_in_order(result_factory):
    inner = AsyncMock()
    inner.search.side_effect = [
        [
            result_factory(1, authors=["J. Doe"]),
            result_factory(2, authors=["Someone Else"]),
        ],
        [
            result_factory(3, authors=["John Smith"]),
            result_factory(4, authors=["John Smith", "Jane Doe"], doi="10.1000/paper.1"),
        ],
    ]
    source = GroupFeedSource(inner, stagger_seconds=0)

    results = await source.search(QUERY, max_results=20)

    assert [r.title for r in results] == ["Paper 1", "Paper 3"]
    queries = [c.args[0] for c in inner.search.await_args_list]
    assert queries == [
        'au:"Jane Doe" AND (cat:astro-ph.CO OR cat:gr-qc)',
        'au:"John Smith" AND (cat:astro-ph.CO OR cat:gr-qc)',
    ]


@pytest.mark.asyncio
async def test_one_failing_author_is_skipped(result_factory):
    inner = AsyncMock()
    inner.search.side_effect = [ConnectionError("timeout"), [result_factory(3, authors=["John Smith"])]]
    source = GroupFeedSource(inner, stagger_seconds=0)

    assert [r.title for r in await source.search(QUERY)] == ["Paper 3"]


@pytest.mark.asyncio
async def test_all_authors_failing_raises():
    inner = AsyncMock()
    inner.search.side_effect = ConnectionError("down")
    source = GroupFeedSource(inner, stagger_seconds=0)

    with pytest.raises(RuntimeError) as excinfo:
        await source.search(QUERY)
    assert isinstance(excinfo.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_searches_are_staggered():
    inner = AsyncMock()
    inner.search.return_value = []

    started = time.monotonic()
    await GroupFeedSource(inner, stagger_seconds=0.05).search(QUERY)

    assert time.monotonic() - started >= 0.05
    assert inner.search.await_count == 2
