# src/paperinbox/infrastructure/sources/group_feed_source.py
"""
Group feeds.

A group feed follows several authors inside a set of arXiv categories. Its
query string is

    GROUP_FEED|authors:Jane Doe,John Smith|categories:astro-ph.CO,gr-qc

and is refreshed as one author search per author, run one after another with
a pause in between so the upstream API is not hammered. Ordinary queries are
passed straight to the wrapped source.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from paperinbox.application.ports.paper_source_port import PaperSourcePort
from paperinbox.domain.candidate import CandidateResult

logger = logging.getLogger(__name__)

GROUP_FEED_PREFIX = "GROUP_FEED|"
DEFAULT_STAGGER_SECONDS = 2.0


def is_group_feed(query: str) -> bool:
    return (query or "").startswith(GROUP_FEED_PREFIX)


def _split_field(query: str, name: str) -> List[str]:
    prefix = f"{name}:"
    for part in query.split("|"):
        if part.startswith(prefix):
            return [v.strip() for v in part[len(prefix):].split(",") if v.strip()]
    return []


@dataclass(frozen=True)
class GroupFeedQuery:
    authors: List[str]
    categories: List[str]

    @classmethod
    def parse(cls, query: str) -> "GroupFeedQuery":
        if not is_group_feed(query):
            raise ValueError("Not a group feed query")
        authors = _split_field(query, "authors")
        categories = _split_field(query, "categories")
        if not authors:
            raise ValueError("No authors specified in the group feed")
        if not categories:
            raise ValueError("No categories specified in the group feed")
        return cls(authors=authors, categories=categories)

    def to_query(self) -> str:
        return (
            f"{GROUP_FEED_PREFIX}authors:{','.join(self.authors)}"
            f"|categories:{','.join(self.categories)}"
        )

    def author_query(self, author: str) -> str:
        cats = " OR ".join(f"cat:{c}" for c in self.categories)
        return f'au:"{author}" AND ({cats})'


def build_group_feed_query(authors: Sequence[str], categories: Sequence[str]) -> str:
    """Validated query string for a group feed."""
    query = GroupFeedQuery(
        authors=[str(a).strip() for a in authors if str(a).strip()],
        categories=[str(c).strip() for c in categories if str(c).strip()],
    ).to_query()
    GroupFeedQuery.parse(query)
    return query


def normalize_author_name(name: str) -> str:
    text = name.lower().replace(".", "").replace(",", " ")
    return " ".join(text.split())


def author_matches(target: str, authors: Sequence[str]) -> bool:
    """
    True if ``target`` names one of ``authors``.

    Exact after normalization, or every significant part of the target
    (longer than one character) prefix-matches a part of the paper author
    and the last significant parts are equal: "Jane Doe" matches
    "J. Doe" and "Jane A. Doe", not "Jane Smith".
    """
    target_norm = normalize_author_name(target)
    target_parts = [p for p in target_norm.split() if len(p) > 1]

    for author in authors:
        paper_norm = normalize_author_name(author)
        if paper_norm == target_norm:
            return True
        if not target_parts:
            continue

        paper_parts = paper_norm.split()
        all_parts_match = all(
            any(pp == tp or pp.startswith(tp) or tp.startswith(pp) for pp in paper_parts)
            for tp in target_parts
        )
        if not all_parts_match:
            continue

        significant = [p for p in paper_parts if len(p) > 1]
        if significant and significant[-1] == target_parts[-1]:
            return True

    return False


class GroupFeedSource:
    """
    Source wrapper that expands group feed queries into author searches.

    Per-author failures are logged and skipped; the search only fails when
    every author search failed.
    """

    def __init__(self, source: PaperSourcePort, *, stagger_seconds: float = DEFAULT_STAGGER_SECONDS):
        self.source = source
        self.stagger_seconds = float(stagger_seconds)

    async def search(self, query: str, *, max_results: int = 50) -> List[CandidateResult]:
        if not is_group_feed(query):
            return await self.source.search(query, max_results=max_results)

        group = GroupFeedQuery.parse(query)
        logger.info(
            f"Group feed refresh: {len(group.authors)} authors in {len(group.categories)} categories"
        )

        results: List[CandidateResult] = []
        seen: Set[str] = set()
        failures = 0
        last_error: Optional[Exception] = None

        for index, author in enumerate(group.authors):
            if index > 0 and self.stagger_seconds > 0:
                await asyncio.sleep(self.stagger_seconds)

            try:
                hits = await self.source.search(group.author_query(author), max_results=max_results)
            except Exception as e:
                failures += 1
                last_error = e
                logger.warning(f"Group feed search for '{author}' failed: {e}")
                continue

            matched = [hit for hit in hits if author_matches(author, hit.authors)]
            logger.debug(f"'{author}': {len(hits)} papers, {len(matched)} with matching author")
            for hit in matched:
                ids = hit.identifiers()
                key = ids["doi"] or ids["arxiv"] or hit.id
                if key in seen:
                    continue
                seen.add(key)
                results.append(hit)

        if failures == len(group.authors):
            raise RuntimeError(f"All {failures} author searches failed") from last_error

        logger.info(f"Group feed search complete: {len(results)} unique papers")
        return results

    async def close(self) -> None:
        await self.source.close()
