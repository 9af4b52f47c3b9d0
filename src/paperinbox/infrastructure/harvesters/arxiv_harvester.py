# src/paperinbox/infrastructure/harvesters/arxiv_harvester.py
"""
arXiv paper harvester.

Uses the arXiv Atom API. Feed queries in arXiv ``search_query`` syntax
(``cat:astro-ph.CO AND abs:"dark energy"``) are sent as is; anything else is
searched in all fields.
API documentation: https://arxiv.org/help/api
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import xml.etree.ElementTree as ET
from typing import List, Optional

import aiohttp

from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.harvest import HarvestResult

logger = logging.getLogger(__name__)

ATOM_NS = {"atom": "http://www.w3.org/2005/Atom", "arxiv": "http://arxiv.org/schemas/atom"}

_FIELD_PREFIX = re.compile(r"\b(ti|au|abs|co|jr|cat|rn|id|all):")
_VERSION_SUFFIX = re.compile(r"v\d+$")


class ArxivHarvester:
    """
    arXiv paper harvester using the Atom API.

    API: https://export.arxiv.org/api/query
    Rate limit: 1 request per 3 seconds (be conservative)
    """

    ARXIV_API_URL = "https://export.arxiv.org/api/query"
    REQUEST_INTERVAL = 3.0  # seconds between requests
    MAX_PAGE_SIZE = 200

    def __init__(self, *, timeout: float = 30.0):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._last_request_time: float = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def _rate_limit(self) -> None:
        """Enforce rate limiting between requests."""
        now = time.monotonic()
        elapsed = now - self._last_request_time
        if self._last_request_time and elapsed < self.REQUEST_INTERVAL:
            await asyncio.sleep(self.REQUEST_INTERVAL - elapsed)
        self._last_request_time = time.monotonic()

    @staticmethod
    def build_query(query: str) -> str:
        text = query.strip()
        if _FIELD_PREFIX.search(text):
            return text
        return f"all:{text}"

    async def search(self, query: str, *, max_results: int = 50) -> HarvestResult:
        """Newest submissions first."""
        params = {
            "search_query": self.build_query(query),
            "start": 0,
            "max_results": min(max_results, self.MAX_PAGE_SIZE),
            "sortBy": "submittedDate",
            "sortOrder": "descending",
        }

        try:
            await self._rate_limit()
            session = await self._get_session()

            async with session.get(self.ARXIV_API_URL, params=params) as resp:
                if resp.status != 200:
                    return HarvestResult(
                        source="arxiv",
                        error=f"arXiv API returned status {resp.status}",
                    )
                xml_text = await resp.text()

            papers = parse_atom(xml_text)
            logger.info(f"arXiv harvester found {len(papers)} papers for query: {query}")
            return HarvestResult(source="arxiv", papers=papers, total_found=len(papers))
        except (aiohttp.ClientError, asyncio.TimeoutError, ET.ParseError) as e:
            logger.warning(f"arXiv harvester error: {e}")
            return HarvestResult(source="arxiv", error=str(e) or type(e).__name__)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


def parse_atom(xml_text: str) -> List[CandidateResult]:
    """Atom feed entries as candidate results; entries without a title are dropped."""
    root = ET.fromstring(xml_text)
    papers = []
    for entry in root.findall("atom:entry", ATOM_NS):
        paper = _entry_to_candidate(entry)
        if paper is not None:
            papers.append(paper)
    return papers


def _entry_to_candidate(entry: ET.Element) -> Optional[CandidateResult]:
    title = _read_text(entry, "atom:title")
    if not title:
        return None

    # http://arxiv.org/abs/2401.12345v2 or http://arxiv.org/abs/hep-ph/0601001v1
    id_url = _read_text(entry, "atom:id")
    arxiv_id = id_url.split("/abs/", 1)[-1] if "/abs/" in id_url else id_url.rsplit("/", 1)[-1]
    arxiv_id = _VERSION_SUFFIX.sub("", arxiv_id)

    authors = [
        name
        for name in (_read_text(node, "atom:name") for node in entry.findall("atom:author", ATOM_NS))
        if name
    ]

    year = None
    published = _read_text(entry, "atom:published")
    if published[:4].isdigit():
        year = int(published[:4])

    return CandidateResult(
        id=arxiv_id,
        source_id="arxiv",
        title=title,
        authors=authors,
        year=year,
        venue=_read_text(entry, "arxiv:journal_ref") or None,
        abstract=_read_text(entry, "atom:summary") or None,
        doi=_read_text(entry, "arxiv:doi") or None,
        arxiv_id=arxiv_id or None,
    )


def _read_text(node: ET.Element, path: str) -> str:
    found = node.find(path, ATOM_NS)
    if found is None or found.text is None:
        return ""
    return " ".join(found.text.split())
