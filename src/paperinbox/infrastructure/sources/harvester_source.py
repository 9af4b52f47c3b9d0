# src/paperinbox/infrastructure/sources/harvester_source.py
"""
Harvester source adapter.

Wraps any harvester whose ``search`` returns a result object with ``papers``
and ``error`` attributes, and turns its papers into CandidateResults for the
inbox pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional

from paperinbox.domain.candidate import CandidateResult

logger = logging.getLogger(__name__)


class HarvesterSource:
    """
    Paper source backed by a harvester.

    Rate limit: at most one request per ``request_interval`` seconds.
    """

    def __init__(self, harvester: Any, *, request_interval: float = 0.0, name: Optional[str] = None):
        self.harvester = harvester
        self.request_interval = float(request_interval)
        self.name = name or type(harvester).__name__
        self._last_request_time: float = 0

    async def _rate_limit(self) -> None:
        """Enforce rate limiting between requests."""
        if self.request_interval <= 0:
            return
        now = time.monotonic()
        elapsed = now - self._last_request_time
        if self._last_request_time and elapsed < self.request_interval:
            await asyncio.sleep(self.request_interval - elapsed)
        self._last_request_time = time.monotonic()

    async def search(self, query: str, *, max_results: int = 50) -> List[CandidateResult]:
        await self._rate_limit()
        result = await self.harvester.search(query=query, max_results=max_results)

        papers = list(getattr(result, "papers", None) or [])
        error = getattr(result, "error", None)
        if error and not papers:
            raise RuntimeError(f"{self.name}: {error}")
        if error:
            logger.warning(f"Partial results from {self.name}: {error}")

        candidates = []
        for paper in papers:
            candidate = to_candidate(paper)
            if not candidate.title:
                logger.debug(f"Skipping untitled paper from {self.name}")
                continue
            candidates.append(candidate)

        logger.info(f"{self.name} returned {len(candidates)} papers for query '{query}'")
        return candidates

    async def close(self) -> None:
        close = getattr(self.harvester, "close", None)
        if close is not None:
            await close()


def to_candidate(paper: Any) -> CandidateResult:
    """Convert a harvested paper (dict or object with ``to_dict``) to a CandidateResult."""
    if isinstance(paper, CandidateResult):
        return paper
    if isinstance(paper, dict):
        data = dict(paper)
    elif hasattr(paper, "to_dict"):
        data = dict(paper.to_dict())
    else:
        data = dict(vars(paper))

    source = data.get("source")
    if source is not None and hasattr(source, "value"):
        data["source"] = source.value

    candidate = CandidateResult.from_dict(data)
    if not candidate.id:
        candidate.id = (
            candidate.arxiv_id
            or candidate.source_id_a
            or candidate.source_id_b
            or candidate.title
        )
    return candidate
