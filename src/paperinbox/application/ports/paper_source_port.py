# src/paperinbox/application/ports/paper_source_port.py
"""
Paper source port.

A source turns a feed's query string into candidate results. Rate limiting
is the source's own responsibility; the scheduler only guarantees that it
never calls sources concurrently.
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from paperinbox.domain.candidate import CandidateResult


@runtime_checkable
class PaperSourcePort(Protocol):
    """Abstract interface for search sources feeding the Inbox."""

    async def search(self, query: str, *, max_results: int = 50) -> List[CandidateResult]:
        """
        Search for papers matching the query.

        Raises on failure; errors are not swallowed by the caller.
        """
        ...

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""
        ...


class NullPaperSource:
    """Source that never finds anything; used when no source is configured."""

    async def search(self, query: str, *, max_results: int = 50) -> List[CandidateResult]:
        return []

    async def close(self) -> None:  # pragma: no cover
        return None
