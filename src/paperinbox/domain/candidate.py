# src/paperinbox/domain/candidate.py
"""
Candidate records produced by search sources.

A CandidateResult is ephemeral: it is evaluated once by the inbox pipeline
and either turned into a persisted Publication or dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from paperinbox.domain.paper_identity import (
    normalize_arxiv_id,
    normalize_bibcode,
    normalize_doi,
    normalize_source_id,
)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class CandidateResult:
    """
    One search hit from a source.

    Required fields: id, source_id, title.
    Identifier fields are optional; a result without any identifier is never
    treated as a duplicate.
    """

    id: str
    source_id: str
    title: str
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    abstract: Optional[str] = None
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    bibcode: Optional[str] = None
    source_id_a: Optional[str] = None
    source_id_b: Optional[str] = None

    def identifiers(self) -> Dict[str, Optional[str]]:
        """Normalized identifiers keyed by namespace."""
        return {
            "doi": normalize_doi(self.doi),
            "arxiv": normalize_arxiv_id(self.arxiv_id),
            "bibcode": normalize_bibcode(self.bibcode),
            "source_a": normalize_source_id(self.source_id_a),
            "source_b": normalize_source_id(self.source_id_b),
        }

    def has_identifiers(self) -> bool:
        return any(self.identifiers().values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "title": self.title,
            "authors": list(self.authors),
            "year": self.year,
            "venue": self.venue,
            "abstract": self.abstract,
            "doi": self.doi,
            "arxiv_id": self.arxiv_id,
            "bibcode": self.bibcode,
            "source_id_a": self.source_id_a,
            "source_id_b": self.source_id_b,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateResult":
        """Build from a source payload; accepts snake_case and camelCase keys."""

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        authors_raw = data.get("authors") or []
        if isinstance(authors_raw, str):
            authors_raw = [authors_raw]
        authors = [str(a).strip() for a in authors_raw if str(a).strip()]

        bibcode = _opt_str(pick("bibcode"))
        record_id = _opt_str(pick("id")) or bibcode or _opt_str(pick("doi")) or ""

        return cls(
            id=record_id,
            source_id=_opt_str(pick("source_id", "sourceID", "source")) or "",
            title=_opt_str(pick("title")) or "",
            authors=authors,
            year=_opt_int(pick("year")),
            venue=_opt_str(pick("venue")),
            abstract=_opt_str(pick("abstract")),
            doi=_opt_str(pick("doi")),
            arxiv_id=_opt_str(pick("arxiv_id", "arxivID")),
            bibcode=bibcode,
            source_id_a=_opt_str(pick("source_id_a", "sourceIDA", "semantic_scholar_id")),
            source_id_b=_opt_str(pick("source_id_b", "sourceIDB", "openalex_id")),
        )
