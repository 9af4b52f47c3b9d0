# src/paperinbox/application/services/identifier_cache.py
"""
Identifier cache.

In-memory index of every identifier the library has already seen, used to
reject re-imports before anything is persisted.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Set

from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.paper_identity import (
    normalize_arxiv_id,
    normalize_bibcode,
    normalize_doi,
    normalize_source_id,
)
from paperinbox.infrastructure.stores.publication_store import PublicationStore

logger = logging.getLogger(__name__)


class IdentifierCache:
    """
    Multi-namespace identifier index.

    Namespaces:
    1. DOI
    2. arXiv ID (version suffix stripped)
    3. Bibcode
    4. Source ID A (e.g. Semantic Scholar)
    5. Source ID B (e.g. OpenAlex)

    All values are normalized, so membership is case-insensitive. A result
    matches if any one of its identifiers is already present.
    """

    def __init__(self, store: PublicationStore):
        self._store = store
        self._lock = threading.Lock()
        self._doi_index: Set[str] = set()
        self._arxiv_index: Set[str] = set()
        self._bibcode_index: Set[str] = set()
        self._source_a_index: Set[str] = set()
        self._source_b_index: Set[str] = set()
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load_from_database(self) -> None:
        """
        Rebuild all indexes from persisted publications and dismissed papers.

        The store is read under the lock, so an ``add`` that arrives during the
        rebuild waits for it instead of being overwritten by the swap.
        """
        with self._lock:
            self._rebuild()

        counts = self.counts()
        logger.info(
            f"Identifier cache loaded: {counts['doi']} DOIs, {counts['arxiv']} arXiv IDs, "
            f"{counts['bibcode']} bibcodes, {counts['source_a']} + {counts['source_b']} source IDs"
        )

    def _rebuild(self) -> None:
        doi: Set[str] = set()
        arxiv: Set[str] = set()
        bibcode: Set[str] = set()
        source_a: Set[str] = set()
        source_b: Set[str] = set()

        for row_doi, row_arxiv, row_bibcode, row_a, row_b in self._store.iter_identifiers():
            _put(doi, normalize_doi(row_doi))
            _put(arxiv, normalize_arxiv_id(row_arxiv))
            _put(bibcode, normalize_bibcode(row_bibcode))
            _put(source_a, normalize_source_id(row_a))
            _put(source_b, normalize_source_id(row_b))

        self._doi_index = doi
        self._arxiv_index = arxiv
        self._bibcode_index = bibcode
        self._source_a_index = source_a
        self._source_b_index = source_b
        self._loaded = True

    def exists(self, result: CandidateResult) -> bool:
        """True if any identifier of ``result`` is already known."""
        ids = result.identifiers()
        with self._lock:
            if ids["doi"] and ids["doi"] in self._doi_index:
                return True
            if ids["arxiv"] and ids["arxiv"] in self._arxiv_index:
                return True
            if ids["bibcode"] and ids["bibcode"] in self._bibcode_index:
                return True
            if ids["source_a"] and ids["source_a"] in self._source_a_index:
                return True
            if ids["source_b"] and ids["source_b"] in self._source_b_index:
                return True
        return False

    def add(
        self,
        *,
        doi: Optional[str] = None,
        arxiv_id: Optional[str] = None,
        bibcode: Optional[str] = None,
        source_id_a: Optional[str] = None,
        source_id_b: Optional[str] = None,
    ) -> None:
        with self._lock:
            _put(self._doi_index, normalize_doi(doi))
            _put(self._arxiv_index, normalize_arxiv_id(arxiv_id))
            _put(self._bibcode_index, normalize_bibcode(bibcode))
            _put(self._source_a_index, normalize_source_id(source_id_a))
            _put(self._source_b_index, normalize_source_id(source_id_b))

    def add_from_result(self, result: CandidateResult) -> None:
        """Index an accepted result so later copies in the same batch are rejected."""
        self.add(
            doi=result.doi,
            arxiv_id=result.arxiv_id,
            bibcode=result.bibcode,
            source_id_a=result.source_id_a,
            source_id_b=result.source_id_b,
        )

    def clear(self) -> None:
        with self._lock:
            self._doi_index.clear()
            self._arxiv_index.clear()
            self._bibcode_index.clear()
            self._source_a_index.clear()
            self._source_b_index.clear()
            self._loaded = False

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "doi": len(self._doi_index),
                "arxiv": len(self._arxiv_index),
                "bibcode": len(self._bibcode_index),
                "source_a": len(self._source_a_index),
                "source_b": len(self._source_b_index),
            }


def _put(index: Set[str], value: Optional[str]) -> None:
    if value:
        index.add(value)
