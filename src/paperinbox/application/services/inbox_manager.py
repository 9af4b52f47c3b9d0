# src/paperinbox/application/services/inbox_manager.py
"""
Inbox manager.

Owns the single Inbox library, its unread count, the mute list, and the
triage operations (add / dismiss / keep).
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import List, Optional, Sequence

from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.inbox import INBOX_LIBRARY_NAME, Library, MuteRule, MuteType, Publication
from paperinbox.domain.paper_identity import arxiv_category, normalize_doi
from paperinbox.infrastructure.stores.mute_store import MutedItemStore
from paperinbox.infrastructure.stores.publication_store import PublicationStore
from paperinbox.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)


class InboxManager:
    """
    Manages the Inbox library for paper discovery and triage.

    Features:
    - Single Inbox library, created on first access
    - Mute rules (author, DOI, bibcode, venue, arXiv category)
    - Unread count, kept incrementally and recomputable from the store
    - Dismissal tracking so dismissed papers do not come back
    """

    def __init__(self, publication_store: PublicationStore, mute_store: MutedItemStore):
        self._store = publication_store
        self._mute_store = mute_store
        self._lock = threading.RLock()

        self._inbox: Optional[Library] = None
        self._unread_count = 0
        self._muted_items: List[MuteRule] = []

        self._load_inbox()
        self._load_muted_items()

    # --- inbox library ---

    @property
    def inbox_library(self) -> Optional[Library]:
        return self._inbox

    def get_or_create_inbox(self) -> Library:
        """Return the Inbox library, creating it the first time."""
        with self._lock:
            if self._inbox is not None and self._store.get_library(self._inbox.id) is not None:
                return self._inbox

            self._inbox = None
            existing = self._store.get_inbox_library()
            if existing is not None:
                logger.info("Found existing Inbox library")
                self._inbox = existing
                self._unread_count = self._store.count_unread(existing.id)
                return existing

            inbox = self._store.create_inbox_library(name=INBOX_LIBRARY_NAME)
            Logger.info(f"Created Inbox library with ID: {inbox.id}", file=LogFiles.INBOX)
            self._inbox = inbox
            self._unread_count = 0
            return inbox

    def invalidate_caches(self) -> None:
        """Drop cached state, e.g. after the database was reset underneath us."""
        with self._lock:
            logger.info("Invalidating InboxManager caches")
            self._inbox = None
            self._unread_count = 0
            self._muted_items = []
            self._load_inbox()
            self._load_muted_items()

    def _load_inbox(self) -> None:
        inbox = self._store.get_inbox_library()
        if inbox is not None:
            self._inbox = inbox
            self._unread_count = self._store.count_unread(inbox.id)

    # --- unread count ---

    @property
    def unread_count(self) -> int:
        return self._unread_count

    def recount_unread(self) -> int:
        """Fresh count of unread Inbox papers from the store (no side effects)."""
        inbox = self._inbox
        if inbox is None:
            return 0
        return self._store.count_unread(inbox.id)

    def refresh_unread_count(self) -> int:
        with self._lock:
            self._unread_count = self.recount_unread()
            return self._unread_count

    def mark_as_read(self, publication_id: str) -> None:
        with self._lock:
            pub = self._store.get_publication(publication_id)
            if pub is None or pub.is_read:
                return
            self._store.set_read([publication_id], True)
            if self._in_inbox(pub):
                self._unread_count = max(0, self._unread_count - 1)

    def mark_all_as_read(self) -> int:
        with self._lock:
            if self._inbox is None:
                return 0
            unread = self._store.query_publications(self._inbox.id, unread_only=True)
            if unread:
                Logger.info(f"Marking {len(unread)} Inbox papers as read", file=LogFiles.INBOX)
                self._store.set_read([p.id for p in unread], True)
            self._unread_count = 0
            return len(unread)

    # --- mute management ---

    def _load_muted_items(self) -> None:
        self._muted_items = self._mute_store.list_all()
        logger.debug(f"Loaded {len(self._muted_items)} muted items")

    def mute(self, mute_type: "MuteType | str", value: str) -> MuteRule:
        """Mute an item; muting an existing (type, value) pair returns the existing rule."""
        kind = MuteType.parse(mute_type)
        text = (value or "").strip()
        if not text:
            raise ValueError("Mute value must not be empty")

        with self._lock:
            for item in self._muted_items:
                if item.type == kind and item.value == text:
                    return item

            rule = self._mute_store.create(kind, text)
            if all(item.id != rule.id for item in self._muted_items):
                self._muted_items.insert(0, rule)
            Logger.info(f"Muting {kind.value}: {text}", file=LogFiles.MUTE)
            return rule

    def unmute(self, rule: MuteRule) -> None:
        with self._lock:
            Logger.info(f"Unmuting {rule.type.value}: {rule.value}", file=LogFiles.MUTE)
            self._mute_store.delete(rule.id)
            self._muted_items = [item for item in self._muted_items if item.id != rule.id]

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._muted_items)
            Logger.warning(f"Clearing all {count} muted items", file=LogFiles.MUTE)
            self._mute_store.delete_all()
            self._muted_items = []
            return count

    def rules(self, of_type: "MuteType | str | None" = None) -> List[MuteRule]:
        items = list(self._muted_items)
        if of_type is None:
            return items
        kind = MuteType.parse(of_type)
        return [item for item in items if item.type == kind]

    def get_rule(self, rule_id: int) -> Optional[MuteRule]:
        for item in self._muted_items:
            if item.id == rule_id:
                return item
        return None

    def should_filter(
        self,
        id: str,
        authors: Sequence[str],
        doi: Optional[str] = None,
        venue: Optional[str] = None,
        arxiv_id: Optional[str] = None,
        bibcode: Optional[str] = None,
    ) -> bool:
        """True if any active mute rule matches; rules are not prioritized."""
        rules = list(self._muted_items)
        if not rules:
            return False

        lowered_authors = [a.lower() for a in authors or []]
        doi_key = normalize_doi(doi)
        venue_key = (venue or "").lower()
        category = arxiv_category(arxiv_id)
        bibcode_key = (bibcode or id or "").strip().lower()

        for item in rules:
            needle = item.value.lower()
            if item.type == MuteType.AUTHOR:
                if any(needle in author for author in lowered_authors):
                    return True
            elif item.type == MuteType.DOI:
                if doi_key is not None and doi_key == normalize_doi(item.value):
                    return True
            elif item.type == MuteType.BIBCODE:
                if bibcode_key and bibcode_key == needle.strip():
                    return True
            elif item.type == MuteType.VENUE:
                if venue_key and needle in venue_key:
                    return True
            elif item.type == MuteType.ARXIV_CATEGORY:
                if category is not None and category.startswith(needle):
                    return True

        return False

    def should_filter_result(self, result: CandidateResult) -> bool:
        return self.should_filter(
            id=result.id,
            authors=result.authors,
            doi=result.doi,
            venue=result.venue,
            arxiv_id=result.arxiv_id,
            bibcode=result.bibcode,
        )

    # --- paper operations ---

    def add_to_inbox(self, publication_id: str) -> bool:
        """
        Put a publication in the Inbox and mark it unread.

        Returns True if a new membership was created; an existing membership
        is left as is (only its read flag is reset).
        """
        with self._lock:
            inbox = self.get_or_create_inbox()
            pub = self._store.get_publication(publication_id)
            if pub is None:
                logger.warning(f"Cannot add unknown publication {publication_id} to Inbox")
                return False

            was_unread_in_inbox = inbox.id in pub.library_ids and not pub.is_read
            added = self._store.add_to_library(publication_id, inbox.id)
            if pub.is_read:
                self._store.set_read([publication_id], False)
            if not was_unread_in_inbox:
                self._unread_count += 1

            if not added:
                logger.debug("Paper already in Inbox")
            return added

    def import_result(
        self, result: CandidateResult, *, date_added: Optional[datetime] = None
    ) -> Publication:
        """
        Persist ``result`` as a new unread Inbox publication.

        Publication and membership are one commit; on ``PersistenceWriteFailed``
        nothing was written and the unread count is unchanged.
        """
        with self._lock:
            inbox = self.get_or_create_inbox()
            pub = self._store.create_publication(
                result, date_added=date_added, library_id=inbox.id
            )
            self._unread_count += 1
            return pub

    def dismiss_from_inbox(self, publication_id: str) -> bool:
        """
        Remove a publication from the Inbox.

        The publication record is deleted when the Inbox was its only library.
        Returns False if the publication was not in the Inbox.
        """
        with self._lock:
            inbox = self._inbox
            pub = self._store.get_publication(publication_id)
            if inbox is None or pub is None or inbox.id not in pub.library_ids:
                return False

            self.track_dismissal(pub)
            self._store.remove_from_library(publication_id, inbox.id)
            if not pub.is_read:
                self._unread_count = max(0, self._unread_count - 1)

            if not self._store.library_ids_for(publication_id):
                self._store.delete_publication(publication_id)
                Logger.info(f"Dismissed and deleted paper: {pub.title[:80]}", file=LogFiles.INBOX)
            else:
                Logger.info(f"Dismissed paper from Inbox: {pub.title[:80]}", file=LogFiles.INBOX)
            return True

    def keep_to_library(self, publication_id: str, library_id: str) -> bool:
        """Add the publication to ``library_id``; Inbox membership is untouched."""
        if self._store.get_library(library_id) is None:
            raise ValueError(f"Unknown library: {library_id}")
        if self._store.get_publication(publication_id) is None:
            raise ValueError(f"Unknown publication: {publication_id}")
        added = self._store.add_to_library(publication_id, library_id)
        if added:
            Logger.info(f"Kept paper {publication_id} in library {library_id}", file=LogFiles.INBOX)
        return added

    def inbox_papers(self) -> List[Publication]:
        if self._inbox is None:
            return []
        return self._store.query_publications(self._inbox.id)

    # --- dismissal tracking ---

    def track_dismissal(self, pub: Publication) -> None:
        if not pub.has_identifiers():
            logger.debug("Cannot track dismissal for paper without identifiers")
            return
        if self.was_dismissed(doi=pub.doi, arxiv_id=pub.arxiv_id, bibcode=pub.bibcode):
            return
        self._store.dismiss_paper(doi=pub.doi, arxiv_id=pub.arxiv_id, bibcode=pub.bibcode)
        logger.info(
            f"Tracked dismissal: DOI={pub.doi}, arXiv={pub.arxiv_id}, bibcode={pub.bibcode}"
        )

    def was_dismissed(
        self,
        *,
        doi: Optional[str] = None,
        arxiv_id: Optional[str] = None,
        bibcode: Optional[str] = None,
    ) -> bool:
        if not (doi or arxiv_id or bibcode):
            return False
        return self._store.is_paper_dismissed(doi=doi, arxiv_id=arxiv_id, bibcode=bibcode)

    @property
    def dismissed_paper_count(self) -> int:
        return len(self._store.list_dismissed_papers())

    def clear_all_dismissed(self) -> int:
        count = self._store.delete_dismissed_papers()
        Logger.warning(f"Cleared {count} dismissed paper records", file=LogFiles.INBOX)
        return count

    def _in_inbox(self, pub: Publication) -> bool:
        return self._inbox is not None and self._inbox.id in pub.library_ids
