from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.inbox import (
    INBOX_LIBRARY_NAME,
    INBOX_SORT_ORDER,
    DismissedPaper,
    Library,
    Publication,
)
from paperinbox.domain.paper_identity import normalize_arxiv_id, normalize_bibcode, normalize_doi
from paperinbox.infrastructure.stores.models import (
    Base,
    DismissedPaperModel,
    LibraryModel,
    PublicationLibraryModel,
    PublicationModel,
)
from paperinbox.infrastructure.stores.sqlalchemy_db import (
    SessionProvider,
    as_utc,
    commit_or_raise,
    get_db_url,
)

IdentifierRow = Tuple[Optional[str], Optional[str], Optional[str], Optional[str], Optional[str]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PublicationStore:
    """
    Publication and library storage.

    Handles:
    - Inbox and regular libraries
    - Publications created from accepted candidate results
    - Publication <-> library memberships (explicit join rows)
    - Read state and unread counts
    - Dismissed-paper identifiers
    """

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    # --- libraries ---

    def get_library(self, library_id: str) -> Optional[Library]:
        with self._provider.session() as session:
            row = session.get(LibraryModel, library_id)
            return self._library_to_domain(row) if row else None

    def get_inbox_library(self) -> Optional[Library]:
        with self._provider.session() as session:
            row = (
                session.execute(
                    select(LibraryModel)
                    .where(LibraryModel.is_inbox.is_(True))
                    .order_by(LibraryModel.date_created.asc())
                    .limit(1)
                )
                .scalars()
                .first()
            )
            return self._library_to_domain(row) if row else None

    def create_inbox_library(self, name: str = INBOX_LIBRARY_NAME) -> Library:
        """Create the Inbox library, or return the existing one."""
        existing = self.get_inbox_library()
        if existing is not None:
            return existing
        return self._create_library(name=name, is_inbox=True, sort_order=INBOX_SORT_ORDER)

    def create_library(self, name: str, *, sort_order: int = 0) -> Library:
        return self._create_library(name=name, is_inbox=False, sort_order=sort_order)

    def list_libraries(self, *, include_inbox: bool = True) -> List[Library]:
        with self._provider.session() as session:
            stmt = select(LibraryModel).order_by(
                LibraryModel.sort_order.asc(), LibraryModel.date_created.asc()
            )
            if not include_inbox:
                stmt = stmt.where(LibraryModel.is_inbox.is_(False))
            return [self._library_to_domain(r) for r in session.execute(stmt).scalars().all()]

    def _create_library(self, *, name: str, is_inbox: bool, sort_order: int) -> Library:
        with self._provider.session() as session:
            row = LibraryModel(
                id=str(uuid.uuid4()),
                name=name,
                is_inbox=is_inbox,
                sort_order=sort_order,
                date_created=_utcnow(),
            )
            session.add(row)
            commit_or_raise(session, f"create library '{name}'")
            return self._library_to_domain(row)

    # --- publications ---

    def create_publication(
        self,
        result: CandidateResult,
        *,
        date_added: Optional[datetime] = None,
        library_id: Optional[str] = None,
    ) -> Publication:
        """
        Persist a new publication from a candidate result.

        When ``library_id`` is given the membership row is written in the same
        commit, so a failure leaves neither the publication nor the membership.
        """
        added_at = date_added or _utcnow()
        with self._provider.session() as session:
            row = PublicationModel(
                id=str(uuid.uuid4()),
                title=result.title,
                year=result.year,
                venue=result.venue,
                abstract=result.abstract,
                doi=result.doi,
                arxiv_id=result.arxiv_id,
                bibcode=result.bibcode,
                source_id_a=result.source_id_a,
                source_id_b=result.source_id_b,
                source_id=result.source_id or None,
                is_read=False,
                date_added=added_at,
            )
            row.set_authors(result.authors)
            session.add(row)
            library_ids: Set[str] = set()
            if library_id is not None:
                session.add(
                    PublicationLibraryModel(
                        publication_id=row.id,
                        library_id=library_id,
                        date_added=added_at,
                    )
                )
                library_ids.add(library_id)
            commit_or_raise(session, f"create publication '{result.title[:80]}'")
            return self._publication_to_domain(row, library_ids)

    def get_publication(self, publication_id: str) -> Optional[Publication]:
        with self._provider.session() as session:
            row = session.get(PublicationModel, publication_id)
            if row is None:
                return None
            return self._publication_to_domain(row, self._library_ids(session, publication_id))

    def delete_publication(self, publication_id: str) -> bool:
        with self._provider.session() as session:
            row = session.get(PublicationModel, publication_id)
            if row is None:
                return False
            session.delete(row)
            commit_or_raise(session, "delete publication")
            return True

    def count_publications(self) -> int:
        with self._provider.session() as session:
            return session.execute(select(func.count()).select_from(PublicationModel)).scalar() or 0

    def query_publications(
        self,
        library_id: str,
        *,
        unread_only: bool = False,
    ) -> List[Publication]:
        """Publications in a library, newest first."""
        with self._provider.session() as session:
            stmt = (
                select(PublicationModel)
                .join(
                    PublicationLibraryModel,
                    PublicationLibraryModel.publication_id == PublicationModel.id,
                )
                .where(PublicationLibraryModel.library_id == library_id)
                .order_by(PublicationModel.date_added.desc(), PublicationModel.id.asc())
            )
            if unread_only:
                stmt = stmt.where(PublicationModel.is_read.is_(False))
            rows = session.execute(stmt).scalars().all()
            return [
                self._publication_to_domain(r, self._library_ids(session, r.id)) for r in rows
            ]

    def iter_identifiers(self) -> Iterable[IdentifierRow]:
        """(doi, arxiv_id, bibcode, source_id_a, source_id_b) for every known paper."""
        with self._provider.session() as session:
            pub_rows = session.execute(
                select(
                    PublicationModel.doi,
                    PublicationModel.arxiv_id,
                    PublicationModel.bibcode,
                    PublicationModel.source_id_a,
                    PublicationModel.source_id_b,
                )
            ).all()
            dismissed_rows = session.execute(
                select(
                    DismissedPaperModel.doi,
                    DismissedPaperModel.arxiv_id,
                    DismissedPaperModel.bibcode,
                )
            ).all()

        rows: List[IdentifierRow] = [tuple(r) for r in pub_rows]
        rows.extend((r[0], r[1], r[2], None, None) for r in dismissed_rows)
        return rows

    # --- memberships ---

    def add_to_library(self, publication_id: str, library_id: str) -> bool:
        """Returns True if a membership row was created, False if already present."""
        with self._provider.session() as session:
            existing = session.execute(
                select(PublicationLibraryModel.id).where(
                    PublicationLibraryModel.publication_id == publication_id,
                    PublicationLibraryModel.library_id == library_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                return False
            session.add(
                PublicationLibraryModel(
                    publication_id=publication_id,
                    library_id=library_id,
                    date_added=_utcnow(),
                )
            )
            commit_or_raise(session, "add publication to library")
            return True

    def remove_from_library(self, publication_id: str, library_id: str) -> bool:
        with self._provider.session() as session:
            result = session.execute(
                delete(PublicationLibraryModel).where(
                    PublicationLibraryModel.publication_id == publication_id,
                    PublicationLibraryModel.library_id == library_id,
                )
            )
            commit_or_raise(session, "remove publication from library")
            return result.rowcount > 0

    def library_ids_for(self, publication_id: str) -> Set[str]:
        with self._provider.session() as session:
            return self._library_ids(session, publication_id)

    # --- read state ---

    def set_read(self, publication_ids: List[str], read: bool) -> int:
        if not publication_ids:
            return 0
        with self._provider.session() as session:
            rows = session.execute(
                select(PublicationModel).where(PublicationModel.id.in_(publication_ids))
            ).scalars().all()
            for row in rows:
                row.is_read = read
            commit_or_raise(session, "update read state")
            return len(rows)

    def count_unread(self, library_id: str) -> int:
        with self._provider.session() as session:
            return (
                session.execute(
                    select(func.count())
                    .select_from(PublicationModel)
                    .join(
                        PublicationLibraryModel,
                        PublicationLibraryModel.publication_id == PublicationModel.id,
                    )
                    .where(
                        PublicationLibraryModel.library_id == library_id,
                        PublicationModel.is_read.is_(False),
                    )
                ).scalar()
                or 0
            )

    # --- dismissed papers ---

    def dismiss_paper(
        self,
        *,
        doi: Optional[str] = None,
        arxiv_id: Optional[str] = None,
        bibcode: Optional[str] = None,
    ) -> DismissedPaper:
        with self._provider.session() as session:
            row = DismissedPaperModel(
                doi=normalize_doi(doi),
                arxiv_id=normalize_arxiv_id(arxiv_id),
                bibcode=normalize_bibcode(bibcode),
                date_dismissed=_utcnow(),
            )
            session.add(row)
            commit_or_raise(session, "record dismissed paper")
            return self._dismissed_to_domain(row)

    def is_paper_dismissed(
        self,
        *,
        doi: Optional[str] = None,
        arxiv_id: Optional[str] = None,
        bibcode: Optional[str] = None,
    ) -> bool:
        clauses = []
        if normalize_doi(doi):
            clauses.append(DismissedPaperModel.doi == normalize_doi(doi))
        if normalize_arxiv_id(arxiv_id):
            clauses.append(DismissedPaperModel.arxiv_id == normalize_arxiv_id(arxiv_id))
        if normalize_bibcode(bibcode):
            clauses.append(DismissedPaperModel.bibcode == normalize_bibcode(bibcode))
        if not clauses:
            return False
        with self._provider.session() as session:
            found = session.execute(
                select(DismissedPaperModel.id).where(or_(*clauses)).limit(1)
            ).scalar_one_or_none()
            return found is not None

    def list_dismissed_papers(self) -> List[DismissedPaper]:
        with self._provider.session() as session:
            rows = session.execute(
                select(DismissedPaperModel).order_by(DismissedPaperModel.date_dismissed.desc())
            ).scalars().all()
            return [self._dismissed_to_domain(r) for r in rows]

    def delete_dismissed_papers(self) -> int:
        with self._provider.session() as session:
            result = session.execute(delete(DismissedPaperModel))
            commit_or_raise(session, "clear dismissed papers")
            return result.rowcount or 0

    def close(self) -> None:
        """Close database connections."""
        self._provider.engine.dispose()

    # --- mapping ---

    @staticmethod
    def _library_ids(session: Session, publication_id: str) -> Set[str]:
        return set(
            session.execute(
                select(PublicationLibraryModel.library_id).where(
                    PublicationLibraryModel.publication_id == publication_id
                )
            ).scalars().all()
        )

    @staticmethod
    def _library_to_domain(row: LibraryModel) -> Library:
        return Library(
            id=row.id,
            name=row.name,
            is_inbox=bool(row.is_inbox),
            sort_order=int(row.sort_order or 0),
            date_created=as_utc(row.date_created),
        )

    @staticmethod
    def _publication_to_domain(row: PublicationModel, library_ids: Set[str]) -> Publication:
        return Publication(
            id=row.id,
            title=row.title or "",
            authors=row.get_authors(),
            year=row.year,
            venue=row.venue,
            abstract=row.abstract,
            doi=row.doi,
            arxiv_id=row.arxiv_id,
            bibcode=row.bibcode,
            source_id_a=row.source_id_a,
            source_id_b=row.source_id_b,
            source_id=row.source_id,
            is_read=bool(row.is_read),
            date_added=as_utc(row.date_added),
            library_ids=frozenset(library_ids),
        )

    @staticmethod
    def _dismissed_to_domain(row: DismissedPaperModel) -> DismissedPaper:
        return DismissedPaper(
            id=row.id,
            doi=row.doi,
            arxiv_id=row.arxiv_id,
            bibcode=row.bibcode,
            date_dismissed=as_utc(row.date_dismissed),
        )
