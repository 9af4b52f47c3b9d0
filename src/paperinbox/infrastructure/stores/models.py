from __future__ import annotations

import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class LibraryModel(Base):
    """A user library; exactly one row has ``is_inbox`` set."""

    __tablename__ = "libraries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    is_inbox: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    memberships = relationship(
        "PublicationLibraryModel", back_populates="library", cascade="all, delete-orphan"
    )
    feeds = relationship("FeedModel", back_populates="library")


class PublicationModel(Base):
    __tablename__ = "publications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    title: Mapped[str] = mapped_column(Text, default="")
    authors_json: Mapped[str] = mapped_column(Text, default="[]")
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    venue: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    abstract: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    doi: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    arxiv_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    bibcode: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    source_id_a: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    source_id_b: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    source_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    memberships = relationship(
        "PublicationLibraryModel", back_populates="publication", cascade="all, delete-orphan"
    )

    def set_authors(self, authors: List[str]) -> None:
        self.authors_json = json.dumps(list(authors or []), ensure_ascii=False)

    def get_authors(self) -> List[str]:
        try:
            data = json.loads(self.authors_json or "[]")
        except ValueError:
            return []
        return [str(a) for a in data] if isinstance(data, list) else []


class PublicationLibraryModel(Base):
    """Join table between publications and libraries."""

    __tablename__ = "publication_libraries"
    __table_args__ = (
        UniqueConstraint("publication_id", "library_id", name="uq_publication_library"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    publication_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("publications.id", ondelete="CASCADE"), index=True
    )
    library_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("libraries.id", ondelete="CASCADE"), index=True
    )
    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    publication = relationship("PublicationModel", back_populates="memberships")
    library = relationship("LibraryModel", back_populates="memberships")


class MutedItemModel(Base):
    __tablename__ = "muted_items"
    __table_args__ = (UniqueConstraint("mute_type", "value", name="uq_muted_items_type_value"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mute_type: Mapped[str] = mapped_column(String(32), index=True)
    value: Mapped[str] = mapped_column(String(512))
    date_added: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class DismissedPaperModel(Base):
    """Identifiers of papers dismissed from the Inbox, so they do not return."""

    __tablename__ = "dismissed_papers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doi: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    arxiv_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    bibcode: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    date_dismissed: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class FeedModel(Base):
    __tablename__ = "feeds"
    __table_args__ = (UniqueConstraint("name", name="uq_feeds_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256))
    query: Mapped[str] = mapped_column(Text, default="")
    library_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("libraries.id", ondelete="SET NULL"), nullable=True
    )

    feeds_to_inbox: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_refresh_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    refresh_interval_seconds: Mapped[int] = mapped_column(Integer, default=21600)
    max_results: Mapped[int] = mapped_column(Integer, default=50)

    date_last_executed: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_fetch_count: Mapped[int] = mapped_column(Integer, default=0)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    library = relationship("LibraryModel", back_populates="feeds")
