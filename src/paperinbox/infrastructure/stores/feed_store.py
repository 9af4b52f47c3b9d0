from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select

from paperinbox.domain.inbox import Feed
from paperinbox.infrastructure.stores.models import Base, FeedModel
from paperinbox.infrastructure.stores.sqlalchemy_db import (
    SessionProvider,
    as_utc,
    commit_or_raise,
    get_db_url,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedStore:
    """Feed registry: saved searches and their last-execution bookkeeping."""

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def create_feed(
        self,
        *,
        name: str,
        query: str,
        library_id: Optional[str] = None,
        feeds_to_inbox: bool = True,
        auto_refresh_enabled: bool = True,
        refresh_interval_seconds: int = 21600,
        max_results: int = 50,
        date_last_executed: Optional[datetime] = None,
    ) -> Feed:
        with self._provider.session() as session:
            row = FeedModel(
                name=name,
                query=query,
                library_id=library_id,
                feeds_to_inbox=feeds_to_inbox,
                auto_refresh_enabled=auto_refresh_enabled,
                refresh_interval_seconds=int(refresh_interval_seconds),
                max_results=int(max_results),
                date_last_executed=date_last_executed,
                last_fetch_count=0,
                date_created=_utcnow(),
            )
            session.add(row)
            commit_or_raise(session, f"create feed '{name}'")
            return self._row_to_feed(row)

    def upsert_feed(self, *, name: str, **fields) -> Feed:
        """Create a feed by name or update its settings, keeping execution history."""
        existing = self.get_feed_by_name(name)
        if existing is None:
            return self.create_feed(name=name, **fields)

        with self._provider.session() as session:
            row = session.get(FeedModel, existing.id)
            for key in (
                "query",
                "library_id",
                "feeds_to_inbox",
                "auto_refresh_enabled",
                "refresh_interval_seconds",
                "max_results",
            ):
                if key in fields and fields[key] is not None:
                    setattr(row, key, fields[key])
            commit_or_raise(session, f"update feed '{name}'")
            return self._row_to_feed(row)

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        with self._provider.session() as session:
            row = session.get(FeedModel, feed_id)
            return self._row_to_feed(row) if row else None

    def get_feed_by_name(self, name: str) -> Optional[Feed]:
        with self._provider.session() as session:
            row = session.execute(
                select(FeedModel).where(FeedModel.name == name)
            ).scalar_one_or_none()
            return self._row_to_feed(row) if row else None

    def list_feeds(self) -> List[Feed]:
        """All feeds in creation order."""
        with self._provider.session() as session:
            rows = session.execute(
                select(FeedModel).order_by(FeedModel.date_created.asc(), FeedModel.id.asc())
            ).scalars().all()
            return [self._row_to_feed(r) for r in rows]

    def list_inbox_feeds(self) -> List[Feed]:
        """Feeds with ``feeds_to_inbox`` and ``auto_refresh_enabled`` set."""
        with self._provider.session() as session:
            rows = session.execute(
                select(FeedModel)
                .where(
                    FeedModel.feeds_to_inbox.is_(True),
                    FeedModel.auto_refresh_enabled.is_(True),
                )
                .order_by(FeedModel.date_created.asc(), FeedModel.id.asc())
            ).scalars().all()
            return [self._row_to_feed(r) for r in rows]

    def record_execution(self, feed_id: int, *, executed_at: datetime, fetch_count: int) -> None:
        with self._provider.session() as session:
            row = session.get(FeedModel, feed_id)
            if row is None:
                return
            row.date_last_executed = executed_at
            row.last_fetch_count = int(fetch_count)
            commit_or_raise(session, "record feed execution")

    def close(self) -> None:
        self._provider.engine.dispose()

    @staticmethod
    def _row_to_feed(row: FeedModel) -> Feed:
        return Feed(
            id=row.id,
            name=row.name,
            query=row.query or "",
            library_id=row.library_id,
            feeds_to_inbox=bool(row.feeds_to_inbox),
            auto_refresh_enabled=bool(row.auto_refresh_enabled),
            refresh_interval_seconds=int(row.refresh_interval_seconds or 0),
            date_last_executed=as_utc(row.date_last_executed),
            last_fetch_count=int(row.last_fetch_count or 0),
            max_results=int(row.max_results or 0),
            date_created=as_utc(row.date_created),
        )
