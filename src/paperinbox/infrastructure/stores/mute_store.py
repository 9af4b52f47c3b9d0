from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from paperinbox.domain.errors import PersistenceWriteFailed
from paperinbox.domain.inbox import MuteRule, MuteType
from paperinbox.infrastructure.stores.models import Base, MutedItemModel
from paperinbox.infrastructure.stores.sqlalchemy_db import (
    SessionProvider,
    as_utc,
    commit_or_raise,
    get_db_url,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MutedItemStore:
    """CRUD for mute rules; (type, value) is unique."""

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def find(self, mute_type: MuteType, value: str) -> Optional[MuteRule]:
        with self._provider.session() as session:
            row = session.execute(
                select(MutedItemModel).where(
                    MutedItemModel.mute_type == mute_type.value,
                    MutedItemModel.value == value,
                )
            ).scalar_one_or_none()
            return self._row_to_rule(row) if row else None

    def create(self, mute_type: MuteType, value: str) -> MuteRule:
        """Insert a rule; returns the existing one if the pair is already muted."""
        existing = self.find(mute_type, value)
        if existing is not None:
            return existing

        with self._provider.session() as session:
            row = MutedItemModel(mute_type=mute_type.value, value=value, date_added=_utcnow())
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # lost a race with another writer for the same pair
                session.rollback()
                found = self.find(mute_type, value)
                if found is None:
                    raise PersistenceWriteFailed(f"Failed to mute {mute_type.value}: {value}")
                return found
            return self._row_to_rule(row)

    def delete(self, rule_id: int) -> bool:
        with self._provider.session() as session:
            result = session.execute(delete(MutedItemModel).where(MutedItemModel.id == rule_id))
            commit_or_raise(session, "delete muted item")
            return result.rowcount > 0

    def delete_all(self) -> int:
        with self._provider.session() as session:
            result = session.execute(delete(MutedItemModel))
            commit_or_raise(session, "clear muted items")
            return result.rowcount or 0

    def list_all(self) -> List[MuteRule]:
        """All rules, most recent first."""
        with self._provider.session() as session:
            rows = session.execute(
                select(MutedItemModel).order_by(
                    MutedItemModel.date_added.desc(), MutedItemModel.id.desc()
                )
            ).scalars().all()
            return [self._row_to_rule(r) for r in rows if self._known_type(r.mute_type)]

    def close(self) -> None:
        self._provider.engine.dispose()

    @staticmethod
    def _known_type(value: str) -> bool:
        try:
            MuteType.parse(value)
        except ValueError:
            return False
        return True

    @staticmethod
    def _row_to_rule(row: MutedItemModel) -> MuteRule:
        return MuteRule(
            id=row.id,
            type=MuteType.parse(row.mute_type),
            value=row.value,
            date_added=as_utc(row.date_added),
        )
