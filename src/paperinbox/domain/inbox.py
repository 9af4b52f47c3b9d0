# src/paperinbox/domain/inbox.py
"""
Inbox domain records.

Contains:
- Library / Publication: persisted papers and their library memberships
- MuteType / MuteRule: user-defined suppression rules
- Feed: a saved search that periodically feeds the Inbox
- SchedulerStatistics / InboxFeedStatus: read-only scheduler snapshots
- FetchStatus: state of the fetch service
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

INBOX_LIBRARY_NAME = "Inbox"
INBOX_SORT_ORDER = -1


class MuteType(str, Enum):
    """Kinds of items that can be muted in the Inbox."""

    AUTHOR = "author"
    DOI = "doi"
    BIBCODE = "bibcode"
    VENUE = "venue"
    ARXIV_CATEGORY = "arxiv_category"

    @classmethod
    def parse(cls, value: "str | MuteType") -> "MuteType":
        if isinstance(value, MuteType):
            return value
        text = str(value).strip()
        if text == "arxivCategory":
            return cls.ARXIV_CATEGORY
        return cls(text.lower())


@dataclass(frozen=True)
class MuteRule:
    id: int
    type: MuteType
    value: str
    date_added: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "value": self.value,
            "date_added": self.date_added.isoformat() if self.date_added else None,
        }


@dataclass(frozen=True)
class Library:
    id: str
    name: str
    is_inbox: bool = False
    sort_order: int = 0
    date_created: Optional[datetime] = None


@dataclass
class Publication:
    """A persisted paper with its library memberships."""

    id: str
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
    source_id: Optional[str] = None
    is_read: bool = False
    date_added: Optional[datetime] = None
    library_ids: FrozenSet[str] = frozenset()

    def has_identifiers(self) -> bool:
        return bool(self.doi or self.arxiv_id or self.bibcode)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "authors": list(self.authors),
            "year": self.year,
            "venue": self.venue,
            "doi": self.doi,
            "arxiv_id": self.arxiv_id,
            "bibcode": self.bibcode,
            "is_read": self.is_read,
            "date_added": self.date_added.isoformat() if self.date_added else None,
            "library_ids": sorted(self.library_ids),
        }


@dataclass
class Feed:
    """A saved search; ``date_last_executed``/``last_fetch_count`` change only after a fetch."""

    id: int
    name: str
    query: str
    library_id: Optional[str] = None
    feeds_to_inbox: bool = True
    auto_refresh_enabled: bool = True
    refresh_interval_seconds: int = 6 * 60 * 60
    date_last_executed: Optional[datetime] = None
    last_fetch_count: int = 0
    max_results: int = 50
    date_created: Optional[datetime] = None

    @property
    def is_inbox_feed(self) -> bool:
        return self.feeds_to_inbox and self.auto_refresh_enabled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "library_id": self.library_id,
            "feeds_to_inbox": self.feeds_to_inbox,
            "auto_refresh_enabled": self.auto_refresh_enabled,
            "refresh_interval_seconds": self.refresh_interval_seconds,
            "date_last_executed": (
                self.date_last_executed.isoformat() if self.date_last_executed else None
            ),
            "last_fetch_count": self.last_fetch_count,
            "max_results": self.max_results,
        }


@dataclass(frozen=True)
class DismissedPaper:
    id: int
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    bibcode: Optional[str] = None
    date_dismissed: Optional[datetime] = None


@dataclass(frozen=True)
class SchedulerStatistics:
    """Snapshot of the scheduler's counters."""

    is_running: bool = False
    last_check_date: Optional[datetime] = None
    total_papers_fetched: int = 0
    total_refresh_cycles: int = 0
    feed_count: int = 0
    skipped_cycles_for_power: int = 0
    skipped_cycles_for_network: int = 0
    is_network_available: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_check_date": self.last_check_date.isoformat() if self.last_check_date else None,
            "total_papers_fetched": self.total_papers_fetched,
            "total_refresh_cycles": self.total_refresh_cycles,
            "feed_count": self.feed_count,
            "skipped_cycles_for_power": self.skipped_cycles_for_power,
            "skipped_cycles_for_network": self.skipped_cycles_for_network,
            "is_network_available": self.is_network_available,
        }


@dataclass(frozen=True)
class InboxFeedStatus:
    """Refresh status of a single Inbox feed."""

    id: int
    name: str
    last_refresh: Optional[datetime]
    next_refresh: Optional[datetime]
    last_fetch_count: int
    refresh_interval_seconds: int

    def is_due(self, now: datetime) -> bool:
        if self.next_refresh is None:
            return True
        return now >= self.next_refresh


class RefreshIntervalPreset(int, Enum):
    """Common refresh intervals offered to users, in seconds."""

    ONE_HOUR = 3600
    THREE_HOURS = 10800
    SIX_HOURS = 21600
    TWELVE_HOURS = 43200
    DAILY = 86400
    WEEKLY = 604800

    @property
    def seconds(self) -> int:
        return int(self.value)

    @property
    def display_name(self) -> str:
        return {
            RefreshIntervalPreset.ONE_HOUR: "1 hour",
            RefreshIntervalPreset.THREE_HOURS: "3 hours",
            RefreshIntervalPreset.SIX_HOURS: "6 hours",
            RefreshIntervalPreset.TWELVE_HOURS: "12 hours",
            RefreshIntervalPreset.DAILY: "Daily",
            RefreshIntervalPreset.WEEKLY: "Weekly",
        }[self]


class FetchState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchStatus:
    state: FetchState = FetchState.IDLE
    count: int = 0
    date: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def idle(cls) -> "FetchStatus":
        return cls()

    @classmethod
    def loading(cls) -> "FetchStatus":
        return cls(state=FetchState.LOADING)

    @classmethod
    def completed(cls, count: int, date: datetime) -> "FetchStatus":
        return cls(state=FetchState.COMPLETED, count=count, date=date)

    @classmethod
    def failed(cls, error: BaseException, date: datetime) -> "FetchStatus":
        return cls(state=FetchState.FAILED, date=date, error=str(error))
