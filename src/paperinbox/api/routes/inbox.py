# src/paperinbox/api/routes/inbox.py
"""
Inbox API Routes.

Provides endpoints for:
- Scheduler status and manual refresh
- Inbox feed refresh status
- Mute rule management and preview
- Sending search results to the Inbox and triaging Inbox papers
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from paperinbox.application.workflows.inbox_runtime import InboxRuntime, build_inbox_runtime
from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.errors import SourceFetchFailed
from paperinbox.domain.inbox import MuteType
from paperinbox.utils.logging_config import LogFiles, Logger, clear_trace_id, set_trace_id

router = APIRouter()

_runtime: Optional[InboxRuntime] = None


def get_runtime() -> InboxRuntime:
    """Lazy initialization of the inbox runtime."""
    global _runtime
    if _runtime is None:
        _runtime = build_inbox_runtime()
    return _runtime


def set_runtime(runtime: Optional[InboxRuntime]) -> None:
    global _runtime
    _runtime = runtime


# ============================================================================
# Status & Refresh
# ============================================================================


class InboxStatusResponse(BaseModel):
    scheduler: Dict[str, Any]
    unread_count: int
    inbox_paper_count: int
    mute_count: int
    dismissed_count: int
    identifier_counts: Dict[str, int]
    fetch_state: str
    is_loading: bool
    last_fetch: Optional[str] = None


@router.get("/inbox/status", response_model=InboxStatusResponse)
async def inbox_status():
    runtime = get_runtime()
    manager = runtime.inbox_manager
    fetch = runtime.fetch_service
    return InboxStatusResponse(
        scheduler=runtime.scheduler.statistics.to_dict(),
        unread_count=manager.unread_count,
        inbox_paper_count=len(manager.inbox_papers()),
        mute_count=len(manager.rules()),
        dismissed_count=manager.dismissed_paper_count,
        identifier_counts=runtime.identifier_cache.counts(),
        fetch_state=fetch.status.state.value,
        is_loading=fetch.is_loading,
        last_fetch=fetch.last_fetch.isoformat() if fetch.last_fetch else None,
    )


class RefreshRequest(BaseModel):
    feed_id: Optional[int] = Field(None, description="Refresh only this feed")


class RefreshResponse(BaseModel):
    count: int
    feed_id: Optional[int] = None
    total_refresh_cycles: int


@router.post("/inbox/refresh", response_model=RefreshResponse)
async def refresh_inbox(request: Optional[RefreshRequest] = None):
    """Run a check cycle now, or refresh a single feed."""
    runtime = get_runtime()
    scheduler = runtime.scheduler
    feed_id = request.feed_id if request else None

    set_trace_id()
    try:
        Logger.info(f"Manual refresh requested (feed_id={feed_id})", file=LogFiles.SCHEDULER)
        if feed_id is None:
            count = await scheduler.trigger_immediate_check()
        else:
            try:
                count = await scheduler.refresh_feed(feed_id)
            except KeyError:
                raise HTTPException(status_code=404, detail=f"Feed not found: {feed_id}")
            except SourceFetchFailed as e:
                raise HTTPException(status_code=502, detail=str(e))
    finally:
        clear_trace_id()

    return RefreshResponse(
        count=count,
        feed_id=feed_id,
        total_refresh_cycles=scheduler.statistics.total_refresh_cycles,
    )


class FeedStatusResponse(BaseModel):
    id: int
    name: str
    last_refresh: Optional[str] = None
    next_refresh: Optional[str] = None
    last_fetch_count: int
    refresh_interval_seconds: int
    is_due: bool


@router.get("/inbox/feeds", response_model=List[FeedStatusResponse])
async def list_inbox_feeds():
    runtime = get_runtime()
    now = datetime.now(timezone.utc)
    return [
        FeedStatusResponse(
            id=s.id,
            name=s.name,
            last_refresh=s.last_refresh.isoformat() if s.last_refresh else None,
            next_refresh=s.next_refresh.isoformat() if s.next_refresh else None,
            last_fetch_count=s.last_fetch_count,
            refresh_interval_seconds=s.refresh_interval_seconds,
            is_due=s.is_due(now),
        )
        for s in runtime.scheduler.feed_statuses()
    ]


# ============================================================================
# Mute Rules
# ============================================================================


class MuteRuleResponse(BaseModel):
    id: int
    type: str
    value: str
    date_added: Optional[str] = None


class MuteRequest(BaseModel):
    type: str = Field(..., description="author, doi, bibcode, venue or arxiv_category")
    value: str = Field(..., min_length=1)


def _rule_response(rule) -> MuteRuleResponse:
    return MuteRuleResponse(**rule.to_dict())


@router.get("/inbox/mutes", response_model=List[MuteRuleResponse])
async def list_mutes(type: Optional[str] = Query(None, description="Filter by mute type")):
    manager = get_runtime().inbox_manager
    try:
        rules = manager.rules(type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [_rule_response(r) for r in rules]


@router.post("/inbox/mutes", response_model=MuteRuleResponse)
async def create_mute(request: MuteRequest):
    manager = get_runtime().inbox_manager
    try:
        rule = manager.mute(request.type, request.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _rule_response(rule)


@router.delete("/inbox/mutes/{rule_id}")
async def delete_mute(rule_id: int):
    manager = get_runtime().inbox_manager
    rule = manager.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Mute rule not found: {rule_id}")
    manager.unmute(rule)
    return {"deleted": True, "id": rule_id}


class MutePreviewRequest(BaseModel):
    id: str = ""
    authors: List[str] = Field(default_factory=list)
    doi: Optional[str] = None
    venue: Optional[str] = None
    arxiv_id: Optional[str] = None
    bibcode: Optional[str] = None


class MutePreviewResponse(BaseModel):
    filtered: bool
    rule_count: int


@router.post("/inbox/mutes/preview", response_model=MutePreviewResponse)
async def preview_mute(request: MutePreviewRequest):
    """Check whether the current mute rules would suppress a paper."""
    manager = get_runtime().inbox_manager
    filtered = manager.should_filter(
        id=request.id,
        authors=request.authors,
        doi=request.doi,
        venue=request.venue,
        arxiv_id=request.arxiv_id,
        bibcode=request.bibcode,
    )
    return MutePreviewResponse(filtered=filtered, rule_count=len(manager.rules()))


@router.get("/inbox/mute-types")
async def list_mute_types():
    return {"types": [t.value for t in MuteType]}


# ============================================================================
# Papers & Triage
# ============================================================================


class CandidateRequest(BaseModel):
    id: str = ""
    source_id: str = ""
    title: str = Field(..., min_length=1)
    authors: List[str] = Field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    abstract: Optional[str] = None
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    bibcode: Optional[str] = None
    source_id_a: Optional[str] = None
    source_id_b: Optional[str] = None


class SendToInboxRequest(BaseModel):
    results: List[CandidateRequest] = Field(default_factory=list)


class SendToInboxResponse(BaseModel):
    submitted: int
    added: int
    unread_count: int


class PublicationResponse(BaseModel):
    id: str
    title: str
    authors: List[str]
    year: Optional[int] = None
    venue: Optional[str] = None
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    bibcode: Optional[str] = None
    is_read: bool
    date_added: Optional[str] = None
    library_ids: List[str]


@router.post("/inbox/papers", response_model=SendToInboxResponse)
async def send_to_inbox(request: SendToInboxRequest):
    """Import search results; muted and already-known papers are skipped."""
    runtime = get_runtime()
    results = [CandidateResult.from_dict(item.model_dump()) for item in request.results]

    set_trace_id()
    try:
        added = await runtime.fetch_service.send_to_inbox(results)
    finally:
        clear_trace_id()

    return SendToInboxResponse(
        submitted=len(results),
        added=added,
        unread_count=runtime.inbox_manager.unread_count,
    )


@router.get("/inbox/papers", response_model=List[PublicationResponse])
async def list_inbox_papers(unread_only: bool = Query(False)):
    papers = get_runtime().inbox_manager.inbox_papers()
    if unread_only:
        papers = [p for p in papers if not p.is_read]
    return [PublicationResponse(**p.to_dict()) for p in papers]


@router.post("/inbox/papers/read-all")
async def mark_all_read():
    count = get_runtime().inbox_manager.mark_all_as_read()
    return {"marked": count, "unread_count": 0}


@router.post("/inbox/papers/{publication_id}/read")
async def mark_read(publication_id: str):
    runtime = get_runtime()
    if runtime.publication_store.get_publication(publication_id) is None:
        raise HTTPException(status_code=404, detail=f"Paper not found: {publication_id}")
    runtime.inbox_manager.mark_as_read(publication_id)
    return {"id": publication_id, "unread_count": runtime.inbox_manager.unread_count}


@router.post("/inbox/papers/{publication_id}/dismiss")
async def dismiss_paper(publication_id: str):
    manager = get_runtime().inbox_manager
    if not manager.dismiss_from_inbox(publication_id):
        raise HTTPException(status_code=404, detail=f"Paper not in Inbox: {publication_id}")
    return {"id": publication_id, "dismissed": True, "unread_count": manager.unread_count}


class KeepRequest(BaseModel):
    library_id: str = Field(..., min_length=1)


@router.post("/inbox/papers/{publication_id}/keep")
async def keep_paper(publication_id: str, request: KeepRequest):
    """Add an Inbox paper to a library; it stays in the Inbox until dismissed."""
    manager = get_runtime().inbox_manager
    try:
        added = manager.keep_to_library(publication_id, request.library_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"id": publication_id, "library_id": request.library_id, "added": added}


class LibraryResponse(BaseModel):
    id: str
    name: str
    is_inbox: bool
    sort_order: int


class CreateLibraryRequest(BaseModel):
    name: str = Field(..., min_length=1)


@router.get("/inbox/libraries", response_model=List[LibraryResponse])
async def list_libraries():
    libraries = get_runtime().publication_store.list_libraries()
    return [
        LibraryResponse(id=lib.id, name=lib.name, is_inbox=lib.is_inbox, sort_order=lib.sort_order)
        for lib in libraries
    ]


@router.post("/inbox/libraries", response_model=LibraryResponse)
async def create_library(request: CreateLibraryRequest):
    lib = get_runtime().publication_store.create_library(request.name.strip())
    Logger.info(f"Created library '{lib.name}'", file=LogFiles.INBOX)
    return LibraryResponse(id=lib.id, name=lib.name, is_inbox=lib.is_inbox, sort_order=lib.sort_order)
