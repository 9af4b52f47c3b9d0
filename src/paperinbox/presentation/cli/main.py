"""
PaperInbox command line interface.

    paperinbox refresh [--feed-id N]
    paperinbox status
    paperinbox feeds
    paperinbox mute author "Einstein"
    paperinbox unmute 3
    paperinbox mutes [--type author]
    paperinbox run [--check-interval 60]
    paperinbox import results.json
    paperinbox papers [--unread]
    paperinbox read ID | read-all
    paperinbox dismiss ID
    paperinbox keep ID LIBRARY_ID
    paperinbox libraries [--create NAME]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from paperinbox.application.workflows.inbox_runtime import InboxRuntime, build_inbox_runtime
from paperinbox.domain.candidate import CandidateResult
from paperinbox.domain.inbox import MuteType

# Load local .env automatically so database and feed settings apply.
load_dotenv(find_dotenv(usecwd=True), override=False)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paperinbox",
        description="PaperInbox - feed scheduling and inbox triage",
    )
    parser.add_argument("--db-url", help="SQLAlchemy database URL (default: PAPERINBOX_DB_URL)")
    parser.add_argument("--feeds", help="Feed YAML to sync before running (default: PAPERINBOX_FEEDS_PATH)")
    parser.add_argument("--json", action="store_true", help="Print JSON output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    refresh_parser = subparsers.add_parser("refresh", help="Run one check cycle now")
    refresh_parser.add_argument("--feed-id", type=int, help="Refresh only this feed")

    subparsers.add_parser("status", help="Show scheduler and inbox status")
    subparsers.add_parser("feeds", help="List Inbox feeds and their refresh times")

    mute_parser = subparsers.add_parser("mute", help="Add a mute rule")
    mute_parser.add_argument("type", choices=[t.value for t in MuteType])
    mute_parser.add_argument("value")

    unmute_parser = subparsers.add_parser("unmute", help="Remove a mute rule by id")
    unmute_parser.add_argument("rule_id", type=int)

    mutes_parser = subparsers.add_parser("mutes", help="List mute rules")
    mutes_parser.add_argument("--type", choices=[t.value for t in MuteType])

    run_parser = subparsers.add_parser("run", help="Run the scheduler until interrupted")
    run_parser.add_argument("--check-interval", type=float, help="Seconds between due checks")

    import_parser = subparsers.add_parser("import", help="Send search results (JSON list) to the Inbox")
    import_parser.add_argument("path", help="JSON file with a list of results, or - for stdin")

    papers_parser = subparsers.add_parser("papers", help="List Inbox papers")
    papers_parser.add_argument("--unread", action="store_true", help="Only unread papers")

    read_parser = subparsers.add_parser("read", help="Mark an Inbox paper as read")
    read_parser.add_argument("publication_id")
    subparsers.add_parser("read-all", help="Mark every Inbox paper as read")

    dismiss_parser = subparsers.add_parser("dismiss", help="Dismiss a paper from the Inbox")
    dismiss_parser.add_argument("publication_id")

    keep_parser = subparsers.add_parser("keep", help="Keep an Inbox paper in a library")
    keep_parser.add_argument("publication_id")
    keep_parser.add_argument("library_id")

    libraries_parser = subparsers.add_parser("libraries", help="List or create libraries")
    libraries_parser.add_argument("--create", metavar="NAME", help="Create a library")

    return parser


def run_cli(args: Optional[list] = None, *, runtime: Optional[InboxRuntime] = None) -> int:
    """
    Run the CLI.

    Args:
        args: Command line arguments (defaults to sys.argv)
        runtime: Pre-built runtime, mainly for tests

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.DEBUG if parsed.verbose else logging.INFO)

    owns_runtime = runtime is None
    try:
        if runtime is None:
            runtime = build_inbox_runtime(
                parsed.db_url,
                check_interval=getattr(parsed, "check_interval", None),
                feeds_path=parsed.feeds,
            )

        if parsed.command == "refresh":
            return asyncio.run(_run_refresh(runtime, parsed))
        if parsed.command == "status":
            return _run_status(runtime, parsed)
        if parsed.command == "feeds":
            return _run_feeds(runtime, parsed)
        if parsed.command == "mute":
            rule = runtime.inbox_manager.mute(parsed.type, parsed.value)
            _emit(parsed, rule.to_dict(), f"muted {rule.type.value}: {rule.value} (id={rule.id})")
            return 0
        if parsed.command == "unmute":
            rule = runtime.inbox_manager.get_rule(parsed.rule_id)
            if rule is None:
                print(f"Error: mute rule {parsed.rule_id} not found", file=sys.stderr)
                return 1
            runtime.inbox_manager.unmute(rule)
            _emit(parsed, {"deleted": True, "id": rule.id}, f"unmuted {rule.type.value}: {rule.value}")
            return 0
        if parsed.command == "mutes":
            return _run_mutes(runtime, parsed)
        if parsed.command == "run":
            return asyncio.run(_run_scheduler(runtime))
        if parsed.command == "import":
            return asyncio.run(_run_import(runtime, parsed))
        if parsed.command == "papers":
            return _run_papers(runtime, parsed)
        if parsed.command in ("read", "read-all", "dismiss", "keep"):
            return _run_triage(runtime, parsed)
        if parsed.command == "libraries":
            return _run_libraries(runtime, parsed)
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if owns_runtime and runtime is not None:
            runtime.close()


def _emit(parsed: argparse.Namespace, payload, text: str) -> None:
    if parsed.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(text)


async def _run_refresh(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    scheduler = runtime.scheduler
    try:
        if parsed.feed_id is not None:
            count = await scheduler.refresh_feed(parsed.feed_id)
        else:
            count = await scheduler.trigger_immediate_check()
    finally:
        await runtime.fetch_service.source.close()

    stats = scheduler.statistics
    _emit(
        parsed,
        {"count": count, "statistics": stats.to_dict()},
        f"new papers: {count}\nunread: {runtime.inbox_manager.unread_count}",
    )
    return 0


def _run_status(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    manager = runtime.inbox_manager
    payload = {
        "scheduler": runtime.scheduler.statistics.to_dict(),
        "unread_count": manager.unread_count,
        "inbox_paper_count": len(manager.inbox_papers()),
        "mute_count": len(manager.rules()),
        "dismissed_count": manager.dismissed_paper_count,
        "identifier_counts": runtime.identifier_cache.counts(),
    }
    if parsed.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print(f"inbox papers: {payload['inbox_paper_count']} ({payload['unread_count']} unread)")
    print(f"inbox feeds: {payload['scheduler']['feed_count']}")
    print(f"mute rules: {payload['mute_count']}")
    print(f"dismissed papers: {payload['dismissed_count']}")
    counts = payload["identifier_counts"]
    print("known identifiers: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    return 0


def _run_feeds(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    now = datetime.now(timezone.utc)
    statuses = runtime.scheduler.feed_statuses()
    if parsed.json:
        rows = [
            {
                "id": s.id,
                "name": s.name,
                "last_refresh": s.last_refresh.isoformat() if s.last_refresh else None,
                "next_refresh": s.next_refresh.isoformat() if s.next_refresh else None,
                "last_fetch_count": s.last_fetch_count,
                "is_due": s.is_due(now),
            }
            for s in statuses
        ]
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return 0

    if not statuses:
        print("no inbox feeds")
    for s in statuses:
        due = "due" if s.is_due(now) else f"next {s.next_refresh:%Y-%m-%d %H:%M}"
        print(f"[{s.id}] {s.name}: last={s.last_fetch_count} papers, {due}")
    return 0


def _run_mutes(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    rules = runtime.inbox_manager.rules(parsed.type)
    if parsed.json:
        print(json.dumps([r.to_dict() for r in rules], ensure_ascii=False, indent=2))
        return 0
    if not rules:
        print("no mute rules")
    for r in rules:
        print(f"[{r.id}] {r.type.value}: {r.value}")
    return 0


async def _run_import(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    if parsed.path == "-":
        payload = json.load(sys.stdin)
    else:
        with open(parsed.path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get("results", [])
    if not isinstance(payload, list):
        print("Error: expected a JSON list of results", file=sys.stderr)
        return 1

    results = [CandidateResult.from_dict(item) for item in payload if isinstance(item, dict)]
    added = await runtime.fetch_service.send_to_inbox(results)
    _emit(
        parsed,
        {"submitted": len(results), "added": added, "unread_count": runtime.inbox_manager.unread_count},
        f"added {added} of {len(results)} results",
    )
    return 0


def _run_papers(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    papers = runtime.inbox_manager.inbox_papers()
    if parsed.unread:
        papers = [p for p in papers if not p.is_read]
    if parsed.json:
        print(json.dumps([p.to_dict() for p in papers], ensure_ascii=False, indent=2))
        return 0
    if not papers:
        print("inbox is empty")
    for p in papers:
        mark = " " if p.is_read else "*"
        print(f"{mark} {p.id}  {p.title[:80]}")
    return 0


def _run_triage(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    manager = runtime.inbox_manager
    if parsed.command == "read-all":
        count = manager.mark_all_as_read()
        _emit(parsed, {"marked": count}, f"marked {count} papers as read")
        return 0

    pub_id = parsed.publication_id
    if runtime.publication_store.get_publication(pub_id) is None:
        print(f"Error: paper {pub_id} not found", file=sys.stderr)
        return 1

    if parsed.command == "read":
        manager.mark_as_read(pub_id)
        _emit(parsed, {"id": pub_id, "unread_count": manager.unread_count}, f"marked {pub_id} as read")
    elif parsed.command == "dismiss":
        if not manager.dismiss_from_inbox(pub_id):
            print(f"Error: paper {pub_id} is not in the Inbox", file=sys.stderr)
            return 1
        _emit(parsed, {"id": pub_id, "dismissed": True}, f"dismissed {pub_id}")
    else:
        added = manager.keep_to_library(pub_id, parsed.library_id)
        _emit(
            parsed,
            {"id": pub_id, "library_id": parsed.library_id, "added": added},
            f"kept {pub_id} in {parsed.library_id}",
        )
    return 0


def _run_libraries(runtime: InboxRuntime, parsed: argparse.Namespace) -> int:
    store = runtime.publication_store
    if parsed.create:
        lib = store.create_library(parsed.create.strip())
        _emit(parsed, {"id": lib.id, "name": lib.name}, f"created library {lib.name} ({lib.id})")
        return 0

    libraries = store.list_libraries()
    if parsed.json:
        rows = [{"id": lib.id, "name": lib.name, "is_inbox": lib.is_inbox} for lib in libraries]
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return 0
    for lib in libraries:
        print(f"{lib.id}  {lib.name}{' (inbox)' if lib.is_inbox else ''}")
    return 0


async def _run_scheduler(runtime: InboxRuntime) -> int:
    scheduler = runtime.scheduler
    await scheduler.start()
    print(f"scheduler running (check every {scheduler.check_interval:g}s), Ctrl+C to stop")
    try:
        while scheduler.running:
            await asyncio.sleep(1)
    finally:
        await scheduler.stop()
        await runtime.fetch_service.source.close()
    return 0


def main() -> None:
    try:
        sys.exit(run_cli())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
