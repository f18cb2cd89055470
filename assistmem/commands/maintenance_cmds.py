from __future__ import annotations

import asyncio

import typer
from rich import print

from .common import format_bytes, format_tokens, resolve_session_id


def init_db_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    store = store_from_path(db_path)
    try:
        print(f"Initialized database at {store.db_path}")
    finally:
        store.close()


def stats_cmd(*, store_from_path, db_path: str | None, session: str | None) -> None:
    store = store_from_path(db_path)
    try:
        session_id = resolve_session_id(store, session) if session else None
        stats_data = store.stats(session_id)
    finally:
        store.close()

    db_stats = stats_data["database"]
    print("[bold]Database[/bold]")
    print(f"- Path: {db_stats['path']}")
    print(f"- Size: {format_bytes(int(db_stats['size_bytes']))}")
    print(f"- Sessions: {db_stats['sessions']}")

    scope = f"session {session_id}" if session_id else "all sessions"
    print(f"\n[bold]Messages[/bold] ({scope})")
    print(
        f"- Messages: {stats_data['message_count']} "
        f"(~{format_tokens(stats_data['estimated_tokens'])} tokens)"
    )
    print(f"- Embedded messages: {stats_data['embedded_message_count']}")
    print(f"- Summaries: {stats_data['summary_count']}")
    print(f"- Rolling summaries: {stats_data['rolling_summary_count']}")
    print(f"- Cron jobs: {stats_data['cron_job_count']}")

    print("\n[bold]Facts[/bold]")
    print(f"- Facts: {stats_data['fact_count']} (embedded {stats_data['embedded_fact_count']})")


def rebuild_fts_cmd(*, store_from_path, db_path: str | None) -> None:
    """Rebuild the facts full-text index from the facts table."""

    store = store_from_path(db_path)
    try:
        indexed = store.rebuild_fts_index()
    finally:
        store.close()
    print(f"Rebuilt full-text index over {indexed} fact(s)")


def embed_cmd(
    *, store_from_path, db_path: str | None, session: str | None, limit: int
) -> None:
    """Embed facts and recent messages that have no vectors yet."""

    store = store_from_path(db_path)
    try:
        if store.embedder is None:
            print("[red]No embedding provider configured[/red]")
            raise typer.Exit(code=1)
        session_id = resolve_session_id(store, session)
        facts = asyncio.run(store.embed_missing_facts())
        messages = asyncio.run(store.embed_recent_messages(session_id, limit=limit))
    finally:
        store.close()
    print(f"Embedded {facts} fact(s) and {messages} message(s)")


def backfill_cmd(*, backfiller_factory, db_path: str | None, once: bool) -> None:
    """Run the periodic embedding backfill in the foreground."""

    backfiller = backfiller_factory(db_path)
    if once:
        result = backfiller.tick()
        print(f"Embedded {result.facts} fact(s) and {result.messages} message(s)")
        return
    print(f"[green]Embedding backfill running every {backfiller.interval_s()}s[/green]")
    try:
        backfiller.run_forever()
    except KeyboardInterrupt:
        print("Stopped")
