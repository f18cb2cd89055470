from __future__ import annotations

import asyncio

import typer
from rich import print
from rich.markup import escape

from .common import format_tokens, print_json, resolve_session_id


def list_facts_cmd(*, store_from_path, db_path: str | None, category: str | None) -> None:
    """List stored facts, optionally for one category."""

    store = store_from_path(db_path)
    try:
        facts = store.get_facts_by_category(category) if category else store.get_all_facts()
    finally:
        store.close()
    if not facts:
        print("[yellow]No facts stored[/yellow]")
        return
    for fact in facts:
        subject = f" {fact.subject}:" if fact.subject else ""
        print(escape(f"[{fact.id}] ({fact.category}){subject} {fact.content}"))


def add_fact_cmd(
    *, store_from_path, db_path: str | None, category: str, subject: str, content: str
) -> None:
    store = store_from_path(db_path)
    try:
        fact_id = store.save_fact(category, subject, content)
    finally:
        store.close()
    print(f"Saved fact {fact_id}")


def forget_fact_cmd(*, store_from_path, db_path: str | None, fact_id: int) -> None:
    store = store_from_path(db_path)
    try:
        deleted = store.delete_fact(fact_id)
    finally:
        store.close()
    if not deleted:
        print(f"[red]Fact {fact_id} not found[/red]")
        raise typer.Exit(code=1)
    print(f"Deleted fact {fact_id}")


def fact_categories_cmd(*, store_from_path, db_path: str | None) -> None:
    store = store_from_path(db_path)
    try:
        categories = store.get_fact_categories()
    finally:
        store.close()
    for category in categories:
        print(f"- {escape(category)}")


def facts_context_cmd(*, store_from_path, db_path: str | None) -> None:
    """Print the facts block injected into the model prompt."""

    store = store_from_path(db_path)
    try:
        text = store.get_facts_for_context()
        soul = store.get_soul_context()
    finally:
        store.close()
    for block in (soul, text):
        if block:
            typer.echo(block)


def search_cmd(*, store_from_path, db_path: str | None, query: str, limit: int | None) -> None:
    """Hybrid semantic + keyword search over facts."""

    store = store_from_path(db_path)
    try:
        results = asyncio.run(store.search_facts_hybrid(query, limit=limit))
        mode = "hybrid" if store.embedder is not None else "keyword-only"
    finally:
        store.close()
    print(f"[dim]{len(results)} result(s), {mode}[/dim]")
    for item in results:
        fact = item.fact
        print(
            escape(f"[{fact.id}] ({fact.category}) {fact.subject}\n{fact.content}\n")
            + f"score={item.score:.2f} vector={item.vector_score:.2f} "
            + f"keyword={item.keyword_score:.2f}\n"
        )


def context_cmd(
    *,
    store_from_path,
    db_path: str | None,
    session: str | None,
    smart: bool,
    query: str | None,
    token_limit: int | None,
) -> None:
    """Show the message window that would be sent to the model."""

    store = store_from_path(db_path)
    try:
        session_id = resolve_session_id(store, session)
        if smart:
            smart_context = asyncio.run(
                store.get_smart_context(session_id, current_query=query)
            )
        else:
            context = asyncio.run(store.get_conversation_context(session_id, token_limit))
    finally:
        store.close()

    if not smart:
        print(
            f"[bold]Context[/bold] ~{format_tokens(context.total_tokens)} tokens, "
            f"{context.summarized_count} message(s) summarized"
        )
        for message in context.messages:
            typer.echo(f"{message['role']}: {message['content']}")
        return

    stats = smart_context.stats
    print(
        f"[bold]Smart context[/bold] ~{format_tokens(smart_context.total_tokens)} tokens, "
        f"recent={stats.recent_count} summarized={stats.summarized_messages} "
        f"relevant={stats.relevant_count}"
    )
    if smart_context.rolling_summary:
        print("\n[bold]Rolling summary[/bold]")
        typer.echo(smart_context.rolling_summary)
    if smart_context.relevant_messages:
        print("\n[bold]Relevant earlier messages[/bold]")
        for item in smart_context.relevant_messages:
            typer.echo(
                f"({item.similarity:.2f}) {item.message.role}: {item.message.content}"
            )
    print("\n[bold]Recent messages[/bold]")
    for message in smart_context.recent_messages:
        typer.echo(f"{message.role}: {message.content}")


def graph_cmd(*, store_from_path, db_path: str | None) -> None:
    """Export the fact relationship graph as JSON."""

    store = store_from_path(db_path)
    try:
        graph = store.build_facts_graph()
    finally:
        store.close()
    print_json(graph.as_dict())
