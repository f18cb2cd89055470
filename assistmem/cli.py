from __future__ import annotations

import typer

from .backfill import EmbeddingBackfiller
from .commands.common import (
    configure_logging,
    read_config_or_exit,
    store_from_path,
    write_config_or_exit,
)
from .commands.config_cmds import config_set_cmd, config_show_cmd, config_unset_cmd
from .commands.maintenance_cmds import (
    backfill_cmd,
    embed_cmd,
    init_db_cmd,
    rebuild_fts_cmd,
    stats_cmd,
)
from .commands.memory_cmds import (
    add_fact_cmd,
    context_cmd,
    fact_categories_cmd,
    facts_context_cmd,
    forget_fact_cmd,
    graph_cmd,
    list_facts_cmd,
    search_cmd,
)
from .commands.session_cmds import (
    create_session_cmd,
    delete_session_cmd,
    link_chat_cmd,
    list_sessions_cmd,
    rename_session_cmd,
    unlink_chat_cmd,
)
from .config import get_config_path, load_config
from .store import MemoryStore

app = typer.Typer(help="assistmem: persistent memory for a conversational assistant")
sessions_app = typer.Typer(help="Manage conversation sessions")
facts_app = typer.Typer(help="Manage long-term facts")
config_app = typer.Typer(help="Show and edit the config file")
app.add_typer(sessions_app, name="sessions")
app.add_typer(facts_app, name="facts")
app.add_typer(config_app, name="config")

DB_PATH_HELP = "Path to SQLite database"


def _store(db_path: str | None) -> MemoryStore:
    return store_from_path(db_path)


def _backfiller(db_path: str | None) -> EmbeddingBackfiller:
    return EmbeddingBackfiller(db_path or None)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose)


@app.command()
def init_db(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_db_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def stats(
    session: str = typer.Option(None, help="Session id or name to scope message counts"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Show database and memory statistics."""
    stats_cmd(store_from_path=_store, db_path=db_path, session=session)


@app.command()
def rebuild_fts(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Rebuild the facts full-text index."""
    rebuild_fts_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def search(
    query: str,
    limit: int = typer.Option(None, help="Max results (defaults to config)"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Search facts by semantic and keyword relevance."""
    search_cmd(store_from_path=_store, db_path=db_path, query=query, limit=limit)


@app.command()
def context(
    session: str = typer.Option(None, help="Session id or name"),
    smart: bool = typer.Option(False, help="Use recent + rolling summary + semantic recall"),
    query: str = typer.Option(None, help="Current user query for semantic recall"),
    token_limit: int = typer.Option(None, help="Token budget for the classic window"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Show the context window assembled for a session."""
    context_cmd(
        store_from_path=_store,
        db_path=db_path,
        session=session,
        smart=smart,
        query=query,
        token_limit=token_limit,
    )


@app.command()
def embed(
    session: str = typer.Option(None, help="Session id or name for message embeddings"),
    limit: int = typer.Option(100, help="Recent messages to consider"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Embed facts and recent messages missing vectors."""
    embed_cmd(store_from_path=_store, db_path=db_path, session=session, limit=limit)


@app.command()
def graph(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Export the fact relationship graph as JSON."""
    graph_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def backfill(
    once: bool = typer.Option(False, help="Run a single pass and exit"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Periodically embed facts and messages missing vectors."""
    backfill_cmd(backfiller_factory=_backfiller, db_path=db_path, once=once)


@app.command()
def mcp() -> None:
    """Run the MCP server exposing memory tools."""
    from .mcp_server import run

    run()


@sessions_app.command("list")
def sessions_list(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """List sessions."""
    list_sessions_cmd(store_from_path=_store, db_path=db_path)


@sessions_app.command("create")
def sessions_create(name: str, db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Create a named session."""
    create_session_cmd(store_from_path=_store, db_path=db_path, name=name)


@sessions_app.command("rename")
def sessions_rename(
    session_id: str, name: str, db_path: str = typer.Option(None, help=DB_PATH_HELP)
) -> None:
    """Rename a session."""
    rename_session_cmd(store_from_path=_store, db_path=db_path, session_id=session_id, name=name)


@sessions_app.command("delete")
def sessions_delete(
    session_id: str, db_path: str = typer.Option(None, help=DB_PATH_HELP)
) -> None:
    """Delete a session and everything scoped to it."""
    delete_session_cmd(store_from_path=_store, db_path=db_path, session_id=session_id)


@sessions_app.command("link")
def sessions_link(
    chat_id: str,
    session_id: str,
    name: str = typer.Option(None, help="Display name for the chat"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Bind an external chat to a session."""
    link_chat_cmd(
        store_from_path=_store,
        db_path=db_path,
        chat_id=chat_id,
        session_id=session_id,
        name=name,
    )


@sessions_app.command("unlink")
def sessions_unlink(chat_id: str, db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Remove a chat binding."""
    unlink_chat_cmd(store_from_path=_store, db_path=db_path, chat_id=chat_id)


@facts_app.command("list")
def facts_list(
    category: str = typer.Option(None, help="Only show this category"),
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """List facts."""
    list_facts_cmd(store_from_path=_store, db_path=db_path, category=category)


@facts_app.command("add")
def facts_add(
    category: str,
    subject: str,
    content: str,
    db_path: str = typer.Option(None, help=DB_PATH_HELP),
) -> None:
    """Save or update a fact (category + subject is the key)."""
    add_fact_cmd(
        store_from_path=_store,
        db_path=db_path,
        category=category,
        subject=subject,
        content=content,
    )


@facts_app.command("forget")
def facts_forget(fact_id: int, db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Delete a fact by id."""
    forget_fact_cmd(store_from_path=_store, db_path=db_path, fact_id=fact_id)


@facts_app.command("categories")
def facts_categories(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """List fact categories."""
    fact_categories_cmd(store_from_path=_store, db_path=db_path)


@facts_app.command("context")
def facts_context(db_path: str = typer.Option(None, help=DB_PATH_HELP)) -> None:
    """Print the soul and facts blocks used in the system prompt."""
    facts_context_cmd(store_from_path=_store, db_path=db_path)


@config_app.command("show")
def config_show(
    file: bool = typer.Option(False, "--file", help="Only show values set in the config file"),
) -> None:
    """Print the configuration (API keys masked)."""
    config_show_cmd(
        load_config=load_config, read_config_or_exit=read_config_or_exit, file_only=file
    )


@config_app.command("set")
def config_set(key: str, value: str) -> None:
    """Write one key to the config file."""
    config_set_cmd(
        read_config_or_exit=read_config_or_exit,
        write_config_or_exit=write_config_or_exit,
        get_config_path=get_config_path,
        key=key,
        value=value,
    )


@config_app.command("unset")
def config_unset(key: str) -> None:
    """Remove one key from the config file."""
    config_unset_cmd(
        read_config_or_exit=read_config_or_exit,
        write_config_or_exit=write_config_or_exit,
        get_config_path=get_config_path,
        key=key,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
