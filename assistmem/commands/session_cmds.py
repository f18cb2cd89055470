from __future__ import annotations

import typer
from rich import print
from rich.markup import escape

from ..errors import DuplicateNameError, ProtectedResourceError
from .common import exit_on_store_error


def list_sessions_cmd(*, store_from_path, db_path: str | None) -> None:
    """List sessions, most recently active first."""

    store = store_from_path(db_path)
    try:
        sessions = store.list_sessions()
        for session in sessions:
            chat_id = store.get_chat_for_session(session.id)
            count = store.count_messages(session.id)
            linked = f" chat={chat_id}" if chat_id else ""
            print(
                f"{session.id} [bold]{escape(session.name)}[/bold] "
                f"messages={count} updated={session.updated_at}{linked}"
            )
    finally:
        store.close()


def create_session_cmd(*, store_from_path, db_path: str | None, name: str) -> None:
    store = store_from_path(db_path)
    try:
        session = store.create_session(name)
    except DuplicateNameError as exc:
        exit_on_store_error(exc)
    finally:
        store.close()
    print(f"[green]Created session {escape(session.name)}[/green] ({session.id})")


def rename_session_cmd(
    *, store_from_path, db_path: str | None, session_id: str, name: str
) -> None:
    store = store_from_path(db_path)
    try:
        renamed = store.rename_session(session_id, name)
    except DuplicateNameError as exc:
        exit_on_store_error(exc)
    finally:
        store.close()
    if not renamed:
        print(f"[red]Session {session_id} not found[/red]")
        raise typer.Exit(code=1)
    print(f"Renamed session {session_id} to {escape(name)}")


def delete_session_cmd(*, store_from_path, db_path: str | None, session_id: str) -> None:
    """Delete a session with its messages, summaries, cron jobs and chat link."""

    store = store_from_path(db_path)
    try:
        deleted = store.delete_session(session_id)
    except ProtectedResourceError as exc:
        exit_on_store_error(exc)
    finally:
        store.close()
    if not deleted:
        print(f"[red]Session {session_id} not found[/red]")
        raise typer.Exit(code=1)
    print(f"Deleted session {session_id}")


def link_chat_cmd(
    *,
    store_from_path,
    db_path: str | None,
    chat_id: str,
    session_id: str,
    name: str | None,
) -> None:
    store = store_from_path(db_path)
    try:
        if store.get_session(session_id) is None:
            print(f"[red]Session {session_id} not found[/red]")
            raise typer.Exit(code=1)
        store.link_chat(chat_id, session_id, name)
    finally:
        store.close()
    print(f"Linked chat {chat_id} to session {session_id}")


def unlink_chat_cmd(*, store_from_path, db_path: str | None, chat_id: str) -> None:
    store = store_from_path(db_path)
    try:
        removed = store.unlink_chat(chat_id)
    finally:
        store.close()
    if removed:
        print(f"Unlinked chat {chat_id}")
    else:
        print(f"[yellow]Chat {chat_id} was not linked[/yellow]")
