from __future__ import annotations

import json
import logging
from typing import Any, NoReturn

import typer
from rich import print

from ..config import read_config_file, write_config_file
from ..db import DEFAULT_SESSION_ID
from ..errors import DuplicateNameError, ProtectedResourceError
from ..store import MemoryStore


def store_from_path(db_path: str | None) -> MemoryStore:
    return MemoryStore(db_path or None)


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def write_config_or_exit(data: dict[str, Any]) -> None:
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def exit_on_store_error(exc: DuplicateNameError | ProtectedResourceError) -> NoReturn:
    print(f"[red]{exc}[/red]")
    raise typer.Exit(code=1) from exc


def format_bytes(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{int(size)} B"


def format_tokens(count: int) -> str:
    return f"{count:,}"


def print_json(payload: Any) -> None:
    # plain echo so rich markup does not mangle brackets in the payload
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def resolve_session_id(store: MemoryStore, session: str | None) -> str:
    """Accept either a session id or a session name."""

    if not session:
        return DEFAULT_SESSION_ID
    if store.get_session(session) is not None:
        return session
    found = store.get_session_by_name(session)
    if found is None:
        print(f"[red]Session {session} not found[/red]")
        raise typer.Exit(code=1)
    return found.id
