from __future__ import annotations

import dataclasses
from typing import Any

import typer
from rich import print

from ..config import coerce_config_value
from .common import print_json


def _mask_secrets(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: ("***" if key.endswith("_api_key") and value else value)
        for key, value in data.items()
    }


def config_show_cmd(*, load_config, read_config_or_exit, file_only: bool) -> None:
    """Print the effective configuration, or only what the config file sets."""

    if file_only:
        data = read_config_or_exit()
    else:
        # the file is validated first so a broken file fails loudly here
        read_config_or_exit()
        data = dataclasses.asdict(load_config())
    print_json(_mask_secrets(data))


def config_set_cmd(
    *, read_config_or_exit, write_config_or_exit, get_config_path, key: str, value: str
) -> None:
    try:
        parsed = coerce_config_value(key, value)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    data = read_config_or_exit()
    data[key] = parsed
    write_config_or_exit(data)
    print(f"Set {key} in {get_config_path()}")


def config_unset_cmd(
    *, read_config_or_exit, write_config_or_exit, get_config_path, key: str
) -> None:
    data = read_config_or_exit()
    if key not in data:
        print(f"[yellow]{key} is not set in {get_config_path()}[/yellow]")
        return
    del data[key]
    write_config_or_exit(data)
    print(f"Removed {key} from {get_config_path()}")
