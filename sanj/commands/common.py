from __future__ import annotations

import datetime as dt
from collections.abc import Iterable

import typer
from rich import print

from sanj.adapters.registry import AdapterSet, build_adapters
from sanj.config import SanjConfig, load_config
from sanj.errors import ConfigError, Failure, StoreWriteFailure
from sanj.store import ObservationStore
from sanj.store.utils import parse_iso8601


def load_config_or_exit() -> SanjConfig:
    try:
        return load_config()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def store_from_path(db_path: str | None, config: SanjConfig | None = None) -> ObservationStore:
    path = db_path or (config or load_config()).db_path
    try:
        return ObservationStore(path)
    except StoreWriteFailure as exc:
        print(f"[red]Cannot open store: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc


def adapters_or_exit(config: SanjConfig) -> AdapterSet:
    try:
        return build_adapters(config)
    except ConfigError as exc:
        print(f"[red]Invalid configuration: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc


def parse_since_or_exit(value: str | None) -> dt.datetime | None:
    if value is None:
        return None
    parsed = parse_iso8601(value)
    if parsed is None:
        print(f"[red]Invalid --since timestamp: {value}[/red]")
        raise typer.Exit(code=1)
    return parsed


def print_failures(failures: Iterable[Failure]) -> None:
    for failure in failures:
        print(f"  [red]✗[/red] {failure.subject}: {failure.message} [dim]({failure.kind})[/dim]")


def format_when(value: dt.datetime | None) -> str:
    if value is None:
        return "never"
    return value.astimezone(dt.UTC).strftime("%Y-%m-%d %H:%M UTC")
