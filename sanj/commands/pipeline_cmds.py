from __future__ import annotations

import datetime as dt

import typer
from rich import print

from sanj.availability import AvailabilityValidator
from sanj.commands.common import (
    adapters_or_exit,
    format_when,
    parse_since_or_exit,
    print_failures,
)
from sanj.config import SanjConfig
from sanj.errors import StoreWriteFailure
from sanj.models import ObservationState, utcnow
from sanj.pipeline import run_analysis, run_promotion


def analyze_cmd(
    *,
    store_from_path,
    config: SanjConfig,
    db_path: str | None,
    since: str | None,
    full: bool,
) -> None:
    """Analyze recent sessions into pending observations."""

    since_at = parse_since_or_exit(since)
    adapters = adapters_or_exit(config)
    store = store_from_path(db_path, config)
    try:
        result = run_analysis(config, store, adapters=adapters, since=since_at, full=full)
    except StoreWriteFailure as exc:
        print(f"[red]Store error: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()

    if result.blocked:
        print("[red]Analysis blocked: the selected LLM adapter is unavailable.[/red]")
        print_failures(result.failures)
        hint = adapters.llm_adapter.remedy_hint
        if hint:
            print(f"  [dim]{hint}[/dim]")
        raise typer.Exit(code=1)

    for warning in result.warnings:
        print(f"[yellow]Warning: {warning}[/yellow]")
    scope = "all sessions" if result.since is None else f"since {format_when(result.since)}"
    print(f"[bold]Analysis[/bold] ({scope})")
    print(f"- Sessions read: {result.sessions_read}")
    if result.sessions_skipped:
        print(f"- Sessions without transcript: {result.sessions_skipped}")
    print(f"- Sessions failed: {result.sessions_failed}")
    print(f"- New observations: {result.ingested}")
    print(f"- Duplicates: {result.deduped}")
    if result.failures:
        print("[bold]Failures[/bold]")
        print_failures(result.failures)


def promote_cmd(*, store_from_path, config: SanjConfig, db_path: str | None) -> None:
    """Write approved observations into the configured memory files."""

    adapters = adapters_or_exit(config)
    store = store_from_path(db_path, config)
    try:
        result = run_promotion(config, store, adapters=adapters)
    except StoreWriteFailure as exc:
        print(f"[red]Store error: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()

    print("[bold]Promotion[/bold]")
    print(f"- Promoted: {result.promoted}")
    print(f"- Skipped: {result.skipped}")
    print(f"- Failed: {result.failed}")
    for promotion in result.observations:
        for outcome in promotion.targets:
            if outcome.status == "reapplied":
                print(
                    f"  [yellow]![/yellow] {promotion.observation_id}: "
                    f"re-appended to {outcome.target}"
                )
    if result.failures:
        print("[bold]Failures[/bold] [dim](observations stay approved for retry)[/dim]")
        print_failures(result.failures)


def archive_cmd(
    *, store_from_path, config: SanjConfig, db_path: str | None, older_than_days: int
) -> None:
    """Archive rejected and promoted observations."""

    before = utcnow() - dt.timedelta(days=max(0, older_than_days))
    store = store_from_path(db_path, config)
    try:
        archived = store.archive_finished(before)
    except StoreWriteFailure as exc:
        print(f"[red]Store error: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    print(f"Archived {archived} observation(s)")


def doctor_cmd(*, config: SanjConfig) -> None:
    """Probe every configured adapter and report readiness."""

    adapters = adapters_or_exit(config)
    report = AvailabilityValidator(config.probe_timeout_s).validate(
        adapters.session_adapters, adapters.llm_adapter, adapters.memory_adapters
    )
    print("[bold]Adapters[/bold]")
    for entry in report.entries:
        mark = "[green]✓[/green]" if entry.available else "[red]✗[/red]"
        line = f"  {mark} {entry.adapter_name} [dim]({entry.kind.value})[/dim]"
        if entry.detail:
            line += f": {entry.detail}"
        print(line)
        if entry.remedy_hint:
            print(f"      [dim]{entry.remedy_hint}[/dim]")
    for warning in report.warnings:
        print(f"[yellow]Warning: {warning}[/yellow]")
    color = {"ok": "green", "degraded": "yellow", "blocked": "red"}[report.status]
    print(f"Status: [{color}]{report.status}[/{color}]")
    if report.blocked:
        raise typer.Exit(code=1)


def status_cmd(*, store_from_path, config: SanjConfig, db_path: str | None) -> None:
    """Show observation counts and the last analysis run."""

    store = store_from_path(db_path, config)
    try:
        counts = store.counts()
        last_run = store.last_analysis_run()
        last_error = store.last_analysis_error()
    finally:
        store.close()

    print("[bold]Observations[/bold]")
    for state in ObservationState:
        print(f"- {state.value}: {counts.get(state.value, 0)}")
    print(f"\nLast analysis: {format_when(last_run)}")
    if last_error:
        print(f"[yellow]Last analysis error: {last_error}[/yellow]")
