from __future__ import annotations

import logging
import sys

import typer
from rich import print

from . import __version__
from .commands.common import load_config_or_exit, store_from_path
from .commands.pipeline_cmds import (
    analyze_cmd,
    archive_cmd,
    doctor_cmd,
    promote_cmd,
    status_cmd,
)
from .commands.review_cmds import review_approve_cmd, review_list_cmd, review_reject_cmd

app = typer.Typer(help="sanj: promote what your coding sessions teach into memory files")
review_app = typer.Typer(help="Review pending observations")
app.add_typer(review_app, name="review")


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline activity to stderr"),
) -> None:
    _configure_logging(verbose)


@app.command()
def analyze(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    since: str = typer.Option(None, help="Only sessions modified at/after this ISO timestamp"),
    full: bool = typer.Option(False, "--full", help="Analyze every session, ignoring the cursor"),
) -> None:
    """Analyze recent sessions into pending observations."""

    analyze_cmd(
        store_from_path=store_from_path,
        config=load_config_or_exit(),
        db_path=db_path,
        since=since,
        full=full,
    )


@app.command()
def promote(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Write approved observations into memory files."""

    promote_cmd(store_from_path=store_from_path, config=load_config_or_exit(), db_path=db_path)


@app.command()
def archive(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    older_than_days: int = typer.Option(0, help="Only archive items finished this many days ago"),
) -> None:
    """Archive rejected and promoted observations."""

    archive_cmd(
        store_from_path=store_from_path,
        config=load_config_or_exit(),
        db_path=db_path,
        older_than_days=older_than_days,
    )


@app.command()
def doctor() -> None:
    """Check which adapters are usable."""

    doctor_cmd(config=load_config_or_exit())


@app.command()
def status(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Show observation counts and the last analysis run."""

    status_cmd(store_from_path=store_from_path, config=load_config_or_exit(), db_path=db_path)


@review_app.command("list")
def review_list(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    state: str = typer.Option("pending", help="Observation state to list"),
    limit: int = typer.Option(None, help="Maximum number of rows"),
) -> None:
    """List observations by state."""

    review_list_cmd(
        store_from_path=store_from_path,
        config=load_config_or_exit(),
        db_path=db_path,
        state=state,
        limit=limit,
    )


@review_app.command("approve")
def review_approve(
    observation_id: str = typer.Argument(..., help="Observation id"),
    target: list[str] = typer.Option(None, "--target", help="Memory target (repeatable)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Approve a pending observation."""

    review_approve_cmd(
        store_from_path=store_from_path,
        config=load_config_or_exit(),
        db_path=db_path,
        observation_id=observation_id,
        targets=target or None,
    )


@review_app.command("reject")
def review_reject(
    observation_id: str = typer.Argument(..., help="Observation id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Reject a pending observation."""

    review_reject_cmd(
        store_from_path=store_from_path,
        config=load_config_or_exit(),
        db_path=db_path,
        observation_id=observation_id,
    )


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
