from __future__ import annotations

import typer
from rich import print

from sanj.adapters.registry import MEMORY_ADAPTERS
from sanj.config import SanjConfig
from sanj.errors import InvalidStateTransition, ObservationNotFound, StoreWriteFailure
from sanj.models import Observation, ObservationState


def _parse_state(value: str) -> ObservationState:
    try:
        return ObservationState(value.strip().lower())
    except ValueError as exc:
        choices = ", ".join(state.value for state in ObservationState)
        print(f"[red]Unknown state {value!r} (choose from {choices})[/red]")
        raise typer.Exit(code=1) from exc


def _summary(observation: Observation, width: int = 80) -> str:
    first = observation.content.splitlines()[0] if observation.content else ""
    if len(first) > width:
        first = first[: width - 3].rstrip() + "..."
    return first


def review_list_cmd(
    *, store_from_path, config: SanjConfig, db_path: str | None, state: str, limit: int | None
) -> None:
    """List observations in a given state."""

    wanted = _parse_state(state)
    store = store_from_path(db_path, config)
    try:
        observations = store.list_by_state(wanted, limit=limit)
    finally:
        store.close()
    if not observations:
        print(f"No {wanted.value} observations")
        return
    for observation in observations:
        targets = ""
        if observation.target_memories:
            targets = f" [dim]-> {', '.join(observation.target_memories)}[/dim]"
        print(
            f"{observation.id} [cyan]{observation.category}[/cyan] "
            f"{_summary(observation)}{targets}"
        )


def _change_or_exit(action, observation_id: str) -> Observation:
    try:
        return action()
    except ObservationNotFound as exc:
        print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    except InvalidStateTransition as exc:
        print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    except StoreWriteFailure as exc:
        print(f"[red]Store error for {observation_id}: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc


def review_approve_cmd(
    *,
    store_from_path,
    config: SanjConfig,
    db_path: str | None,
    observation_id: str,
    targets: list[str] | None,
) -> None:
    """Approve a pending observation, optionally pinning its memory targets."""

    unknown = sorted(set(targets or ()) - set(MEMORY_ADAPTERS))
    if unknown:
        print(f"[red]Unknown memory target(s): {', '.join(unknown)}[/red]")
        raise typer.Exit(code=1)
    enabled = config.enabled_memory_targets()
    disabled = sorted(set(targets or ()) - set(enabled))
    if disabled:
        print(
            f"[red]Memory target(s) not enabled: {', '.join(disabled)} "
            f"(enabled: {', '.join(enabled) or 'none'})[/red]"
        )
        raise typer.Exit(code=1)
    store = store_from_path(db_path, config)
    try:
        observation = _change_or_exit(
            lambda: store.approve(observation_id, targets=targets or None), observation_id
        )
    finally:
        store.close()
    print(f"Approved {observation.id}")


def review_reject_cmd(
    *, store_from_path, config: SanjConfig, db_path: str | None, observation_id: str
) -> None:
    """Reject a pending observation."""

    store = store_from_path(db_path, config)
    try:
        observation = _change_or_exit(lambda: store.reject(observation_id), observation_id)
    finally:
        store.close()
    print(f"Rejected {observation.id}")
