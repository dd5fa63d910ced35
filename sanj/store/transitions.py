from __future__ import annotations

from ..errors import InvalidStateTransition
from ..models import ObservationState

# None is the "not yet stored" source; only ingestion takes that edge.
ALLOWED_TRANSITIONS: dict[ObservationState | None, frozenset[ObservationState]] = {
    None: frozenset({ObservationState.PENDING}),
    ObservationState.PENDING: frozenset({ObservationState.APPROVED, ObservationState.REJECTED}),
    ObservationState.APPROVED: frozenset({ObservationState.PROMOTED}),
    ObservationState.REJECTED: frozenset({ObservationState.ARCHIVED}),
    ObservationState.PROMOTED: frozenset({ObservationState.ARCHIVED}),
    ObservationState.ARCHIVED: frozenset(),
}


def is_allowed(current: ObservationState | None, target: ObservationState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(
    current: ObservationState | None, target: ObservationState, *, observation_id: str
) -> None:
    if not is_allowed(current, target):
        source = current.value if current else "(none)"
        raise InvalidStateTransition(
            f"observation {observation_id}: {source} -> {target.value} is not allowed",
            observation_id=observation_id,
            from_state=source,
            to_state=target.value,
        )
