"""Promote approved observations into core memory files.

Promotion is safe to re-run. A target that already holds the observation's
fragment (tracked by a promotion record) is skipped, so a crash between the
file append and the state change only costs the remaining targets on retry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .adapters.memory import CoreMemoryAdapter
from .dedup import day_bucket
from .errors import Failure, MemoryWriteFailure
from .models import Observation, ObservationState
from .store import ObservationStore
from .store.transitions import check_transition

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
REAPPLIED = "reapplied"
FAILED = "failed"


@dataclass(frozen=True)
class TargetOutcome:
    target: str
    status: str
    failure: Failure | None = None


@dataclass
class ObservationPromotion:
    observation_id: str
    state: ObservationState
    targets: list[TargetOutcome] = field(default_factory=list)

    @property
    def promoted(self) -> bool:
        return self.state is ObservationState.PROMOTED

    @property
    def failures(self) -> list[Failure]:
        return [t.failure for t in self.targets if t.failure is not None]


@dataclass
class PromotionResult:
    promoted: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[Failure] = field(default_factory=list)
    observations: list[ObservationPromotion] = field(default_factory=list)


def format_fragment(observation: Observation) -> str:
    lines = observation.content.splitlines() or [""]
    body = [f"- {lines[0]}"] + [f"  {line}" for line in lines[1:]]
    return f"## {day_bucket(observation.created_at)}\n\n" + "\n".join(body) + "\n"


class PromotionEngine:
    def __init__(
        self,
        store: ObservationStore,
        memory_adapters: Iterable[CoreMemoryAdapter],
        *,
        default_targets: Sequence[str] | None = None,
    ) -> None:
        self.store = store
        self.adapters = {adapter.name: adapter for adapter in memory_adapters}
        self.default_targets = (
            list(default_targets) if default_targets is not None else list(self.adapters)
        )

    format_fragment = staticmethod(format_fragment)

    def _targets_for(self, observation: Observation) -> list[str]:
        return list(observation.target_memories) or list(self.default_targets)

    def _write_target(self, observation: Observation, target: str) -> TargetOutcome:
        adapter = self.adapters.get(target)
        if adapter is None:
            failure = MemoryWriteFailure(
                f"memory target {target} is not enabled", adapter=target
            ).to_failure(observation.id)
            return TargetOutcome(target=target, status=FAILED, failure=failure)
        fragment = format_fragment(observation)
        try:
            with adapter.lock():
                record = self.store.get_promotion_record(observation.id, target)
                if record is not None and record.content_written in adapter.read():
                    return TargetOutcome(target=target, status=SKIPPED)
                adapter.append(fragment)
                self.store.record_promotion(observation.id, target, fragment)
        except MemoryWriteFailure as exc:
            return TargetOutcome(
                target=target, status=FAILED, failure=exc.to_failure(observation.id)
            )
        except OSError as exc:
            # Lock acquisition failures (including timeouts) land here.
            failure = MemoryWriteFailure(
                f"cannot lock {adapter.get_path()}: {exc}", adapter=target
            ).to_failure(observation.id)
            return TargetOutcome(target=target, status=FAILED, failure=failure)
        if record is not None:
            logger.warning(
                "promotion record had no matching fragment; re-appended",
                extra={"observation_id": observation.id, "target": target},
            )
            return TargetOutcome(target=target, status=REAPPLIED)
        return TargetOutcome(target=target, status=APPLIED)

    def promote(self, observation_id: str) -> ObservationPromotion:
        observation = self.store.require(observation_id)
        targets = self._targets_for(observation)
        if observation.state is ObservationState.PROMOTED:
            return ObservationPromotion(
                observation_id=observation.id,
                state=observation.state,
                targets=[TargetOutcome(target=t, status=SKIPPED) for t in targets],
            )
        check_transition(
            observation.state, ObservationState.PROMOTED, observation_id=observation.id
        )

        if not targets:
            failure = MemoryWriteFailure(
                "no memory target enabled", observation_id=observation.id
            ).to_failure(observation.id)
            outcomes = [TargetOutcome(target="", status=FAILED, failure=failure)]
        else:
            outcomes = [self._write_target(observation, target) for target in targets]
        state = observation.state
        if not any(outcome.status == FAILED for outcome in outcomes):
            state = self.store.complete_promotion(observation.id, targets).state
        else:
            logger.warning(
                "promotion incomplete; observation stays approved",
                extra={
                    "observation_id": observation.id,
                    "failed_targets": [o.target for o in outcomes if o.status == FAILED],
                },
            )
        return ObservationPromotion(observation_id=observation.id, state=state, targets=outcomes)

    def promote_approved(self) -> PromotionResult:
        result = PromotionResult()
        for observation in self.store.list_by_state(ObservationState.APPROVED):
            current = self.store.get(observation.id)
            if current is None or current.state is not ObservationState.APPROVED:
                # Another run finished it since the listing.
                result.skipped += 1
                continue
            promotion = self.promote(observation.id)
            result.observations.append(promotion)
            if promotion.promoted:
                result.promoted += 1
            else:
                result.failed += 1
                result.failures.extend(promotion.failures)
        logger.info(
            "promotion run finished",
            extra={
                "promoted": result.promoted,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result
