from __future__ import annotations

import datetime as dt
import itertools
import threading
from pathlib import Path

import pytest

from sanj.errors import InvalidStateTransition, ObservationNotFound
from sanj.models import ObservationState
from sanj.store import ALLOWED_TRANSITIONS, ObservationStore

NOW = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.UTC)


def _drive_to(store: ObservationStore, observation_id: str, state: ObservationState) -> None:
    if state is ObservationState.PENDING:
        return
    if state in {ObservationState.APPROVED, ObservationState.PROMOTED}:
        store.approve(observation_id)
        if state is ObservationState.PROMOTED:
            store.complete_promotion(observation_id, ["claude-md"])
        return
    store.reject(observation_id)
    if state is ObservationState.ARCHIVED:
        store.archive(observation_id)


def test_ingest_creates_pending_observation(store, make_draft) -> None:
    outcome = store.ingest(make_draft("  used   pattern X\n\n for retries  "), now=NOW)

    assert outcome.created is True
    observation = outcome.observation
    assert observation.state is ObservationState.PENDING
    assert observation.content == "used pattern X\nfor retries"
    assert observation.category == "pattern"
    assert observation.created_at == NOW
    assert observation.promoted_at is None
    assert len(observation.id) == 24
    assert store.get(observation.id) == observation


def test_reingest_is_counted_noop(store, make_draft) -> None:
    first = store.ingest(make_draft("Prefers pytest fixtures"))
    store.approve(first.observation.id)

    again = store.ingest(make_draft("prefers   PYTEST fixtures"))

    assert again.created is False
    assert again.observation.id == first.observation.id
    # Ingest never resets the lifecycle of an existing observation.
    assert again.observation.state is ObservationState.APPROVED
    assert store.counts()["pending"] == 0


def test_ingest_many_reports_new_and_duplicates(store, make_draft) -> None:
    drafts = [
        make_draft("uses ruff"),
        make_draft("uses ruff"),
        make_draft("uses ruff", session_id="sess-2"),
        make_draft("writes small commits"),
    ]

    summary = store.ingest_many(drafts)

    assert len(summary.ingested) == 3
    assert summary.deduped == 1
    assert store.counts()["pending"] == 3


def test_reanalysis_on_later_day_keeps_same_id(store, make_draft) -> None:
    first = store.ingest(make_draft(), now=NOW)
    later = store.ingest(make_draft(), now=NOW + dt.timedelta(days=3))

    assert later.created is False
    assert later.observation.id == first.observation.id


def test_same_content_from_different_session_day_is_distinct(store, make_draft) -> None:
    first = store.ingest(make_draft())
    other_day = store.ingest(
        make_draft(captured_at=dt.datetime(2024, 5, 2, 1, 0, tzinfo=dt.UTC))
    )

    assert other_day.created is True
    assert other_day.observation.id != first.observation.id


@pytest.mark.parametrize(
    ("source", "target"), list(itertools.product(ObservationState, ObservationState))
)
def test_transition_table_is_enforced(
    store, make_draft, source: ObservationState, target: ObservationState
) -> None:
    observation_id = store.ingest(make_draft()).observation.id
    _drive_to(store, observation_id, source)

    if target in ALLOWED_TRANSITIONS[source]:
        updated = store.transition(observation_id, target)
        assert updated.state is target
    else:
        with pytest.raises(InvalidStateTransition) as excinfo:
            store.transition(observation_id, target)
        assert excinfo.value.context["from_state"] == source.value
        assert store.get(observation_id).state is source


def test_promoted_at_is_set_only_while_promoted(store, make_draft) -> None:
    observation_id = store.ingest(make_draft()).observation.id
    store.approve(observation_id, targets=["agents-md"])
    assert store.get(observation_id).promoted_at is None

    promoted = store.complete_promotion(observation_id, ["agents-md"], now=NOW)
    assert promoted.state is ObservationState.PROMOTED
    assert promoted.promoted_at == NOW
    assert promoted.target_memories == ("agents-md",)

    archived = store.archive(observation_id)
    assert archived.state is ObservationState.ARCHIVED
    assert archived.promoted_at is None


def test_complete_promotion_is_idempotent(store, make_draft) -> None:
    observation_id = store.ingest(make_draft()).observation.id
    store.approve(observation_id)
    first = store.complete_promotion(observation_id, ["claude-md"], now=NOW)

    second = store.complete_promotion(
        observation_id, ["claude-md"], now=NOW + dt.timedelta(hours=1)
    )

    assert second.state is ObservationState.PROMOTED
    assert second.promoted_at == first.promoted_at


def test_unknown_observation_raises_not_found(store) -> None:
    with pytest.raises(ObservationNotFound):
        store.approve("does-not-exist")
    assert store.get("does-not-exist") is None


def test_approve_records_reviewer_targets(store, make_draft) -> None:
    observation_id = store.ingest(make_draft()).observation.id

    approved = store.approve(observation_id, targets=["claude-md", "claude-md", "agents-md"])

    assert approved.target_memories == ("claude-md", "agents-md")


def test_list_by_state_orders_by_creation(store, make_draft) -> None:
    ids = [
        store.ingest(make_draft(f"item {i}"), now=NOW + dt.timedelta(minutes=i)).observation.id
        for i in range(3)
    ]
    store.reject(ids[1])

    pending = store.list_by_state(ObservationState.PENDING)
    assert [o.id for o in pending] == [ids[0], ids[2]]
    assert [o.id for o in store.list_by_state(ObservationState.PENDING, limit=1)] == [ids[0]]
    assert store.counts() == {
        "pending": 2,
        "approved": 0,
        "rejected": 1,
        "promoted": 0,
        "archived": 0,
    }


def test_archive_finished_only_touches_old_finished_items(store, make_draft) -> None:
    rejected = store.ingest(make_draft("rejected one")).observation.id
    promoted = store.ingest(make_draft("promoted one")).observation.id
    pending = store.ingest(make_draft("still pending")).observation.id
    store.reject(rejected)
    store.approve(promoted)
    store.complete_promotion(promoted, ["claude-md"])

    assert store.archive_finished(dt.datetime.now(dt.UTC) - dt.timedelta(days=1)) == 0
    archived = store.archive_finished(dt.datetime.now(dt.UTC) + dt.timedelta(seconds=5))

    assert archived == 2
    assert store.get(rejected).state is ObservationState.ARCHIVED
    assert store.get(promoted).state is ObservationState.ARCHIVED
    assert store.get(pending).state is ObservationState.PENDING


def test_promotion_records_are_append_only(store, make_draft) -> None:
    observation_id = store.ingest(make_draft()).observation.id
    assert store.get_promotion_record(observation_id, "claude-md") is None

    store.record_promotion(observation_id, "claude-md", "first", now=NOW)
    store.record_promotion(observation_id, "claude-md", "second", now=NOW + dt.timedelta(hours=1))
    store.record_promotion(observation_id, "agents-md", "other", now=NOW)

    latest = store.get_promotion_record(observation_id, "claude-md")
    assert latest is not None
    assert latest.content_written == "second"
    assert [r.content_written for r in store.list_promotion_records(observation_id)] == [
        "first",
        "second",
        "other",
    ]


def test_analysis_run_bookkeeping(store) -> None:
    assert store.last_analysis_run() is None

    store.record_analysis_run(NOW)
    assert store.last_analysis_run() == NOW
    assert store.last_analysis_error() is None

    store.record_analysis_run(NOW + dt.timedelta(hours=1), error="1 analysis batch(es) failed")
    assert store.last_analysis_run() == NOW
    assert store.last_analysis_error() == "1 analysis batch(es) failed"


def test_state_survives_reopen(tmp_path: Path, make_draft) -> None:
    db_path = tmp_path / "persist.sqlite"
    first = ObservationStore(db_path)
    observation_id = first.ingest(make_draft()).observation.id
    first.approve(observation_id, targets=["agents-md"])
    first.close()

    second = ObservationStore(db_path)
    try:
        observation = second.get(observation_id)
        assert observation is not None
        assert observation.state is ObservationState.APPROVED
        assert observation.target_memories == ("agents-md",)
        assert second.ingest(make_draft()).created is False
    finally:
        second.close()


def test_concurrent_ingest_creates_one_row(store, make_draft) -> None:
    outcomes = []
    lock = threading.Lock()

    def worker() -> None:
        outcome = store.ingest(make_draft("shared observation"))
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for o in outcomes if o.created) == 1
    assert store.counts()["pending"] == 1
