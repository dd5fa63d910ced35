from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from sanj.adapters.llm import LLMAdapter
from sanj.adapters.memory import AgentsMdAdapter, ClaudeMdAdapter
from sanj.adapters.registry import AdapterSet
from sanj.adapters.session import SessionAdapter
from sanj.config import SanjConfig
from sanj.errors import MalformedAnalysisResult, SessionUnreadable
from sanj.models import ObservationDraft, ObservationState, SessionRecord
from sanj.pipeline import run_analysis, run_promotion

NOW = dt.datetime(2024, 5, 1, 18, 0, tzinfo=dt.UTC)


class MemorySessions(SessionAdapter):
    name = "claude-code"

    def __init__(self, sessions: dict[str, str], *, available: bool = True, broken=()):
        self.sessions = sessions
        self.available = available
        self.broken = set(broken)
        self.since_seen: list[dt.datetime | None] = []

    def is_available(self) -> bool:
        return self.available

    def list_sessions(self, since=None):
        self.since_seen.append(since)
        return sorted(self.sessions) + sorted(self.broken)

    def read_session(self, session_id: str) -> SessionRecord:
        if session_id in self.broken:
            raise SessionUnreadable(f"cannot read {session_id}", session_id=session_id)
        return SessionRecord(
            source_adapter_name=self.name,
            session_id=session_id,
            captured_at=dt.datetime(2024, 5, 1, 9, 0, tzinfo=dt.UTC),
            raw_content=self.sessions[session_id],
        )


class ScriptedLLM(LLMAdapter):
    name = "scripted"
    remedy_hint = "configure the scripted llm"

    def __init__(self, *, available: bool = True, fail_on: str | None = None):
        self.available = available
        self.fail_on = fail_on
        self.batches: list[list[str]] = []

    def is_available(self) -> bool:
        return self.available

    def analyze(self, sessions):
        self.batches.append([s.session_id for s in sessions])
        drafts = []
        for session in sessions:
            if self.fail_on and self.fail_on in session.raw_content:
                raise MalformedAnalysisResult("model returned prose")
            drafts.append(
                ObservationDraft(
                    content=session.raw_content.removeprefix("User: "),
                    category="workflow",
                    source_session_id=session.session_id,
                    source_adapter_name=session.source_adapter_name,
                    session_captured_at=session.captured_at,
                )
            )
        return drafts


@pytest.fixture
def config(tmp_path: Path) -> SanjConfig:
    return SanjConfig(data_dir=str(tmp_path / "data"))


def _adapters(tmp_path: Path, sessions: SessionAdapter, llm: LLMAdapter) -> AdapterSet:
    return AdapterSet(
        session_adapters=[sessions],
        llm_adapter=llm,
        memory_adapters=[
            ClaudeMdAdapter(tmp_path / "CLAUDE.md"),
            AgentsMdAdapter(tmp_path / "AGENTS.md"),
        ],
    )


def test_analysis_ingests_pending_observations(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: uses ruff", "b": "User: prefers uv"}, broken=["zz"])
    llm = ScriptedLLM()

    result = run_analysis(config, store, adapters=_adapters(tmp_path, sessions, llm), now=NOW)

    assert result.blocked is False
    assert (result.sessions_read, result.sessions_failed) == (2, 1)
    assert (result.ingested, result.deduped) == (2, 0)
    assert [f.kind for f in result.failures] == ["SESSION_UNREADABLE"]
    assert result.since == NOW - dt.timedelta(days=config.analysis_window_days)
    assert llm.batches == [["a"], ["b"]]
    assert store.counts()["pending"] == 2
    assert store.last_analysis_run() == NOW


def test_rerun_uses_last_run_and_dedups(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: uses ruff"})
    adapters = _adapters(tmp_path, sessions, ScriptedLLM())
    run_analysis(config, store, adapters=adapters, now=NOW)

    again = run_analysis(config, store, adapters=adapters, now=NOW + dt.timedelta(hours=1))

    assert sessions.since_seen[-1] == NOW
    assert (again.ingested, again.deduped) == (0, 1)
    assert store.counts()["pending"] == 1


def test_full_and_explicit_since(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: uses ruff"})
    adapters = _adapters(tmp_path, sessions, ScriptedLLM())
    explicit = dt.datetime(2024, 4, 1, tzinfo=dt.UTC)

    run_analysis(config, store, adapters=adapters, since=explicit, now=NOW)
    run_analysis(config, store, adapters=adapters, full=True, now=NOW)

    assert sessions.since_seen == [explicit, None]


def test_blocked_run_ingests_nothing(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: uses ruff"})
    llm = ScriptedLLM(available=False)

    result = run_analysis(config, store, adapters=_adapters(tmp_path, sessions, llm), now=NOW)

    assert result.blocked is True
    assert result.report is not None and result.report.status == "blocked"
    assert [f.kind for f in result.failures] == ["ADAPTER_UNAVAILABLE"]
    assert llm.batches == []
    assert sessions.since_seen == []
    assert sum(store.counts().values()) == 0
    assert store.last_analysis_run() is None
    assert "not available" in store.last_analysis_error()


def test_no_sessions_available_warns_with_empty_result(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: uses ruff"}, available=False)

    result = run_analysis(
        config, store, adapters=_adapters(tmp_path, sessions, ScriptedLLM()), now=NOW
    )

    assert result.blocked is False
    assert result.warnings
    assert (result.sessions_read, result.ingested) == (0, 0)
    assert sessions.since_seen == []


def test_failed_batch_keeps_cursor(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: uses ruff", "b": "User: BAD output"})
    llm = ScriptedLLM(fail_on="BAD")

    result = run_analysis(config, store, adapters=_adapters(tmp_path, sessions, llm), now=NOW)

    assert result.batches_failed == 1
    assert result.ingested == 1
    assert result.failures[0].kind == "MALFORMED_ANALYSIS_RESULT"
    assert result.failures[0].subject == "claude-code:b"
    assert store.last_analysis_run() is None
    assert store.last_analysis_error() == "1 analysis batch(es) failed"


def test_batch_size_groups_sessions(tmp_path, store) -> None:
    config = SanjConfig(data_dir=str(tmp_path / "data"), analysis_batch_size=2)
    sessions = MemorySessions({"a": "User: a", "b": "User: b", "c": "User: c"})
    llm = ScriptedLLM()

    run_analysis(config, store, adapters=_adapters(tmp_path, sessions, llm), now=NOW)

    assert llm.batches == [["a", "b"], ["c"]]


def test_empty_transcripts_are_skipped(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "", "b": "User: uses ruff"})
    llm = ScriptedLLM()

    result = run_analysis(config, store, adapters=_adapters(tmp_path, sessions, llm), now=NOW)

    assert (result.sessions_read, result.sessions_skipped) == (1, 1)
    assert llm.batches == [["b"]]


def test_promotion_run_end_to_end(tmp_path, store, config) -> None:
    sessions = MemorySessions({"a": "User: used pattern X for retries"})
    adapters = _adapters(tmp_path, sessions, ScriptedLLM())
    run_analysis(config, store, adapters=adapters, now=NOW)
    (observation,) = store.list_by_state(ObservationState.PENDING)
    store.approve(observation.id, targets=["claude-md"])

    result = run_promotion(config, store, adapters=adapters)

    assert (result.promoted, result.skipped, result.failed) == (1, 0, 0)
    assert (tmp_path / "CLAUDE.md").read_text(encoding="utf-8") == (
        "## 2024-05-01\n\n- used pattern X for retries\n"
    )
    assert not (tmp_path / "AGENTS.md").exists()
    assert store.get(observation.id).state is ObservationState.PROMOTED


def test_promotion_builds_adapters_from_config(tmp_path, store) -> None:
    config = SanjConfig(
        data_dir=str(tmp_path / "data"),
        memory_targets={"claude-md": False, "agents-md": True},
        agents_md_path=str(tmp_path / "home" / "AGENTS.md"),
    )
    draft = ObservationDraft(
        content="keeps commits small",
        category="workflow",
        source_session_id="s1",
        source_adapter_name="claude-code",
        session_captured_at=NOW,
    )
    observation_id = store.ingest(draft, now=NOW).observation.id
    store.approve(observation_id)

    result = run_promotion(config, store)

    assert result.promoted == 1
    assert "- keeps commits small\n" in (tmp_path / "home" / "AGENTS.md").read_text(
        encoding="utf-8"
    )
