from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from sanj.config import CONFIG_ENV_OVERRIDES
from sanj.models import ObservationDraft
from sanj.store import ObservationStore


@pytest.fixture(autouse=True)
def _isolate_sanj_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    for env_var in ("SANJ_LLM_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("SANJ_CONFIG", str(tmp_path / "sanj-config.json"))
    monkeypatch.setenv("SANJ_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def store(tmp_path: Path):
    store = ObservationStore(tmp_path / "store.sqlite")
    yield store
    store.close()


SESSION_DAY = dt.datetime(2024, 5, 1, 9, 30, tzinfo=dt.UTC)


def _draft(
    content: str = "used pattern X for retries",
    *,
    session_id: str = "sess-1",
    adapter: str = "claude-code",
    category: str = "pattern",
    captured_at: dt.datetime = SESSION_DAY,
) -> ObservationDraft:
    return ObservationDraft(
        content=content,
        category=category,
        source_session_id=session_id,
        source_adapter_name=adapter,
        session_captured_at=captured_at,
        confidence=0.9,
    )


@pytest.fixture
def make_draft():
    return _draft
