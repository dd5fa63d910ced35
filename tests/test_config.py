import json
from pathlib import Path

import pytest

from sanj.config import (
    SanjConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_missing_or_blank_config_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "absent.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_get_config_path_honors_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SANJ_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_defaults_without_config_file(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.json")
    assert cfg.enabled_session_adapters == ["claude-code", "opencode"]
    assert cfg.selected_llm_adapter == "opencode"
    assert cfg.enabled_memory_targets() == ["claude-md", "agents-md"]
    assert cfg.min_confidence == 0.6
    assert cfg.db_path == tmp_path / "data" / "sanj.sqlite"


def test_load_config_applies_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "enabled_session_adapters": ["claude-code"],
                "selected_llm_adapter": "anthropic",
                "llm_model": "claude-haiku-4-5",
                "memory_targets": {"agents-md": False},
                "analysis_batch_size": "4",
                "min_confidence": 0.75,
                "unknown_key": "ignored",
            }
        )
    )

    cfg = load_config(config_path)

    assert cfg.enabled_session_adapters == ["claude-code"]
    assert cfg.selected_llm_adapter == "anthropic"
    assert cfg.llm_model == "claude-haiku-4-5"
    assert cfg.enabled_memory_targets() == ["claude-md"]
    assert cfg.analysis_batch_size == 4
    assert cfg.min_confidence == 0.75
    assert not hasattr(cfg, "unknown_key")


def test_env_overrides_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"selected_llm_adapter": "anthropic"}))
    monkeypatch.setenv("SANJ_LLM_ADAPTER", "claude-code")
    monkeypatch.setenv("SANJ_SESSION_ADAPTERS", "opencode")
    monkeypatch.setenv("SANJ_MEMORY_TARGETS", "agents-md")
    monkeypatch.setenv("SANJ_LLM_TIMEOUT_S", "30")

    cfg = load_config(config_path)

    assert cfg.selected_llm_adapter == "claude-code"
    assert cfg.enabled_session_adapters == ["opencode"]
    assert cfg.enabled_memory_targets() == ["agents-md"]
    assert cfg.llm_timeout_s == 30
    assert get_env_overrides()["selected_llm_adapter"] == "claude-code"


def test_invalid_values_warn_and_fall_back(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"analysis_window_days": "soon"}))
    monkeypatch.setenv("SANJ_PROBE_TIMEOUT_S", "fast")

    with pytest.warns(RuntimeWarning):
        cfg = load_config(config_path)

    assert cfg.analysis_window_days == SanjConfig().analysis_window_days
    assert cfg.probe_timeout_s == SanjConfig().probe_timeout_s


def test_invalid_json_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{oops")

    with pytest.raises(ValueError, match="invalid config json"):
        load_config(config_path)


def test_non_object_config_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("\"claude-md\"")

    with pytest.raises(ValueError, match="config must be an object"):
        load_config(config_path)
