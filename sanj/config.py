from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

DEFAULT_DATA_DIR = "~/.sanj"
DEFAULT_CONFIG_PATH = Path("~/.sanj/config.json").expanduser()
DB_FILENAME = "sanj.sqlite"

CONFIG_ENV_OVERRIDES = {
    "enabled_session_adapters": "SANJ_SESSION_ADAPTERS",
    "selected_llm_adapter": "SANJ_LLM_ADAPTER",
    "llm_model": "SANJ_LLM_MODEL",
    "llm_timeout_s": "SANJ_LLM_TIMEOUT_S",
    "memory_targets": "SANJ_MEMORY_TARGETS",
    "analysis_window_days": "SANJ_ANALYSIS_WINDOW_DAYS",
    "analysis_batch_size": "SANJ_ANALYSIS_BATCH_SIZE",
    "min_confidence": "SANJ_MIN_CONFIDENCE",
    "max_transcript_chars": "SANJ_MAX_TRANSCRIPT_CHARS",
    "probe_timeout_s": "SANJ_PROBE_TIMEOUT_S",
    "data_dir": "SANJ_DATA_DIR",
    "claude_projects_dir": "SANJ_CLAUDE_PROJECTS_DIR",
    "opencode_sessions_dir": "SANJ_OPENCODE_SESSIONS_DIR",
    "claude_md_path": "SANJ_CLAUDE_MD_PATH",
    "agents_md_path": "SANJ_AGENTS_MD_PATH",
}

_INT_KEYS = {
    "llm_timeout_s",
    "analysis_window_days",
    "analysis_batch_size",
    "max_transcript_chars",
}
_FLOAT_KEYS = {"min_confidence", "probe_timeout_s"}
_LIST_KEYS = {"enabled_session_adapters"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("SANJ_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class SanjConfig:
    enabled_session_adapters: list[str] = field(
        default_factory=lambda: ["claude-code", "opencode"]
    )
    selected_llm_adapter: str = "opencode"
    llm_model: str | None = None
    llm_timeout_s: int = 120
    memory_targets: dict[str, bool] = field(
        default_factory=lambda: {"claude-md": True, "agents-md": True}
    )
    analysis_window_days: int = 1
    analysis_batch_size: int = 1
    min_confidence: float = 0.6
    max_transcript_chars: int = 12000
    probe_timeout_s: float = 5.0
    data_dir: str = DEFAULT_DATA_DIR

    # Storage locations of the external tools; None means the tool's default.
    claude_projects_dir: str | None = None
    opencode_sessions_dir: str | None = None
    claude_md_path: str | None = None
    agents_md_path: str | None = None

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir).expanduser() / DB_FILENAME

    def enabled_memory_targets(self) -> list[str]:
        return [name for name, enabled in self.memory_targets.items() if enabled]


_FIELD_NAMES = {f.name for f in fields(SanjConfig)}


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_str_list(value: object, *, key: str) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                items.append(item.strip())
        return items
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def _coerce_targets(value: object, current: dict[str, bool]) -> dict[str, bool]:
    # Accepts {"claude-md": true} or a plain list of enabled names.
    if isinstance(value, dict):
        merged = dict(current)
        for name, enabled in value.items():
            if isinstance(name, str) and name.strip():
                merged[name.strip()] = _coerce_bool(enabled, False, key=f"memory_targets.{name}")
        return merged
    names = _coerce_str_list(value, key="memory_targets")
    if names is None:
        return current
    targets = {name: False for name in current}
    targets.update({name: True for name in names})
    return targets


def load_config(path: Path | None = None) -> SanjConfig:
    """Defaults, then the JSON config file, then ``SANJ_*`` environment overrides.

    Raises ``ValueError`` when the config file is not a JSON object.
    """
    cfg = _apply_dict(SanjConfig(), read_config_file(path))
    return _apply_env(cfg)


def _apply_dict(cfg: SanjConfig, data: dict[str, Any]) -> SanjConfig:
    for key, value in data.items():
        if key not in _FIELD_NAMES:
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _LIST_KEYS:
            parsed = _coerce_str_list(value, key=key)
            if parsed is not None:
                setattr(cfg, key, parsed)
            continue
        if key == "memory_targets":
            cfg.memory_targets = _coerce_targets(value, cfg.memory_targets)
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: SanjConfig) -> SanjConfig:
    return _apply_dict(cfg, get_env_overrides())
