from __future__ import annotations

from dataclasses import dataclass

from ..config import SanjConfig
from ..errors import ConfigError
from .llm import (
    AnthropicLLMAdapter,
    ClaudeCodeLLMAdapter,
    LLMAdapter,
    OpenAILLMAdapter,
    OpenCodeLLMAdapter,
    PromptLLMAdapter,
)
from .memory import AgentsMdAdapter, ClaudeMdAdapter, CoreMemoryAdapter
from .session import ClaudeCodeSessionAdapter, OpenCodeSessionAdapter, SessionAdapter

SESSION_ADAPTERS: dict[str, type[SessionAdapter]] = {
    ClaudeCodeSessionAdapter.name: ClaudeCodeSessionAdapter,
    OpenCodeSessionAdapter.name: OpenCodeSessionAdapter,
}

LLM_ADAPTERS: dict[str, type[PromptLLMAdapter]] = {
    OpenCodeLLMAdapter.name: OpenCodeLLMAdapter,
    ClaudeCodeLLMAdapter.name: ClaudeCodeLLMAdapter,
    OpenAILLMAdapter.name: OpenAILLMAdapter,
    AnthropicLLMAdapter.name: AnthropicLLMAdapter,
}

MEMORY_ADAPTERS: dict[str, type[CoreMemoryAdapter]] = {
    ClaudeMdAdapter.name: ClaudeMdAdapter,
    AgentsMdAdapter.name: AgentsMdAdapter,
}


@dataclass
class AdapterSet:
    session_adapters: list[SessionAdapter]
    llm_adapter: LLMAdapter
    memory_adapters: list[CoreMemoryAdapter]

    def memory_adapter(self, name: str) -> CoreMemoryAdapter | None:
        return next((a for a in self.memory_adapters if a.name == name), None)


def validate_config(config: SanjConfig) -> None:
    """Reject adapter names that have no implementation."""

    unknown_sessions = sorted(set(config.enabled_session_adapters) - set(SESSION_ADAPTERS))
    if unknown_sessions:
        raise ConfigError(
            f"unknown session adapter(s): {', '.join(unknown_sessions)}",
            known=sorted(SESSION_ADAPTERS),
        )
    if config.selected_llm_adapter not in LLM_ADAPTERS:
        raise ConfigError(
            f"unknown llm adapter: {config.selected_llm_adapter}",
            known=sorted(LLM_ADAPTERS),
        )
    unknown_targets = sorted(set(config.memory_targets) - set(MEMORY_ADAPTERS))
    if unknown_targets:
        raise ConfigError(
            f"unknown memory target(s): {', '.join(unknown_targets)}",
            known=sorted(MEMORY_ADAPTERS),
        )


def _session_path(config: SanjConfig, name: str) -> str | None:
    return {
        ClaudeCodeSessionAdapter.name: config.claude_projects_dir,
        OpenCodeSessionAdapter.name: config.opencode_sessions_dir,
    }.get(name)


def _memory_path(config: SanjConfig, name: str) -> str | None:
    return {
        ClaudeMdAdapter.name: config.claude_md_path,
        AgentsMdAdapter.name: config.agents_md_path,
    }.get(name)


def build_memory_adapters(config: SanjConfig) -> list[CoreMemoryAdapter]:
    return [
        MEMORY_ADAPTERS[name](_memory_path(config, name))  # type: ignore[call-arg]
        for name in config.enabled_memory_targets()
    ]


def build_adapters(config: SanjConfig) -> AdapterSet:
    validate_config(config)
    sessions = [
        SESSION_ADAPTERS[name](_session_path(config, name))  # type: ignore[call-arg]
        for name in dict.fromkeys(config.enabled_session_adapters)
    ]
    llm = LLM_ADAPTERS[config.selected_llm_adapter](
        config.llm_model,
        timeout_s=config.llm_timeout_s,
        min_confidence=config.min_confidence,
        max_transcript_chars=config.max_transcript_chars,
    )
    return AdapterSet(
        session_adapters=sessions,
        llm_adapter=llm,
        memory_adapters=build_memory_adapters(config),
    )
