from __future__ import annotations

from .llm import (
    AnthropicLLMAdapter,
    ClaudeCodeLLMAdapter,
    LLMAdapter,
    OpenAILLMAdapter,
    OpenCodeLLMAdapter,
)
from .memory import AgentsMdAdapter, ClaudeMdAdapter, CoreMemoryAdapter
from .registry import AdapterSet, build_adapters, validate_config
from .session import ClaudeCodeSessionAdapter, OpenCodeSessionAdapter, SessionAdapter

__all__ = [
    "AdapterSet",
    "AgentsMdAdapter",
    "AnthropicLLMAdapter",
    "ClaudeCodeLLMAdapter",
    "ClaudeCodeSessionAdapter",
    "ClaudeMdAdapter",
    "CoreMemoryAdapter",
    "LLMAdapter",
    "OpenAILLMAdapter",
    "OpenCodeLLMAdapter",
    "OpenCodeSessionAdapter",
    "SessionAdapter",
    "build_adapters",
    "validate_config",
]
