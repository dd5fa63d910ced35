"""LLM adapters: turn session transcripts into observation drafts."""

from __future__ import annotations

import abc
import json
import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from typing import Any

from ..analysis_parser import parse_analysis_response
from ..analysis_prompts import SYSTEM_IDENTITY, build_analysis_prompt
from ..errors import AnalysisCallFailed, AnalysisTimeout
from ..models import ObservationDraft, SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_OPENCODE_MODEL = "zai-coding-plan/glm-4.7"
DEFAULT_OPENAI_MODEL = "gpt-5.1-codex-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-haiku-4-5"
DEFAULT_TIMEOUT_S = 120
MAX_ATTEMPTS = 2


class LLMAdapter(abc.ABC):
    name: str
    remedy_hint: str = ""

    @abc.abstractmethod
    def is_available(self) -> bool: ...

    @abc.abstractmethod
    def analyze(self, sessions: Sequence[SessionRecord]) -> list[ObservationDraft]: ...


class PromptLLMAdapter(LLMAdapter):
    """Shared prompt/retry/parse flow; subclasses only implement ``_call``."""

    default_model: str | None = None

    def __init__(
        self,
        model: str | None = None,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        min_confidence: float = 0.0,
        max_transcript_chars: int = 12000,
    ) -> None:
        self.model = model or self.default_model
        self.timeout_s = timeout_s
        self.min_confidence = min_confidence
        self.max_transcript_chars = max_transcript_chars
        self._available: bool | None = None

    def is_available(self) -> bool:
        if self._available is None:
            self._available = self._probe()
        return self._available

    @abc.abstractmethod
    def _probe(self) -> bool: ...

    @abc.abstractmethod
    def _call(self, prompt: str) -> str: ...

    def analyze(self, sessions: Sequence[SessionRecord]) -> list[ObservationDraft]:
        if not sessions:
            return []
        prompt = build_analysis_prompt(sessions, max_chars=self.max_transcript_chars)
        raw = self._call_with_retry(prompt, [s.session_id for s in sessions])
        return parse_analysis_response(raw, sessions, min_confidence=self.min_confidence)

    def _call_with_retry(self, prompt: str, session_ids: list[str]) -> str:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self._call(prompt)
            except AnalysisTimeout:
                logger.warning(
                    "analysis call timed out",
                    extra={
                        "adapter": self.name,
                        "attempt": attempt,
                        "timeout_s": self.timeout_s,
                        "session_ids": session_ids,
                    },
                )
                if attempt == MAX_ATTEMPTS:
                    raise
        raise AssertionError("unreachable")  # pragma: no cover


class CommandLLMAdapter(PromptLLMAdapter):
    executable: str

    def _probe(self) -> bool:
        return shutil.which(self.executable) is not None

    @abc.abstractmethod
    def _command(self, prompt: str) -> list[str]: ...

    def _extract_text(self, stdout: str) -> str:
        return stdout.strip()

    def _call(self, prompt: str) -> str:
        env = dict(os.environ)
        # Keep sanj's own analysis runs out of the session stores it reads.
        env["SANJ_ANALYSIS_RUN"] = "1"
        try:
            result = subprocess.run(
                self._command(prompt),
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise AnalysisTimeout(
                f"{self.executable} did not answer within {self.timeout_s}s",
                adapter=self.name,
            ) from exc
        except OSError as exc:
            raise AnalysisCallFailed(
                f"cannot run {self.executable}: {exc}", adapter=self.name
            ) from exc
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()[-500:]
            raise AnalysisCallFailed(
                f"{self.executable} exited with {result.returncode}: {stderr}",
                adapter=self.name,
                returncode=result.returncode,
            )
        return self._extract_text(result.stdout)


class OpenCodeLLMAdapter(CommandLLMAdapter):
    name = "opencode"
    executable = "opencode"
    default_model = DEFAULT_OPENCODE_MODEL
    remedy_hint = "Install OpenCode and make sure `opencode` is on PATH."

    def _command(self, prompt: str) -> list[str]:
        cmd = [self.executable, "run", "--format", "json"]
        if self.model:
            cmd.extend(["--model", self.model])
        cmd.append(prompt)
        return cmd

    def _extract_text(self, stdout: str) -> str:
        if not stdout:
            return ""
        parts: list[str] = []
        for line in stdout.splitlines():
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict) or payload.get("type") != "text":
                continue
            part = payload.get("part") or {}
            text = part.get("text") if isinstance(part, dict) else None
            if text:
                parts.append(text)
        if parts:
            return "\n".join(parts).strip()
        return stdout.strip()


class ClaudeCodeLLMAdapter(CommandLLMAdapter):
    name = "claude-code"
    executable = "claude"
    remedy_hint = "Install Claude Code and make sure `claude` is on PATH."

    def _command(self, prompt: str) -> list[str]:
        cmd = [self.executable, "-p", "--output-format", "text"]
        if self.model:
            cmd.extend(["--model", self.model])
        cmd.append(prompt)
        return cmd


class OpenAILLMAdapter(PromptLLMAdapter):
    name = "openai"
    default_model = DEFAULT_OPENAI_MODEL
    remedy_hint = "Set OPENAI_API_KEY (or SANJ_LLM_API_KEY)."

    def __init__(self, model: str | None = None, *, api_key: str | None = None, **kwargs: Any):
        super().__init__(model, **kwargs)
        self.api_key = api_key or os.getenv("SANJ_LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
        self.client: Any | None = None

    def _probe(self) -> bool:
        if not self.api_key:
            return False
        try:
            from openai import OpenAI

            self.client = OpenAI(api_key=self.api_key, timeout=self.timeout_s, max_retries=0)
        except Exception as exc:  # pragma: no cover
            logger.exception("openai client init failed", exc_info=exc)
            return False
        return True

    def _call(self, prompt: str) -> str:
        import openai

        if self.client is None and not self._probe():
            raise AnalysisCallFailed("openai client is not configured", adapter=self.name)
        try:
            resp = self.client.chat.completions.create(  # type: ignore[union-attr]
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_IDENTITY},
                    {"role": "user", "content": prompt},
                ],
                temperature=0,
            )
        except openai.APITimeoutError as exc:
            raise AnalysisTimeout(
                f"openai did not answer within {self.timeout_s}s", adapter=self.name
            ) from exc
        except openai.OpenAIError as exc:
            raise AnalysisCallFailed(f"openai call failed: {exc}", adapter=self.name) from exc
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""


class AnthropicLLMAdapter(PromptLLMAdapter):
    name = "anthropic"
    default_model = DEFAULT_ANTHROPIC_MODEL
    remedy_hint = "Set ANTHROPIC_API_KEY (or SANJ_LLM_API_KEY)."
    max_tokens = 4000

    def __init__(self, model: str | None = None, *, api_key: str | None = None, **kwargs: Any):
        super().__init__(model, **kwargs)
        self.api_key = (
            api_key or os.getenv("SANJ_LLM_API_KEY") or os.getenv("ANTHROPIC_API_KEY")
        )
        self.client: Any | None = None

    def _probe(self) -> bool:
        if not self.api_key:
            return False
        try:
            import anthropic

            self.client = anthropic.Anthropic(
                api_key=self.api_key, timeout=self.timeout_s, max_retries=0
            )
        except Exception as exc:  # pragma: no cover
            logger.exception("anthropic client init failed", exc_info=exc)
            return False
        return True

    def _call(self, prompt: str) -> str:
        import anthropic

        if self.client is None and not self._probe():
            raise AnalysisCallFailed("anthropic client is not configured", adapter=self.name)
        try:
            resp = self.client.messages.create(  # type: ignore[union-attr]
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_IDENTITY,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
            )
        except anthropic.APITimeoutError as exc:
            raise AnalysisTimeout(
                f"anthropic did not answer within {self.timeout_s}s", adapter=self.name
            ) from exc
        except anthropic.AnthropicError as exc:
            raise AnalysisCallFailed(
                f"anthropic call failed: {exc}", adapter=self.name
            ) from exc
        parts = [
            block.text for block in resp.content if getattr(block, "type", None) == "text"
        ]
        return "".join(parts)
