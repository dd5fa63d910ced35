from __future__ import annotations

from collections.abc import Sequence
from xml.sax.saxutils import escape, quoteattr

from .models import SessionRecord

OBSERVATION_CATEGORIES = "preference, pattern, workflow, tool-choice, style, other"

SYSTEM_IDENTITY = (
    "You review transcripts of coding-assistant sessions and extract durable "
    "observations about how this user works."
)

RECORDING_FOCUS = (
    "Record preferences, repeated behaviors, workflows, tool choices and coding "
    "style that would help an assistant in future sessions. Skip one-off task "
    "details, file contents and anything specific to a single bug."
)

OUTPUT_GUIDANCE = (
    "Respond with ONLY a JSON array and no other text. Each element is an object "
    'with "text" (one short sentence), "category" (one of: '
    f"{OBSERVATION_CATEGORIES}), "
    '"confidence" (0.0 to 1.0) and "session_id" (the id of the session it came from). '
    "Return [] if nothing notable was found."
)

EXAMPLE = (
    '[{"text": "runs the test suite before committing", "category": "workflow", '
    '"confidence": 0.8, "session_id": "abc123"}]'
)


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n[transcript truncated]"


def build_analysis_prompt(sessions: Sequence[SessionRecord], *, max_chars: int) -> str:
    blocks: list[str] = []
    for session in sessions:
        attrs = f"id={quoteattr(session.session_id)} tool={quoteattr(session.source_adapter_name)}"
        body = escape(_truncate(session.raw_content, max_chars))
        blocks.append(f"<session {attrs}>\n{body}\n</session>")
    return "\n\n".join(
        [
            SYSTEM_IDENTITY,
            RECORDING_FOCUS,
            OUTPUT_GUIDANCE,
            f"Example: {EXAMPLE}",
            *blocks,
        ]
    )
