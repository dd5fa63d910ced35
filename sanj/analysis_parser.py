from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any

from .dedup import normalize_category, normalize_content
from .errors import MalformedAnalysisResult
from .models import ObservationDraft, SessionRecord

CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def _extract_array(raw: str) -> Any:
    cleaned = CODE_FENCE_RE.sub("", raw or "").strip()
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end < start:
        raise MalformedAnalysisResult("analysis response contains no JSON array")
    try:
        return json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedAnalysisResult(f"analysis response is not valid JSON: {exc}") from exc


def _confidence(item: dict[str, Any], index: int) -> float:
    value = item.get("confidence", 1.0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedAnalysisResult(f"item {index}: confidence must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise MalformedAnalysisResult(f"item {index}: confidence out of range")
    return float(value)


def _source_session(
    item: dict[str, Any], index: int, sessions: dict[str, SessionRecord]
) -> SessionRecord:
    session_id = item.get("session_id")
    if session_id is None:
        if len(sessions) == 1:
            return next(iter(sessions.values()))
        raise MalformedAnalysisResult(f"item {index}: session_id is required")
    session = sessions.get(str(session_id))
    if session is None:
        raise MalformedAnalysisResult(f"item {index}: unknown session_id {session_id!r}")
    return session


def parse_analysis_response(
    raw: str,
    sessions: Sequence[SessionRecord],
    *,
    min_confidence: float = 0.0,
) -> list[ObservationDraft]:
    """Parse the whole response or raise; partial batches are never returned."""

    data = _extract_array(raw)
    if not isinstance(data, list):
        raise MalformedAnalysisResult("analysis response is not a JSON array")
    by_id = {session.session_id: session for session in sessions}
    drafts: list[ObservationDraft] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise MalformedAnalysisResult(f"item {index}: expected an object")
        text = item.get("text")
        if not isinstance(text, str) or not normalize_content(text):
            raise MalformedAnalysisResult(f"item {index}: text must be a non-empty string")
        category = item.get("category")
        if category is not None and not isinstance(category, str):
            raise MalformedAnalysisResult(f"item {index}: category must be a string")
        confidence = _confidence(item, index)
        session = _source_session(item, index, by_id)
        if confidence < min_confidence:
            continue
        drafts.append(
            ObservationDraft(
                content=normalize_content(text),
                category=normalize_category(category),
                source_session_id=session.session_id,
                source_adapter_name=session.source_adapter_name,
                session_captured_at=session.captured_at,
                confidence=confidence,
            )
        )
    return drafts
