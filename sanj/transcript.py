from __future__ import annotations

import datetime as dt
import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .store.utils import parse_iso8601


@dataclass
class Message:
    role: str
    text: str
    timestamp: dt.datetime | None = None


@dataclass
class ParsedConversation:
    messages: list[Message] = field(default_factory=list)
    cwd: str | None = None
    started_at: dt.datetime | None = None
    events_seen: int = 0


def parse_timestamp(value: Any) -> dt.datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # OpenCode stores epoch milliseconds.
        seconds = value / 1000 if value > 10**11 else value
        try:
            return dt.datetime.fromtimestamp(seconds, dt.UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return parse_iso8601(value)
    return None


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            text = block["text"].strip()
            if text:
                parts.append(text)
        elif block_type == "tool_use":
            parts.append(f"[tool: {block.get('name') or 'unknown'}]")
    return "\n\n".join(parts)


def parse_claude_events(lines: Iterable[str]) -> ParsedConversation:
    """Parse Claude Code JSONL events; malformed lines are skipped."""

    parsed = ParsedConversation()
    for line in lines:
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        parsed.events_seen += 1
        if parsed.cwd is None and isinstance(event.get("cwd"), str):
            parsed.cwd = event["cwd"]
        timestamp = parse_timestamp(event.get("timestamp"))
        if timestamp and parsed.started_at is None:
            parsed.started_at = timestamp
        message = event.get("message")
        if not isinstance(message, dict):
            continue
        role = message.get("role")
        if role not in {"user", "assistant"}:
            continue
        text = _content_text(message.get("content"))
        if text:
            parsed.messages.append(Message(role=role, text=text, timestamp=timestamp))
    return parsed


def parse_opencode_session(data: dict[str, Any]) -> ParsedConversation:
    parsed = ParsedConversation(events_seen=1)
    time_info = data.get("time")
    created = data.get("createdAt")
    if created is None and isinstance(time_info, dict):
        created = time_info.get("created")
    parsed.started_at = parse_timestamp(created)
    if isinstance(data.get("directory"), str):
        parsed.cwd = data["directory"]
    messages = data.get("messages")
    if not isinstance(messages, list):
        return parsed
    for item in messages:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        if role not in {"user", "assistant"}:
            continue
        text = _content_text(item.get("content"))
        if text:
            parsed.messages.append(
                Message(role=role, text=text, timestamp=parse_timestamp(item.get("timestamp")))
            )
    return parsed


def build_transcript(messages: Iterable[Message]) -> str:
    """Render messages as ``User:``/``Assistant:`` paragraphs."""

    parts: list[str] = []
    for message in messages:
        label = "User" if message.role == "user" else "Assistant"
        parts.append(f"{label}: {message.text}")
    return "\n\n".join(parts)
