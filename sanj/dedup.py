from __future__ import annotations

import datetime as dt
import hashlib

ID_LENGTH = 24


def normalize_content(text: str) -> str:
    """Collapse whitespace inside each line and drop blank lines."""

    lines = [" ".join(line.split()) for line in text.strip().splitlines()]
    return "\n".join(line for line in lines if line)


def normalize_category(category: str | None) -> str:
    cleaned = " ".join((category or "").split()).lower()
    return cleaned or "other"


def content_hash(content: str) -> str:
    normalized = normalize_content(content).lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def day_bucket(moment: dt.datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.UTC)
    return moment.astimezone(dt.UTC).date().isoformat()


def observation_id(content_digest: str, source_session_id: str, moment: dt.datetime) -> str:
    # Bucketed on the session's own timestamp so re-analysis on a later day
    # still lands on the same id.
    key = f"{content_digest}|{source_session_id}|{day_bucket(moment)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:ID_LENGTH]
