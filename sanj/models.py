from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field


class ObservationState(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROMOTED = "promoted"
    ARCHIVED = "archived"


class AdapterKind(str, enum.Enum):
    SESSION = "session"
    LLM = "llm"
    MEMORY = "memory"


@dataclass(frozen=True)
class SessionRecord:
    source_adapter_name: str
    session_id: str
    captured_at: dt.datetime
    raw_content: str
    project_path: str | None = None
    file_path: str | None = None


@dataclass(frozen=True)
class ObservationDraft:
    content: str
    category: str
    source_session_id: str
    source_adapter_name: str
    session_captured_at: dt.datetime
    confidence: float = 1.0


@dataclass(frozen=True)
class Observation:
    id: str
    source_session_id: str
    source_adapter_name: str
    content: str
    category: str
    created_at: dt.datetime
    state: ObservationState
    content_hash: str
    target_memories: tuple[str, ...] = ()
    promoted_at: dt.datetime | None = None


@dataclass(frozen=True)
class PromotionRecord:
    observation_id: str
    target_adapter_name: str
    applied_at: dt.datetime
    content_written: str


@dataclass(frozen=True)
class AdapterAvailability:
    adapter_name: str
    kind: AdapterKind
    available: bool
    checked_at: dt.datetime
    detail: str | None = None
    remedy_hint: str | None = None


@dataclass
class IngestOutcome:
    observation: Observation
    created: bool


@dataclass
class IngestSummary:
    ingested: list[Observation] = field(default_factory=list)
    deduped: int = 0


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)
