from __future__ import annotations

from ._store import ObservationStore
from .transitions import ALLOWED_TRANSITIONS, check_transition, is_allowed

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ObservationStore",
    "check_transition",
    "is_allowed",
]
