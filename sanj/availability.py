"""Go/no-go gate run before any analysis or promotion work."""

from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .adapters.llm import LLMAdapter
from .adapters.memory import CoreMemoryAdapter
from .adapters.session import SessionAdapter
from .models import AdapterAvailability, AdapterKind, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_S = 5.0

STATUS_OK = "ok"
STATUS_DEGRADED = "degraded"
STATUS_BLOCKED = "blocked"


@dataclass
class AvailabilityReport:
    entries: list[AdapterAvailability] = field(default_factory=list)
    blocked: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.blocked:
            return STATUS_BLOCKED
        if self.warnings:
            return STATUS_DEGRADED
        return STATUS_OK

    def entries_for(self, kind: AdapterKind) -> list[AdapterAvailability]:
        return [entry for entry in self.entries if entry.kind is kind]


@dataclass(frozen=True)
class _Probe:
    name: str
    kind: AdapterKind
    check: Callable[[], bool]
    remedy_hint: str


class AvailabilityValidator:
    def __init__(self, probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S) -> None:
        self.probe_timeout_s = probe_timeout_s

    def _run_probes(self, probes: list[_Probe]) -> list[AdapterAvailability]:
        if not probes:
            return []
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(probes), thread_name_prefix="sanj-probe"
        )
        try:
            futures = [executor.submit(probe.check) for probe in probes]
            deadline = time.monotonic() + self.probe_timeout_s
            entries = []
            for probe, future in zip(probes, futures, strict=True):
                available = False
                detail: str | None = None
                try:
                    available = bool(future.result(timeout=max(0.0, deadline - time.monotonic())))
                except concurrent.futures.TimeoutError:
                    detail = f"probe timed out after {self.probe_timeout_s}s"
                except Exception as exc:  # noqa: BLE001
                    detail = f"probe raised {type(exc).__name__}: {exc}"
                if not available and detail is None:
                    detail = "not available"
                if detail is not None:
                    logger.info(
                        "adapter unavailable",
                        extra={"adapter": probe.name, "kind": probe.kind.value, "detail": detail},
                    )
                entries.append(
                    AdapterAvailability(
                        adapter_name=probe.name,
                        kind=probe.kind,
                        available=available,
                        checked_at=utcnow(),
                        detail=None if available else detail,
                        remedy_hint=None if available else (probe.remedy_hint or None),
                    )
                )
            return entries
        finally:
            # Hung probes are abandoned, not awaited.
            executor.shutdown(wait=False, cancel_futures=True)

    def validate(
        self,
        session_adapters: Sequence[SessionAdapter],
        llm_adapter: LLMAdapter,
        memory_adapters: Sequence[CoreMemoryAdapter],
    ) -> AvailabilityReport:
        probes = [
            _Probe(a.name, AdapterKind.SESSION, a.is_available, a.remedy_hint)
            for a in session_adapters
        ]
        probes.append(
            _Probe(
                llm_adapter.name,
                AdapterKind.LLM,
                llm_adapter.is_available,
                llm_adapter.remedy_hint,
            )
        )
        probes.extend(
            _Probe(a.name, AdapterKind.MEMORY, a.is_available, a.remedy_hint)
            for a in memory_adapters
        )

        report = AvailabilityReport(entries=self._run_probes(probes))
        llm_entry = report.entries_for(AdapterKind.LLM)[0]
        if not llm_entry.available:
            report.blocked = True
        sessions = report.entries_for(AdapterKind.SESSION)
        if not any(entry.available for entry in sessions):
            report.warnings.append("no session adapter is available; nothing to analyze")
        for entry in report.entries_for(AdapterKind.MEMORY):
            if not entry.available:
                report.warnings.append(f"memory target {entry.adapter_name} is not writable")
        return report
