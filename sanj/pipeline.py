"""Entry points invoked by the CLI or a scheduler.

Both return structured results and never format output. Per-session and
per-batch problems are collected as ``Failure`` values; store errors and
invalid transitions propagate.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from .adapters.registry import (
    AdapterSet,
    build_adapters,
    build_memory_adapters,
    validate_config,
)
from .availability import AvailabilityReport, AvailabilityValidator
from .config import SanjConfig
from .errors import AdapterUnavailable, AnalysisError, Failure, SessionUnreadable
from .models import AdapterKind, SessionRecord, utcnow
from .promotion import PromotionEngine, PromotionResult
from .store import ObservationStore

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    sessions_read: int = 0
    sessions_failed: int = 0
    sessions_skipped: int = 0
    batches_failed: int = 0
    ingested: int = 0
    deduped: int = 0
    blocked: bool = False
    since: dt.datetime | None = None
    failures: list[Failure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    report: AvailabilityReport | None = None


def _batches(records: Sequence[SessionRecord], size: int) -> Iterator[list[SessionRecord]]:
    size = max(1, size)
    for start in range(0, len(records), size):
        yield list(records[start : start + size])


def _analysis_since(
    config: SanjConfig,
    store: ObservationStore,
    *,
    since: dt.datetime | None,
    full: bool,
    now: dt.datetime,
) -> dt.datetime | None:
    if full:
        return None
    if since is not None:
        return since
    return store.last_analysis_run() or now - dt.timedelta(days=config.analysis_window_days)


def _read_sessions(
    adapters: AdapterSet,
    report: AvailabilityReport,
    since: dt.datetime | None,
    result: AnalysisResult,
) -> list[SessionRecord]:
    usable = {
        entry.adapter_name
        for entry in report.entries_for(AdapterKind.SESSION)
        if entry.available
    }
    records: list[SessionRecord] = []
    for adapter in adapters.session_adapters:
        if adapter.name not in usable:
            continue
        for session_id in adapter.list_sessions(since):
            try:
                record = adapter.read_session(session_id)
            except SessionUnreadable as exc:
                result.sessions_failed += 1
                result.failures.append(exc.to_failure(f"{adapter.name}:{session_id}"))
                logger.warning(
                    "session unreadable",
                    extra={"adapter": adapter.name, "session_id": session_id},
                )
                continue
            if not record.raw_content.strip():
                result.sessions_skipped += 1
                continue
            result.sessions_read += 1
            records.append(record)
    return records


def run_analysis(
    config: SanjConfig,
    store: ObservationStore,
    *,
    adapters: AdapterSet | None = None,
    since: dt.datetime | None = None,
    full: bool = False,
    now: dt.datetime | None = None,
) -> AnalysisResult:
    """Read new sessions, analyze them and ingest the drafts as pending."""

    now = now or utcnow()
    adapters = adapters or build_adapters(config)
    report = AvailabilityValidator(config.probe_timeout_s).validate(
        adapters.session_adapters, adapters.llm_adapter, adapters.memory_adapters
    )
    result = AnalysisResult(report=report, warnings=list(report.warnings))

    if report.blocked:
        llm = adapters.llm_adapter
        error = AdapterUnavailable(
            f"llm adapter {llm.name} is not available", adapter=llm.name, hint=llm.remedy_hint
        )
        result.blocked = True
        result.failures.append(error.to_failure(llm.name))
        store.record_analysis_run(now, error=error.message)
        logger.warning("analysis blocked", extra={"adapter": llm.name})
        return result

    result.since = _analysis_since(config, store, since=since, full=full, now=now)
    records = _read_sessions(adapters, report, result.since, result)

    for batch in _batches(records, config.analysis_batch_size):
        try:
            drafts = adapters.llm_adapter.analyze(batch)
        except AnalysisError as exc:
            result.batches_failed += 1
            subject = ",".join(f"{r.source_adapter_name}:{r.session_id}" for r in batch)
            result.failures.append(exc.to_failure(subject))
            logger.warning(
                "analysis batch failed",
                extra={"sessions": [r.session_id for r in batch], "code": exc.code},
            )
            continue
        summary = store.ingest_many(drafts, now=now)
        result.ingested += len(summary.ingested)
        result.deduped += summary.deduped

    # A failed batch keeps the cursor where it was so those sessions are retried.
    error = None
    if result.batches_failed:
        error = f"{result.batches_failed} analysis batch(es) failed"
    store.record_analysis_run(now, error=error)
    logger.info(
        "analysis run finished",
        extra={
            "sessions_read": result.sessions_read,
            "sessions_failed": result.sessions_failed,
            "ingested": result.ingested,
            "deduped": result.deduped,
            "batches_failed": result.batches_failed,
        },
    )
    return result


def run_promotion(
    config: SanjConfig,
    store: ObservationStore,
    *,
    adapters: AdapterSet | None = None,
) -> PromotionResult:
    if adapters is not None:
        memory_adapters = adapters.memory_adapters
    else:
        validate_config(config)
        memory_adapters = build_memory_adapters(config)
    engine = PromotionEngine(
        store, memory_adapters, default_targets=config.enabled_memory_targets()
    )
    return engine.promote_approved()
