from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from ..dedup import content_hash, normalize_category, normalize_content, observation_id
from ..errors import ObservationNotFound, StoreWriteFailure
from ..models import (
    IngestOutcome,
    IngestSummary,
    Observation,
    ObservationDraft,
    ObservationState,
    PromotionRecord,
    utcnow,
)
from . import db
from .transitions import check_transition
from .utils import from_iso, to_iso

logger = logging.getLogger(__name__)

_OBSERVATION_COLUMNS = (
    "id, source_session_id, source_adapter_name, content, category, content_hash, "
    "created_at, state, target_memories, promoted_at"
)


def _row_to_observation(row: sqlite3.Row) -> Observation:
    try:
        targets = tuple(json.loads(row["target_memories"] or "[]"))
    except json.JSONDecodeError:
        targets = ()
    return Observation(
        id=row["id"],
        source_session_id=row["source_session_id"],
        source_adapter_name=row["source_adapter_name"],
        content=row["content"],
        category=row["category"],
        content_hash=row["content_hash"],
        created_at=from_iso(row["created_at"]),
        state=ObservationState(row["state"]),
        target_memories=targets,
        promoted_at=from_iso(row["promoted_at"]) if row["promoted_at"] else None,
    )


def _row_to_record(row: sqlite3.Row) -> PromotionRecord:
    return PromotionRecord(
        observation_id=row["observation_id"],
        target_adapter_name=row["target_adapter_name"],
        applied_at=from_iso(row["applied_at"]),
        content_written=row["content_written"],
    )


class ObservationStore:
    """SQLite-backed observations with a single-writer discipline.

    Writers serialize on a per-store lock and take SQLite's write lock up
    front (``BEGIN IMMEDIATE``), so two processes sharing the database never
    interleave mutations. Reads use per-thread connections and never block on
    the store lock.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path).expanduser()
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        try:
            db.initialize_schema(self._conn())
        except sqlite3.Error as exc:
            raise StoreWriteFailure(
                f"cannot initialize store at {self.db_path}: {exc}", path=str(self.db_path)
            ) from exc

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = db.connect(self.db_path)
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error:
                logger.warning("closing store connection failed", exc_info=True)
        self._local = threading.local()

    def __enter__(self) -> ObservationStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _write(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._write_lock:
            conn = self._conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreWriteFailure(
                    f"{operation}: cannot start write transaction: {exc}", operation=operation
                ) from exc
            try:
                yield conn
            except sqlite3.Error as exc:
                conn.execute("ROLLBACK")
                logger.error(
                    "store write failed", extra={"operation": operation}, exc_info=exc
                )
                raise StoreWriteFailure(f"{operation}: {exc}", operation=operation) from exc
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreWriteFailure(
                    f"{operation}: commit failed: {exc}", operation=operation
                ) from exc

    def _read(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        try:
            return self._conn().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreWriteFailure(f"read failed: {exc}") from exc

    # Ingestion

    def _ingest_in(
        self, conn: sqlite3.Connection, draft: ObservationDraft, now: dt.datetime
    ) -> IngestOutcome:
        content = normalize_content(draft.content)
        digest = content_hash(content)
        oid = observation_id(digest, draft.source_session_id, draft.session_captured_at)
        check_transition(None, ObservationState.PENDING, observation_id=oid)
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO observations(
                id, source_session_id, source_adapter_name, content, category,
                content_hash, created_at, state, state_changed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                oid,
                draft.source_session_id,
                draft.source_adapter_name,
                content,
                normalize_category(draft.category),
                digest,
                to_iso(now),
                ObservationState.PENDING.value,
                to_iso(now),
            ),
        )
        row = conn.execute(
            f"SELECT {_OBSERVATION_COLUMNS} FROM observations WHERE id = ?", (oid,)
        ).fetchone()
        return IngestOutcome(observation=_row_to_observation(row), created=cur.rowcount == 1)

    def ingest(self, draft: ObservationDraft, *, now: dt.datetime | None = None) -> IngestOutcome:
        with self._write("ingest") as conn:
            return self._ingest_in(conn, draft, now or utcnow())

    def ingest_many(
        self, drafts: Iterable[ObservationDraft], *, now: dt.datetime | None = None
    ) -> IngestSummary:
        summary = IngestSummary()
        moment = now or utcnow()
        with self._write("ingest") as conn:
            for draft in drafts:
                outcome = self._ingest_in(conn, draft, moment)
                if outcome.created:
                    summary.ingested.append(outcome.observation)
                else:
                    summary.deduped += 1
        return summary

    # Queries

    def get(self, observation_id: str) -> Observation | None:
        rows = self._read(
            f"SELECT {_OBSERVATION_COLUMNS} FROM observations WHERE id = ?", (observation_id,)
        )
        return _row_to_observation(rows[0]) if rows else None

    def require(self, observation_id: str) -> Observation:
        observation = self.get(observation_id)
        if observation is None:
            raise ObservationNotFound(
                f"observation {observation_id} not found", observation_id=observation_id
            )
        return observation

    def list_by_state(
        self, state: ObservationState, *, limit: int | None = None
    ) -> list[Observation]:
        sql = (
            f"SELECT {_OBSERVATION_COLUMNS} FROM observations WHERE state = ? "
            "ORDER BY created_at ASC, id ASC"
        )
        params: list[object] = [state.value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_observation(row) for row in self._read(sql, params)]

    def counts(self) -> dict[str, int]:
        counts = {state.value: 0 for state in ObservationState}
        for row in self._read("SELECT state, COUNT(*) AS n FROM observations GROUP BY state"):
            counts[row["state"]] = int(row["n"])
        return counts

    # State machine

    def _transition_in(
        self,
        conn: sqlite3.Connection,
        observation_id: str,
        target: ObservationState,
        *,
        now: dt.datetime,
        targets: Sequence[str] | None = None,
    ) -> None:
        row = conn.execute(
            "SELECT state FROM observations WHERE id = ?", (observation_id,)
        ).fetchone()
        if row is None:
            raise ObservationNotFound(
                f"observation {observation_id} not found", observation_id=observation_id
            )
        current = ObservationState(row["state"])
        check_transition(current, target, observation_id=observation_id)
        promoted_at = to_iso(now) if target is ObservationState.PROMOTED else None
        assignments = "state = ?, state_changed_at = ?, promoted_at = ?"
        params: list[object] = [target.value, to_iso(now), promoted_at]
        if targets is not None:
            assignments += ", target_memories = ?"
            params.append(json.dumps(list(dict.fromkeys(targets))))
        conn.execute(
            f"UPDATE observations SET {assignments} WHERE id = ? AND state = ?",
            (*params, observation_id, current.value),
        )
        logger.info(
            "observation state changed",
            extra={
                "observation_id": observation_id,
                "from_state": current.value,
                "to_state": target.value,
            },
        )

    def transition(
        self,
        observation_id: str,
        target: ObservationState,
        *,
        targets: Sequence[str] | None = None,
        now: dt.datetime | None = None,
    ) -> Observation:
        with self._write(f"transition:{target.value}") as conn:
            self._transition_in(conn, observation_id, target, now=now or utcnow(), targets=targets)
        return self.require(observation_id)

    def approve(
        self, observation_id: str, *, targets: Sequence[str] | None = None
    ) -> Observation:
        return self.transition(observation_id, ObservationState.APPROVED, targets=targets)

    def reject(self, observation_id: str) -> Observation:
        return self.transition(observation_id, ObservationState.REJECTED)

    def archive(self, observation_id: str) -> Observation:
        return self.transition(observation_id, ObservationState.ARCHIVED)

    def complete_promotion(
        self,
        observation_id: str,
        targets: Sequence[str],
        *,
        now: dt.datetime | None = None,
    ) -> Observation:
        """approved -> promoted; a no-op when another run already finished it."""

        with self._write("complete_promotion") as conn:
            row = conn.execute(
                "SELECT state FROM observations WHERE id = ?", (observation_id,)
            ).fetchone()
            if row is None or row["state"] != ObservationState.PROMOTED.value:
                self._transition_in(
                    conn,
                    observation_id,
                    ObservationState.PROMOTED,
                    now=now or utcnow(),
                    targets=targets,
                )
        return self.require(observation_id)

    def archive_finished(self, before: dt.datetime) -> int:
        """Archive rejected/promoted observations last changed before ``before``."""

        now = utcnow()
        with self._write("archive_finished") as conn:
            rows = conn.execute(
                "SELECT id FROM observations WHERE state IN (?, ?) AND state_changed_at < ?",
                (
                    ObservationState.REJECTED.value,
                    ObservationState.PROMOTED.value,
                    to_iso(before),
                ),
            ).fetchall()
            for row in rows:
                self._transition_in(conn, row["id"], ObservationState.ARCHIVED, now=now)
        return len(rows)

    # Promotion records

    def record_promotion(
        self,
        observation_id: str,
        target_adapter_name: str,
        content_written: str,
        *,
        now: dt.datetime | None = None,
    ) -> PromotionRecord:
        applied_at = now or utcnow()
        with self._write("record_promotion") as conn:
            conn.execute(
                """
                INSERT INTO promotion_records(
                    observation_id, target_adapter_name, applied_at, content_written
                ) VALUES (?, ?, ?, ?)
                """,
                (observation_id, target_adapter_name, to_iso(applied_at), content_written),
            )
        return PromotionRecord(
            observation_id=observation_id,
            target_adapter_name=target_adapter_name,
            applied_at=applied_at,
            content_written=content_written,
        )

    def get_promotion_record(
        self, observation_id: str, target_adapter_name: str
    ) -> PromotionRecord | None:
        rows = self._read(
            """
            SELECT observation_id, target_adapter_name, applied_at, content_written
            FROM promotion_records
            WHERE observation_id = ? AND target_adapter_name = ?
            ORDER BY id DESC LIMIT 1
            """,
            (observation_id, target_adapter_name),
        )
        return _row_to_record(rows[0]) if rows else None

    def list_promotion_records(self, observation_id: str) -> list[PromotionRecord]:
        rows = self._read(
            """
            SELECT observation_id, target_adapter_name, applied_at, content_written
            FROM promotion_records WHERE observation_id = ? ORDER BY id ASC
            """,
            (observation_id,),
        )
        return [_row_to_record(row) for row in rows]

    # Run bookkeeping

    def _set_state_values(self, values: dict[str, str | None]) -> None:
        with self._write("pipeline_state") as conn:
            conn.executemany(
                """
                INSERT INTO pipeline_state(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                list(values.items()),
            )

    def _state_value(self, key: str) -> str | None:
        rows = self._read("SELECT value FROM pipeline_state WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def last_analysis_run(self) -> dt.datetime | None:
        value = self._state_value("last_analysis_run")
        return from_iso(value) if value else None

    def last_analysis_error(self) -> str | None:
        return self._state_value("last_analysis_error")

    def record_analysis_run(self, at: dt.datetime, *, error: str | None = None) -> None:
        values: dict[str, str | None] = {"last_analysis_error": error}
        if error is None:
            values["last_analysis_run"] = to_iso(at)
        self._set_state_values(values)
