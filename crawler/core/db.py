"""SQLite storage collaborator: job records, source scan state and scan runs.

The pipeline only talks to storage through the ``JobStore`` protocol. The
module-level functions are synchronous and operate on a connection, the
``SQLiteJobStore`` wrapper runs them off the event loop with a per-call
timeout and turns every failure into ``StorageError``.
"""

import asyncio
import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, TypeVar

from crawler.core.config import DatabaseConfig
from crawler.core.errors import StorageError
from crawler.core.schemas import JobCandidate, ScanReport, StoredJob

logger = logging.getLogger(__name__)

T = TypeVar("T")

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    identity_key        TEXT    NOT NULL,
    source_id           TEXT    NOT NULL,
    title               TEXT    NOT NULL,
    eligibility_json    TEXT    NOT NULL,
    fees_json           TEXT    NOT NULL,
    process_json        TEXT    NOT NULL,
    links_json          TEXT    NOT NULL DEFAULT '[]',
    content_digest      TEXT    NOT NULL,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);
"""

_JOBS_INDEX = "CREATE INDEX IF NOT EXISTS idx_jobs_identity_key ON jobs (identity_key);"

_SOURCE_STATE_TABLE = """
CREATE TABLE IF NOT EXISTS source_state (
    source_id        TEXT PRIMARY KEY,
    last_scanned_at  TEXT NOT NULL
);
"""

_SCAN_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS scan_runs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at          TEXT    NOT NULL,
    finished_at         TEXT    NOT NULL,
    sources             INTEGER NOT NULL,
    created             INTEGER NOT NULL,
    updated             INTEGER NOT NULL,
    skipped_duplicate   INTEGER NOT NULL,
    failed              INTEGER NOT NULL,
    deadline_exceeded   INTEGER NOT NULL DEFAULT 0,
    report_json         TEXT    NOT NULL
);
"""


class JobStore(Protocol):
    """Storage interface consumed by the pipeline."""

    async def find_by_identity_key(self, identity_key: str) -> list[StoredJob]: ...

    async def create_record(self, candidate: JobCandidate) -> int: ...

    async def update_record(self, job_id: int, candidate: JobCandidate) -> None: ...

    async def get_last_scanned(self) -> dict[str, datetime]: ...

    async def mark_source_scanned(self, source_id: str, scanned_at: datetime) -> None: ...

    async def record_scan_run(self, report: ScanReport) -> int: ...

    async def close(self) -> None: ...


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(_JOBS_TABLE)
        conn.execute(_JOBS_INDEX)
        conn.execute(_SOURCE_STATE_TABLE)
        conn.execute(_SCAN_RUNS_TABLE)
        conn.commit()
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def _candidate_columns(candidate: JobCandidate) -> tuple[str, str, str, str, str, str]:
    return (
        candidate.title,
        candidate.eligibility.model_dump_json(),
        candidate.fees.model_dump_json(),
        candidate.application_process.model_dump_json(),
        json.dumps([link.model_dump(mode="json") for link in candidate.links]),
        candidate.content_digest,
    )


def insert_job(conn: sqlite3.Connection, candidate: JobCandidate, now: datetime) -> int:
    """Insert a new job record. Returns the row ID."""
    title, eligibility, fees, process, links, digest = _candidate_columns(candidate)
    cursor = conn.execute(
        """
        INSERT INTO jobs
            (identity_key, source_id, title, eligibility_json, fees_json,
             process_json, links_json, content_digest, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            candidate.identity_key,
            candidate.source_id,
            title,
            eligibility,
            fees,
            process,
            links,
            digest,
            now.isoformat(),
            now.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def update_job(
    conn: sqlite3.Connection, job_id: int, candidate: JobCandidate, now: datetime,
) -> None:
    """Overwrite the mutable fields of an existing job record."""
    title, eligibility, fees, process, links, digest = _candidate_columns(candidate)
    cursor = conn.execute(
        """
        UPDATE jobs SET
            title = ?, eligibility_json = ?, fees_json = ?, process_json = ?,
            links_json = ?, content_digest = ?, updated_at = ?
        WHERE id = ?
        """,
        (title, eligibility, fees, process, links, digest, now.isoformat(), job_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        msg = f"job {job_id} does not exist"
        raise StorageError(msg)


def find_jobs_by_identity_key(conn: sqlite3.Connection, identity_key: str) -> list[StoredJob]:
    """Return every record sharing an identity key, newest first."""
    rows = conn.execute(
        """
        SELECT id, identity_key, content_digest, created_at FROM jobs
        WHERE identity_key = ?
        ORDER BY created_at DESC, id DESC
        """,
        (identity_key,),
    ).fetchall()
    return [
        StoredJob(
            id=row["id"],
            identity_key=row["identity_key"],
            content_digest=row["content_digest"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
        for row in rows
    ]


def get_source_state(conn: sqlite3.Connection) -> dict[str, datetime]:
    """Return last successful scan time per source id."""
    rows = conn.execute("SELECT source_id, last_scanned_at FROM source_state").fetchall()
    return {row["source_id"]: datetime.fromisoformat(row["last_scanned_at"]) for row in rows}


def set_source_scanned(conn: sqlite3.Connection, source_id: str, scanned_at: datetime) -> None:
    """Record a successful visit. Creates the row if needed."""
    conn.execute(
        """
        INSERT INTO source_state (source_id, last_scanned_at)
        VALUES (?, ?)
        ON CONFLICT(source_id)
        DO UPDATE SET last_scanned_at = excluded.last_scanned_at
        """,
        (source_id, scanned_at.isoformat()),
    )
    conn.commit()


def insert_scan_run(conn: sqlite3.Connection, report: ScanReport) -> int:
    """Persist a completed scan report for audit. Returns the row ID."""
    totals = report.totals
    cursor = conn.execute(
        """
        INSERT INTO scan_runs
            (started_at, finished_at, sources, created, updated, skipped_duplicate,
             failed, deadline_exceeded, report_json)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            report.started_at.isoformat(),
            report.finished_at.isoformat(),
            totals.sources,
            totals.created,
            totals.updated,
            totals.skipped_duplicate,
            totals.failed,
            int(report.deadline_exceeded),
            report.model_dump_json(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


class _AbandonedCall(Exception):
    """Raised in the worker thread for a call whose caller already gave up."""


class SQLiteJobStore:
    """``JobStore`` backed by one SQLite connection.

    Calls run in a worker thread under a lock and are bounded by
    ``write_timeout_seconds``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._timeout = timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def open(cls, config: DatabaseConfig) -> "SQLiteJobStore":
        try:
            conn = init_db(config.path)
        except (sqlite3.Error, OSError) as e:
            msg = f"Could not open database {config.path}: {e}"
            raise StorageError(msg) from e
        return cls(conn, timeout_seconds=config.write_timeout_seconds)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        """Run fn in a worker thread, bounded by the store timeout.

        A call that times out (or is cancelled) is not left running behind
        the caller's back: a call still queued on the lock never starts, a
        running statement is interrupted, and the thread is awaited before
        returning. If the work committed anyway its result is returned, so
        callers never report a failure for a write that happened.
        """
        abandoned = threading.Event()
        started = threading.Event()

        def _locked() -> T:
            with self._lock:
                if abandoned.is_set():
                    raise _AbandonedCall
                started.set()
                try:
                    return fn()
                except sqlite3.Error:
                    with contextlib.suppress(sqlite3.Error):
                        self._conn.rollback()
                    raise

        task = asyncio.ensure_future(asyncio.to_thread(_locked))
        try:
            done, _ = await asyncio.wait({task}, timeout=self._timeout)
        except asyncio.CancelledError:
            await self._abandon(task, abandoned, started)
            raise

        if not done:
            await self._abandon(task, abandoned, started)
            if task.exception() is None:
                logger.warning(
                    "%s finished after its %.2fs timeout - keeping the result",
                    operation, self._timeout,
                )
                return task.result()
            msg = f"{operation} timed out after {self._timeout}s"
            raise StorageError(msg) from task.exception()

        try:
            return task.result()
        except sqlite3.Error as e:
            msg = f"{operation} failed: {e}"
            raise StorageError(msg) from e

    async def _abandon(
        self,
        task: "asyncio.Future[Any]",
        abandoned: threading.Event,
        started: threading.Event,
    ) -> None:
        abandoned.set()
        if started.is_set():
            with contextlib.suppress(sqlite3.Error):
                self._conn.interrupt()
        # the thread cannot be killed; wait until it has let go of the connection
        await asyncio.wait({task})

    async def find_by_identity_key(self, identity_key: str) -> list[StoredJob]:
        return await self._run(
            "find_by_identity_key",
            lambda: find_jobs_by_identity_key(self._conn, identity_key),
        )

    async def create_record(self, candidate: JobCandidate) -> int:
        now = self._clock()
        return await self._run("create_record", lambda: insert_job(self._conn, candidate, now))

    async def update_record(self, job_id: int, candidate: JobCandidate) -> None:
        now = self._clock()
        await self._run(
            "update_record", lambda: update_job(self._conn, job_id, candidate, now),
        )

    async def get_last_scanned(self) -> dict[str, datetime]:
        return await self._run("get_last_scanned", lambda: get_source_state(self._conn))

    async def mark_source_scanned(self, source_id: str, scanned_at: datetime) -> None:
        await self._run(
            "mark_source_scanned",
            lambda: set_source_scanned(self._conn, source_id, scanned_at),
        )

    async def record_scan_run(self, report: ScanReport) -> int:
        return await self._run("record_scan_run", lambda: insert_scan_run(self._conn, report))

    async def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("Closed job store")
