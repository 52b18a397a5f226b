"""SQLite access layer for audits and report versions."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from hygiene_audit.domain.models import (
    Audit,
    AuditAnswer,
    AuditorSnapshot,
    AuditStatus,
    Report,
    ReportStatus,
)
from hygiene_audit.utils.serialization import dumps, loads_or_none

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; multi-statement writes open their own transaction.
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS audits (
                audit_id TEXT PRIMARY KEY,
                premise_id TEXT NOT NULL,
                status TEXT NOT NULL,
                audit_type_id TEXT,
                header_values TEXT NOT NULL,
                answers TEXT NOT NULL,
                created_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS reports (
                report_id TEXT PRIMARY KEY,
                audit_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version_number INTEGER NOT NULL,
                is_latest INTEGER NOT NULL DEFAULT 0,
                report_data TEXT,
                error TEXT,
                usage TEXT,
                auditor_snapshot TEXT,
                created_by TEXT,
                created_by_name TEXT,
                created_at TEXT NOT NULL,
                generated_at TEXT,
                UNIQUE(audit_id, version_number),
                FOREIGN KEY(audit_id) REFERENCES audits(audit_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS report_counters (
                audit_id TEXT PRIMARY KEY,
                last_version INTEGER NOT NULL,
                FOREIGN KEY(audit_id) REFERENCES audits(audit_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_reports_audit_version
                ON reports(audit_id, version_number DESC);
            CREATE INDEX IF NOT EXISTS idx_reports_status ON reports(status);
            CREATE INDEX IF NOT EXISTS idx_audits_premise_id ON audits(premise_id);
            """
        )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> int:
        with self._lock:
            cursor = self._conn.execute(query, params)
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    # -- audits -------------------------------------------------------------

    def load_audit(self, audit_id: str) -> Audit | None:
        row = self.fetch_one("SELECT * FROM audits WHERE audit_id = ?", (audit_id,))
        if row is None:
            return None
        return _row_to_audit(row)

    def save_audit(self, audit: Audit) -> None:
        self.execute(
            """
            INSERT INTO audits (
                audit_id, premise_id, status, audit_type_id, header_values,
                answers, created_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(audit_id) DO UPDATE SET
                premise_id = excluded.premise_id,
                status = excluded.status,
                audit_type_id = excluded.audit_type_id,
                header_values = excluded.header_values,
                answers = excluded.answers,
                completed_at = excluded.completed_at
            """,
            (
                audit.id,
                audit.premise_id,
                audit.status.value,
                audit.audit_type_id,
                dumps(audit.header_values),
                dumps({item_id: answer.to_dict() for item_id, answer in audit.answers.items()}),
                audit.created_at,
                audit.completed_at,
            ),
        )

    def delete_audit(self, audit_id: str) -> None:
        # Report rows and the version counter go with the audit (ON DELETE CASCADE).
        self.execute("DELETE FROM audits WHERE audit_id = ?", (audit_id,))

    # -- reports ------------------------------------------------------------

    def load_reports(self, audit_id: str) -> list[Report]:
        rows = self.fetch_all(
            "SELECT * FROM reports WHERE audit_id = ? ORDER BY version_number DESC",
            (audit_id,),
        )
        return [_row_to_report(row) for row in rows]

    def load_report(self, report_id: str) -> Report | None:
        row = self.fetch_one("SELECT * FROM reports WHERE report_id = ?", (report_id,))
        if row is None:
            return None
        return _row_to_report(row)

    def load_reports_by_status(self, statuses: Sequence[ReportStatus]) -> list[Report]:
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        rows = self.fetch_all(
            f"SELECT * FROM reports WHERE status IN ({placeholders}) ORDER BY created_at",
            [status.value for status in statuses],
        )
        return [_row_to_report(row) for row in rows]

    def save_report(self, report: Report) -> None:
        self.execute(_UPSERT_REPORT, _report_params(report))

    def finish_report(self, report: Report) -> bool:
        """Write a finished report and make it the audit's only latest version.

        The row update and the flag move share one transaction, so no reader
        sees a ``Done`` report while no version is flagged latest. Returns
        False (and writes nothing) when the report row no longer exists.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM reports WHERE report_id = ? AND audit_id = ?",
                (report.id, report.audit_id),
            ).fetchone()
            if row is None:
                return False
            conn.execute(_UPSERT_REPORT, _report_params(report))
            conn.execute(
                "UPDATE reports SET is_latest = 0 WHERE audit_id = ? AND is_latest = 1",
                (report.audit_id,),
            )
            conn.execute("UPDATE reports SET is_latest = 1 WHERE report_id = ?", (report.id,))
            return True

    def delete_report(self, report_id: str) -> bool:
        return self.execute("DELETE FROM reports WHERE report_id = ?", (report_id,)) == 1

    def next_version_number(self, audit_id: str) -> int:
        """Atomically allocate the next version number for an audit.

        The counter is seeded from existing rows the first time and never
        moves backwards, so numbers freed by deletion are not reused.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO report_counters (audit_id, last_version)
                VALUES (
                    ?,
                    COALESCE(
                        (SELECT MAX(version_number) FROM reports WHERE audit_id = ?), 0
                    ) + 1
                )
                ON CONFLICT(audit_id) DO UPDATE SET last_version = last_version + 1
                """,
                (audit_id, audit_id),
            )
            row = conn.execute(
                "SELECT last_version FROM report_counters WHERE audit_id = ?",
                (audit_id,),
            ).fetchone()
            return int(row["last_version"])

    def set_latest(self, audit_id: str, report_id: str | None) -> bool:
        """Clear the latest flag on every report of an audit and set it on one.

        Both updates run in one transaction. Returns False (and changes
        nothing) when ``report_id`` no longer belongs to the audit.
        """
        with self._transaction() as conn:
            if report_id is not None:
                row = conn.execute(
                    "SELECT 1 FROM reports WHERE report_id = ? AND audit_id = ?",
                    (report_id, audit_id),
                ).fetchone()
                if row is None:
                    return False
            conn.execute(
                "UPDATE reports SET is_latest = 0 WHERE audit_id = ? AND is_latest = 1",
                (audit_id,),
            )
            if report_id is not None:
                conn.execute(
                    "UPDATE reports SET is_latest = 1 WHERE report_id = ?",
                    (report_id,),
                )
            return True


def _row_to_audit(row: sqlite3.Row) -> Audit:
    raw_answers = loads_or_none(row["answers"]) or {}
    return Audit(
        id=row["audit_id"],
        premise_id=row["premise_id"],
        status=AuditStatus(row["status"]),
        created_at=row["created_at"],
        completed_at=row["completed_at"],
        answers={item_id: AuditAnswer.from_dict(data) for item_id, data in raw_answers.items()},
        header_values=loads_or_none(row["header_values"]) or {},
        audit_type_id=row["audit_type_id"],
    )


def _row_to_report(row: sqlite3.Row) -> Report:
    snapshot = loads_or_none(row["auditor_snapshot"])
    return Report(
        id=row["report_id"],
        audit_id=row["audit_id"],
        status=ReportStatus(row["status"]),
        version_number=row["version_number"],
        created_at=row["created_at"],
        is_latest=bool(row["is_latest"]),
        report_data=loads_or_none(row["report_data"]),
        error=row["error"],
        usage=loads_or_none(row["usage"]),
        auditor_snapshot=AuditorSnapshot.from_dict(snapshot) if snapshot else None,
        created_by=row["created_by"],
        created_by_name=row["created_by_name"],
        generated_at=row["generated_at"],
    )


# The latest flag, version number and creation fields are written once on
# insert; later saves only move the status and generation results.
_UPSERT_REPORT = """
    INSERT INTO reports (
        report_id, audit_id, status, version_number, is_latest,
        report_data, error, usage, auditor_snapshot, created_by,
        created_by_name, created_at, generated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(report_id) DO UPDATE SET
        status = excluded.status,
        report_data = excluded.report_data,
        error = excluded.error,
        usage = excluded.usage,
        auditor_snapshot = excluded.auditor_snapshot,
        generated_at = excluded.generated_at
"""


def _report_params(report: Report) -> tuple[_SqlValue, ...]:
    return (
        report.id,
        report.audit_id,
        report.status.value,
        report.version_number,
        1 if report.is_latest else 0,
        dumps(dict(report.report_data)) if report.report_data is not None else None,
        report.error,
        dumps(dict(report.usage)) if report.usage is not None else None,
        dumps(report.auditor_snapshot.to_dict()) if report.auditor_snapshot else None,
        report.created_by,
        report.created_by_name,
        report.created_at,
        report.generated_at,
    )
