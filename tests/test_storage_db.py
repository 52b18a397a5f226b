import threading

import pytest

from hygiene_audit.domain.models import (
    Audit,
    AuditAnswer,
    AuditorSnapshot,
    AuditStatus,
    NonComplianceRecord,
    Report,
    ReportStatus,
)
from hygiene_audit.storage.db import SqliteStore


def _audit(audit_id="audit-1"):
    return Audit(
        id=audit_id,
        premise_id="premise-1",
        status=AuditStatus.IN_PROGRESS,
        created_at="2026-01-01T00:00:00+00:00",
        answers={
            "A": AuditAnswer.compliant_answer(),
            "B": AuditAnswer.non_compliant(
                [NonComplianceRecord(location="Bar", finding="Mould", photos=("p/1.jpg",))]
            ),
        },
        header_values={"operator_name": "Bistro"},
    )


def _report(report_id, version, status=ReportStatus.DONE, audit_id="audit-1"):
    return Report(
        id=report_id,
        audit_id=audit_id,
        status=status,
        version_number=version,
        created_at="2026-01-01T00:00:00+00:00",
    )


def test_audit_round_trip(store):
    store.save_audit(_audit())

    loaded = store.load_audit("audit-1")
    assert loaded == _audit()


def test_load_missing_audit_returns_none(store):
    assert store.load_audit("missing") is None


def test_save_audit_updates_existing_row(store):
    audit = _audit()
    store.save_audit(audit)
    audit.status = AuditStatus.COMPLETED
    audit.completed_at = "2026-01-03T00:00:00+00:00"
    store.save_audit(audit)

    row = store.fetch_one(
        "SELECT status, completed_at FROM audits WHERE audit_id = ?", ("audit-1",)
    )
    assert row["status"] == "Completed"
    assert row["completed_at"] == "2026-01-03T00:00:00+00:00"


def test_report_round_trip(store):
    store.save_audit(_audit())
    report = _report("r1", 1).evolve(
        report_data={"summary": {"title": "t"}},
        usage={"totalTokens": 1200},
        auditor_snapshot=AuditorSnapshot(name="Jana"),
        created_by="user-1",
        created_by_name="Jana",
        generated_at="2026-01-01T00:05:00+00:00",
    )
    store.save_report(report)

    assert store.load_report("r1") == report


def test_save_report_never_touches_latest_flag(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    assert store.set_latest("audit-1", "r1")

    store.save_report(_report("r1", 1).evolve(error="edited"))
    assert store.load_report("r1").is_latest is True


def test_load_reports_ordered_by_version_desc(store):
    store.save_audit(_audit())
    for version in (2, 1, 3):
        store.save_report(_report(f"r{version}", version))

    assert [r.version_number for r in store.load_reports("audit-1")] == [3, 2, 1]


def test_load_reports_by_status(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1, ReportStatus.DONE))
    store.save_report(_report("r2", 2, ReportStatus.GENERATING))

    active = store.load_reports_by_status([ReportStatus.PENDING, ReportStatus.GENERATING])
    assert [r.id for r in active] == ["r2"]
    assert store.load_reports_by_status([]) == []


def test_version_numbers_are_not_reused_after_delete(store):
    store.save_audit(_audit())
    first = store.next_version_number("audit-1")
    store.save_report(_report("r1", first))
    second = store.next_version_number("audit-1")
    store.save_report(_report("r2", second))

    assert store.delete_report("r2") is True
    assert store.next_version_number("audit-1") == 3


def test_version_counter_seeded_from_existing_rows(store):
    store.save_audit(_audit())
    store.save_report(_report("r7", 7))

    assert store.next_version_number("audit-1") == 8


def test_version_numbers_unique_under_concurrency(store):
    store.save_audit(_audit())
    results = []
    lock = threading.Lock()

    def allocate():
        number = store.next_version_number("audit-1")
        with lock:
            results.append(number)

    threads = [threading.Thread(target=allocate) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == list(range(1, 17))


def test_set_latest_moves_flag(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    store.save_report(_report("r2", 2))

    assert store.set_latest("audit-1", "r1")
    assert store.set_latest("audit-1", "r2")

    flags = {r.id: r.is_latest for r in store.load_reports("audit-1")}
    assert flags == {"r1": False, "r2": True}


def test_set_latest_for_missing_report_changes_nothing(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    store.set_latest("audit-1", "r1")

    assert store.set_latest("audit-1", "gone") is False
    assert store.load_report("r1").is_latest is True


def test_set_latest_none_clears_all(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    store.set_latest("audit-1", "r1")

    assert store.set_latest("audit-1", None) is True
    assert not any(r.is_latest for r in store.load_reports("audit-1"))


def test_set_latest_rejects_report_of_other_audit(store):
    store.save_audit(_audit("audit-1"))
    store.save_audit(_audit("audit-2"))
    store.save_report(_report("other", 1, audit_id="audit-2"))

    assert store.set_latest("audit-1", "other") is False


def test_finish_report_writes_row_and_moves_flag(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    store.set_latest("audit-1", "r1")
    store.save_report(_report("r2", 2, status=ReportStatus.GENERATING))

    finished = _report("r2", 2).evolve(
        report_data={"summary": {"title": "Audit"}},
        usage={"output_tokens": 5},
        generated_at="2026-01-02T00:00:00+00:00",
    )
    assert store.finish_report(finished) is True

    reports = {r.id: r for r in store.load_reports("audit-1")}
    assert reports["r2"].status is ReportStatus.DONE
    assert reports["r2"].report_data == {"summary": {"title": "Audit"}}
    assert reports["r2"].generated_at == "2026-01-02T00:00:00+00:00"
    assert reports["r2"].is_latest is True
    assert reports["r1"].is_latest is False


def test_finish_report_for_deleted_row_writes_nothing(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    store.set_latest("audit-1", "r1")

    assert store.finish_report(_report("gone", 2)) is False

    assert store.load_report("gone") is None
    assert store.load_report("r1").is_latest is True


def test_finish_report_failure_leaves_rows_unchanged(store, monkeypatch):
    store.save_audit(_audit())
    store.save_report(_report("r1", 1))
    store.set_latest("audit-1", "r1")
    store.save_report(_report("r2", 2, status=ReportStatus.GENERATING))

    def broken_params(report):
        raise RuntimeError("serialization failed")

    monkeypatch.setattr("hygiene_audit.storage.db._report_params", broken_params)
    with pytest.raises(RuntimeError):
        store.finish_report(_report("r2", 2))

    assert store.load_report("r2").status is ReportStatus.GENERATING
    assert store.load_report("r1").is_latest is True


def test_delete_audit_cascades_to_reports(store):
    store.save_audit(_audit())
    store.save_report(_report("r1", store.next_version_number("audit-1")))

    store.delete_audit("audit-1")

    assert store.load_audit("audit-1") is None
    assert store.load_report("r1") is None
    row = store.fetch_one("SELECT COUNT(*) AS n FROM report_counters", ())
    assert row["n"] == 0


def test_delete_missing_report_returns_false(store):
    assert store.delete_report("nope") is False


def test_wal_mode(tmp_path):
    path = str(tmp_path / "wal.db")
    wal_store = SqliteStore(path, wal=True)
    row = wal_store.fetch_one("PRAGMA journal_mode", [])
    assert row[0].upper() == "WAL"
    wal_store.close()
    wal_store.close()


def test_report_requires_existing_audit(store):
    import sqlite3

    with pytest.raises(sqlite3.IntegrityError):
        store.save_report(_report("orphan", 1, audit_id="missing"))
