from __future__ import annotations

import pytest

from conftest import answer_all, non_compliance, started_audit
from hygiene_audit.domain.models import (
    COMPLETED_STATUSES,
    AuditAnswer,
    AuditStatus,
    NonComplianceRecord,
)
from hygiene_audit.errors import AuditNotFound, AuditReadOnly, InvalidAnswer


def _stored_with_status(harness, audit_id, status):
    audit = harness.store.load_audit(audit_id)
    audit.status = status
    audit.completed_at = "2026-01-01T00:00:00+00:00" if status in COMPLETED_STATUSES else None
    harness.store.save_audit(audit)
    harness.answers.evict(audit_id)


def test_set_answer_replaces_previous(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "A", non_compliance(1))
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())

    assert harness.answers.get_answer(audit_id, "A") == AuditAnswer.compliant_answer()


def test_set_answer_accepts_mapping(harness):
    audit_id = started_audit(harness.workspace)
    answer = harness.answers.set_answer(
        audit_id,
        "B",
        {"compliant": False, "nonComplianceData": [{"location": "Bar", "finding": "Dust"}]},
    )
    assert answer.compliant is False
    assert answer.non_compliance_data[0].location == "Bar"


@pytest.mark.parametrize(
    "payload",
    [
        {"compliant": True, "nonComplianceData": [{"location": "Bar"}]},
        {"compliant": False, "nonComplianceData": []},
    ],
)
def test_set_answer_rejects_inconsistent_mapping(harness, payload):
    audit_id = started_audit(harness.workspace)
    with pytest.raises(InvalidAnswer) as excinfo:
        harness.answers.set_answer(audit_id, "A", payload)
    assert excinfo.value.item_id == "A"
    assert harness.answers.get_answer(audit_id, "A") is None


def test_add_non_compliance_forces_non_compliant(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())

    first = harness.answers.add_non_compliance(audit_id, "A")
    second = harness.answers.add_non_compliance(
        audit_id, "A", NonComplianceRecord(location="Cellar")
    )

    assert first.compliant is False
    assert len(second.non_compliance_data) == 2
    assert second.non_compliance_data[0] == NonComplianceRecord()
    assert second.non_compliance_data[1].location == "Cellar"


def test_add_non_compliance_on_unanswered_item(harness):
    audit_id = started_audit(harness.workspace)
    answer = harness.answers.add_non_compliance(audit_id, "C")
    assert answer.compliant is False
    assert len(answer.non_compliance_data) == 1


def test_no_upper_bound_on_records(harness):
    audit_id = started_audit(harness.workspace)
    for _ in range(50):
        answer = harness.answers.add_non_compliance(audit_id, "A")
    assert len(answer.non_compliance_data) == 50


def test_remove_non_compliance_reverts_to_compliant(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "B", non_compliance(2))

    after_one = harness.answers.remove_non_compliance(audit_id, "B", 0)
    assert after_one.compliant is False
    assert after_one.non_compliance_data[0].location == "Storeroom 2"

    after_two = harness.answers.remove_non_compliance(audit_id, "B", 0)
    assert after_two == AuditAnswer.compliant_answer()


def test_remove_non_compliance_invalid_index(harness):
    audit_id = started_audit(harness.workspace)
    with pytest.raises(InvalidAnswer):
        harness.answers.remove_non_compliance(audit_id, "A", 0)
    harness.answers.set_answer(audit_id, "A", non_compliance(1))
    with pytest.raises(InvalidAnswer):
        harness.answers.remove_non_compliance(audit_id, "A", 5)


def test_update_non_compliance_fields(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.add_non_compliance(audit_id, "A")

    updated = harness.answers.update_non_compliance(
        audit_id, "A", 0, finding="Broken seal", photos=["p/seal.jpg"]
    )

    record = updated.non_compliance_data[0]
    assert record.finding == "Broken seal"
    assert record.photos == ("p/seal.jpg",)
    assert updated.compliant is False


def test_update_non_compliance_unknown_field(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.add_non_compliance(audit_id, "A")
    with pytest.raises(InvalidAnswer):
        harness.answers.update_non_compliance(audit_id, "A", 0, severity="high")


def test_mutations_mark_dirty_until_flushed(harness):
    audit_id = started_audit(harness.workspace)
    assert not harness.answers.is_dirty(audit_id)

    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())
    assert harness.answers.is_dirty(audit_id)
    assert harness.store.load_audit(audit_id).answers == {}

    assert harness.answers.flush(audit_id) is True
    assert not harness.answers.is_dirty(audit_id)
    assert harness.store.load_audit(audit_id).answers == {"A": AuditAnswer.compliant_answer()}
    assert harness.answers.flush(audit_id) is False


def test_mutation_does_not_start_generation(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())
    assert harness.service.submissions == []
    assert harness.store.load_reports(audit_id) == []


def test_clear_answer(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())
    harness.answers.clear_answer(audit_id, "A")
    assert harness.answers.get_answer(audit_id, "A") is None


@pytest.mark.parametrize("status", [AuditStatus.COMPLETED, AuditStatus.LOCKED])
def test_answers_read_only_when_completed(harness, status):
    audit_id = started_audit(harness.workspace)
    _stored_with_status(harness, audit_id, status)

    with pytest.raises(AuditReadOnly):
        harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())
    with pytest.raises(AuditReadOnly):
        harness.answers.add_non_compliance(audit_id, "A")


@pytest.mark.parametrize("status", [AuditStatus.DRAFT, AuditStatus.REVISED])
def test_answers_editable_in_draft_and_revised(harness, status):
    audit_id = started_audit(harness.workspace)
    _stored_with_status(harness, audit_id, status)
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())


def test_unknown_audit(harness):
    with pytest.raises(AuditNotFound):
        harness.answers.set_answer("missing", "A", AuditAnswer.compliant_answer())


def test_working_copy_loaded_from_storage(harness, store):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())
    harness.answers.flush(audit_id)
    harness.answers.evict(audit_id)

    assert harness.answers.get_audit(audit_id).answers == {"A": AuditAnswer.compliant_answer()}


def test_completed_audit_dropped_from_memory_after_save(harness):
    audit_id = started_audit(harness.workspace)
    answer_all(harness.workspace, audit_id)
    harness.workspace.on_complete(audit_id)

    assert harness.answers.is_tracked(audit_id) is False
    assert harness.answers.get_audit(audit_id).status is AuditStatus.COMPLETED


def test_editable_audit_stays_in_memory_after_save(harness):
    audit_id = started_audit(harness.workspace)
    harness.answers.set_answer(audit_id, "A", AuditAnswer.compliant_answer())
    harness.answers.flush(audit_id)

    assert harness.answers.is_tracked(audit_id) is True
