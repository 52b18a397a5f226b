"""Answer store: per-audit checklist verdicts and non-compliance records."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Mapping

from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import Audit, AuditAnswer, NonComplianceRecord
from hygiene_audit.errors import AuditNotFound, AuditReadOnly, InvalidAnswer
from hygiene_audit.storage.base import Persistence

logger = logging.getLogger(__name__)


class AnswerStore:
    """Working copies of audits plus their answer mutations.

    Mutations only touch the in-memory working copy and mark the audit
    dirty; :meth:`flush` writes it through the persistence collaborator.
    Nothing here triggers report generation. Editable audits stay in memory
    until evicted; completed and locked ones are dropped once saved.
    """

    def __init__(self, persistence: Persistence, locks: AuditLocks) -> None:
        self._persistence = persistence
        self._locks = locks
        self._working: dict[str, Audit] = {}
        self._dirty: set[str] = set()
        self._guard = threading.Lock()

    def get_audit(self, audit_id: str) -> Audit:
        with self._guard:
            audit = self._working.get(audit_id)
        if audit is not None:
            return audit
        loaded = self._persistence.load_audit(audit_id)
        if loaded is None:
            raise AuditNotFound(audit_id)
        with self._guard:
            return self._working.setdefault(audit_id, loaded)

    def track(self, audit: Audit) -> None:
        with self._guard:
            self._working[audit.id] = audit

    def evict(self, audit_id: str) -> None:
        with self._guard:
            self._working.pop(audit_id, None)
            self._dirty.discard(audit_id)

    def is_dirty(self, audit_id: str) -> bool:
        with self._guard:
            return audit_id in self._dirty

    def is_tracked(self, audit_id: str) -> bool:
        with self._guard:
            return audit_id in self._working

    def mark_dirty(self, audit_id: str) -> None:
        with self._guard:
            self._dirty.add(audit_id)

    def flush(self, audit_id: str) -> bool:
        """Persist the working copy if it has unsaved changes."""
        with self._locks.hold(audit_id):
            audit = self.get_audit(audit_id)
            with self._guard:
                if audit_id not in self._dirty:
                    return False
                self._dirty.discard(audit_id)
            try:
                self._persistence.save_audit(audit)
            except Exception:
                self.mark_dirty(audit_id)
                raise
            if not audit.is_editable:
                # Read-only audits are reloaded from storage when next needed.
                with self._guard:
                    if self._working.get(audit_id) is audit and audit_id not in self._dirty:
                        del self._working[audit_id]
            return True

    def get_answer(self, audit_id: str, item_id: str) -> AuditAnswer | None:
        return self.get_audit(audit_id).answers.get(item_id)

    def set_answer(
        self,
        audit_id: str,
        item_id: str,
        answer: AuditAnswer | Mapping[str, Any],
    ) -> AuditAnswer:
        """Replace the answer for one item.

        Plain mappings (``{"compliant": ..., "nonComplianceData": [...]}``)
        are accepted and validated the same way as :class:`AuditAnswer`.
        """
        if not isinstance(answer, AuditAnswer):
            try:
                answer = AuditAnswer.from_dict(answer)
            except InvalidAnswer as exc:
                raise InvalidAnswer(str(exc), item_id=item_id) from exc
        with self._locks.hold(audit_id):
            audit = self._editable(audit_id)
            audit.answers[item_id] = answer
            self.mark_dirty(audit_id)
        return answer

    def clear_answer(self, audit_id: str, item_id: str) -> None:
        with self._locks.hold(audit_id):
            audit = self._editable(audit_id)
            if audit.answers.pop(item_id, None) is not None:
                self.mark_dirty(audit_id)

    def add_non_compliance(
        self,
        audit_id: str,
        item_id: str,
        record: NonComplianceRecord | None = None,
    ) -> AuditAnswer:
        """Append a record (empty by default); the item becomes non-compliant."""
        with self._locks.hold(audit_id):
            audit = self._editable(audit_id)
            current = audit.answers.get(item_id) or AuditAnswer.compliant_answer()
            updated = current.with_record_added(record)
            audit.answers[item_id] = updated
            self.mark_dirty(audit_id)
            return updated

    def update_non_compliance(
        self,
        audit_id: str,
        item_id: str,
        index: int,
        **changes: Any,
    ) -> AuditAnswer:
        """Edit the text fields or photo references of one record."""
        with self._locks.hold(audit_id):
            audit = self._editable(audit_id)
            current = audit.answers.get(item_id)
            if current is None or not 0 <= index < len(current.non_compliance_data):
                raise InvalidAnswer(
                    f"No non-compliance record {index} for item {item_id}", item_id=item_id
                )
            records = list(current.non_compliance_data)
            try:
                records[index] = replace(records[index], **changes)
            except TypeError as exc:
                raise InvalidAnswer(str(exc), item_id=item_id) from exc
            updated = AuditAnswer.non_compliant(records)
            audit.answers[item_id] = updated
            self.mark_dirty(audit_id)
            return updated

    def remove_non_compliance(self, audit_id: str, item_id: str, index: int) -> AuditAnswer:
        """Drop one record; with none left the item reverts to compliant."""
        with self._locks.hold(audit_id):
            audit = self._editable(audit_id)
            current = audit.answers.get(item_id)
            if current is None or not 0 <= index < len(current.non_compliance_data):
                raise InvalidAnswer(
                    f"No non-compliance record {index} for item {item_id}", item_id=item_id
                )
            updated = current.with_record_removed(index)
            audit.answers[item_id] = updated
            self.mark_dirty(audit_id)
            return updated

    def _editable(self, audit_id: str) -> Audit:
        audit = self.get_audit(audit_id)
        if not audit.is_editable:
            raise AuditReadOnly(audit_id, audit.status.value)
        return audit
