"""Operations consumed by the presentation layer."""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping

from hygiene_audit.core.answers import AnswerStore
from hygiene_audit.core.lifecycle import AuditLifecycle
from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import (
    Audit,
    AuditAnswer,
    NonComplianceRecord,
    Report,
)
from hygiene_audit.errors import VersionNotFound
from hygiene_audit.generation.controller import GenerationJobController
from hygiene_audit.reports.registry import ReportVersionRegistry
from hygiene_audit.storage.base import Persistence

logger = logging.getLogger(__name__)


class AuditWorkspace:
    """Entry points for audit screens.

    Validation failures (``InvalidAnswer``, ``IncompleteAudit``,
    ``GenerationInProgress`` and friends) are raised straight to the caller.
    Generation results are never raised; read them from the report. Audits
    handed out here are copies taken under the audit lock.
    """

    def __init__(
        self,
        persistence: Persistence,
        answers: AnswerStore,
        lifecycle: AuditLifecycle,
        controller: GenerationJobController,
        registry: ReportVersionRegistry,
        locks: AuditLocks,
    ) -> None:
        self._persistence = persistence
        self._answers = answers
        self._lifecycle = lifecycle
        self._controller = controller
        self._registry = registry
        self._locks = locks

    # Audits

    def create_audit(
        self,
        premise_id: str,
        header_values: Mapping[str, str] | None = None,
        audit_type_id: str | None = None,
    ) -> Audit:
        return _detached(self._lifecycle.create_audit(premise_id, header_values, audit_type_id))

    def get_audit(self, audit_id: str) -> Audit:
        """A copy of the audit; change it only through the operations here."""
        with self._locks.hold(audit_id):
            return _detached(self._answers.get_audit(audit_id))

    def on_start_audit(self, audit_id: str) -> Audit:
        with self._locks.hold(audit_id):
            return _detached(self._lifecycle.start_audit(audit_id))

    def on_answer_update(
        self,
        audit_id: str,
        item_id: str,
        answer: AuditAnswer | Mapping[str, Any],
    ) -> AuditAnswer:
        return self._answers.set_answer(audit_id, item_id, answer)

    def on_add_non_compliance(
        self,
        audit_id: str,
        item_id: str,
        record: NonComplianceRecord | None = None,
    ) -> AuditAnswer:
        return self._answers.add_non_compliance(audit_id, item_id, record)

    def on_update_non_compliance(
        self, audit_id: str, item_id: str, index: int, **changes: Any
    ) -> AuditAnswer:
        return self._answers.update_non_compliance(audit_id, item_id, index, **changes)

    def on_remove_non_compliance(self, audit_id: str, item_id: str, index: int) -> AuditAnswer:
        return self._answers.remove_non_compliance(audit_id, item_id, index)

    def on_save_progress(self, audit_id: str) -> bool:
        return self._lifecycle.save_progress(audit_id)

    def on_complete(
        self,
        audit_id: str,
        *,
        created_by: str | None = None,
        created_by_name: str | None = None,
    ) -> Report:
        return self._lifecycle.complete_audit(
            audit_id, created_by=created_by, created_by_name=created_by_name
        )

    def on_unlock_audit(self, audit_id: str) -> Audit:
        with self._locks.hold(audit_id):
            return _detached(self._lifecycle.unlock(audit_id))

    def on_lock_audit(self, audit_id: str) -> Audit:
        with self._locks.hold(audit_id):
            return _detached(self._lifecycle.lock(audit_id))

    def on_revise_audit(self, audit_id: str) -> Audit:
        with self._locks.hold(audit_id):
            return _detached(self._lifecycle.revise(audit_id))

    def delete_audit(self, audit_id: str) -> None:
        """Delete an audit together with every report version it owns."""
        active = self._controller.active_job(audit_id)
        if active is not None:
            self._controller.cancel(active)
        with self._locks.hold(audit_id):
            self._persistence.delete_audit(audit_id)
            self._answers.evict(audit_id)
        logger.info("Deleted audit %s and its reports", audit_id)

    # Reports

    def on_cancel_report_generation(self, report_id: str) -> bool:
        return self._controller.cancel(report_id)

    def on_delete_report_version(self, report_id: str, audit_id: str) -> Report:
        report = self._registry.get(report_id)
        if report.audit_id != audit_id:
            raise VersionNotFound(report_id)
        if report.is_active:
            self._controller.cancel(report_id)
        return self._registry.delete_version(report_id, audit_id)

    def on_set_report_as_latest(self, report_id: str, audit_id: str) -> Report:
        return self._registry.promote_to_latest(report_id, audit_id)

    def list_versions(self, audit_id: str) -> list[Report]:
        return self._registry.list_versions(audit_id)

    def current_report(self, audit_id: str) -> Report | None:
        return self._registry.current_report(audit_id)

    def get_report(self, report_id: str) -> Report:
        return self._registry.get(report_id)


def _detached(audit: Audit) -> Audit:
    return copy.deepcopy(audit)
