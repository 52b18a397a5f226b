"""Audit lifecycle state machine.

    Draft/NotStarted -> InProgress -> Completed <-> Revised
                                          |
                                        Locked

``unlock`` takes Completed/Locked back to InProgress. Every completion
creates a new report version; history is never overwritten.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Mapping
from uuid import uuid4

from hygiene_audit.checklist.models import Checklist
from hygiene_audit.core.answers import AnswerStore
from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import Audit, AuditSnapshot, AuditStatus, Report
from hygiene_audit.errors import IncompleteAudit, InvalidTransition
from hygiene_audit.generation.controller import GenerationJobController
from hygiene_audit.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

_STARTABLE = frozenset({AuditStatus.DRAFT, AuditStatus.NOT_STARTED})
_COMPLETABLE = frozenset({AuditStatus.IN_PROGRESS, AuditStatus.REVISED})
_UNLOCKABLE = frozenset({AuditStatus.COMPLETED, AuditStatus.LOCKED})

_UNCHANGED = object()


class AuditLifecycle:
    def __init__(
        self,
        answers: AnswerStore,
        controller: GenerationJobController,
        checklist: Checklist,
        locks: AuditLocks,
        *,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._answers = answers
        self._controller = controller
        self._checklist = checklist
        self._locks = locks
        self._clock = clock

    def create_audit(
        self,
        premise_id: str,
        header_values: Mapping[str, str] | None = None,
        audit_type_id: str | None = None,
    ) -> Audit:
        audit = Audit(
            id=uuid4().hex,
            premise_id=premise_id,
            status=AuditStatus.DRAFT,
            created_at=self._clock(),
            header_values=dict(header_values or {}),
            audit_type_id=audit_type_id,
        )
        self._answers.track(audit)
        self._save(audit)
        logger.info("Created audit %s for premise %s", audit.id, premise_id)
        return audit

    def start_audit(self, audit_id: str) -> Audit:
        with self._locks.hold(audit_id):
            audit = self._answers.get_audit(audit_id)
            self._require(audit, _STARTABLE, "start")
            self._transition(audit, AuditStatus.IN_PROGRESS)
            return audit

    def complete_audit(
        self,
        audit_id: str,
        *,
        created_by: str | None = None,
        created_by_name: str | None = None,
    ) -> Report:
        """Complete the audit and start generating its next report version.

        Returns the new ``Pending`` report. Generation runs in the background;
        its outcome is read from the report, never raised here.
        """
        with self._locks.hold(audit_id):
            audit = self._answers.get_audit(audit_id)
            self._require(audit, _COMPLETABLE, "complete")
            missing = self._checklist.active_item_ids() - audit.answers.keys()
            if missing:
                raise IncompleteAudit(audit_id, missing)
            # Fails with GenerationInProgress before anything is changed.
            self._controller.ensure_idle(audit_id)

            previous = audit.status, audit.completed_at
            self._transition(audit, AuditStatus.COMPLETED, completed_at=self._clock())
            snapshot = AuditSnapshot.capture(audit)
            try:
                report = self._controller.start_job(
                    snapshot,
                    created_by=created_by,
                    created_by_name=created_by_name,
                )
            except Exception:
                self._restore(audit, *previous)
                raise
            return report

    def unlock(self, audit_id: str) -> Audit:
        """Re-open a completed audit; existing report versions are kept."""
        with self._locks.hold(audit_id):
            audit = self._answers.get_audit(audit_id)
            self._require(audit, _UNLOCKABLE, "unlock")
            self._transition(audit, AuditStatus.IN_PROGRESS, completed_at=None)
            return audit

    def lock(self, audit_id: str) -> Audit:
        with self._locks.hold(audit_id):
            audit = self._answers.get_audit(audit_id)
            self._require(audit, frozenset({AuditStatus.COMPLETED}), "lock")
            self._transition(audit, AuditStatus.LOCKED)
            return audit

    def revise(self, audit_id: str) -> Audit:
        """Open a completed audit for changes while it keeps its completion date."""
        with self._locks.hold(audit_id):
            audit = self._answers.get_audit(audit_id)
            self._require(audit, frozenset({AuditStatus.COMPLETED}), "revise")
            self._transition(audit, AuditStatus.REVISED)
            return audit

    def save_progress(self, audit_id: str) -> bool:
        """Persist pending answer edits. Never changes the status."""
        return self._answers.flush(audit_id)

    def _transition(
        self,
        audit: Audit,
        target: AuditStatus,
        *,
        completed_at: str | None | object = _UNCHANGED,
    ) -> None:
        """Move the working copy to ``target`` and save it, or leave it untouched."""
        previous = audit.status, audit.completed_at
        if completed_at is not _UNCHANGED:
            audit.completed_at = completed_at
        audit.status = target
        try:
            self._save(audit)
        except Exception:
            self._restore(audit, *previous)
            raise
        logger.info("Audit %s: %s -> %s", audit.id, previous[0].value, target.value)

    def _restore(self, audit: Audit, status: AuditStatus, completed_at: str | None) -> None:
        audit.status, audit.completed_at = status, completed_at
        # A read-only copy may already have been dropped after its save.
        self._answers.track(audit)
        try:
            self._save(audit)
        except Exception:
            # Still dirty; the next successful flush writes the restored state.
            logger.warning("Could not save rollback of audit %s", audit.id, exc_info=True)

    def _save(self, audit: Audit) -> None:
        self._answers.mark_dirty(audit.id)
        self._answers.flush(audit.id)

    @staticmethod
    def _require(audit: Audit, allowed: frozenset[AuditStatus], action: str) -> None:
        if audit.status not in allowed:
            raise InvalidTransition(
                f"Cannot {action} audit {audit.id} while it is {audit.status.value}",
                current=audit.status.value,
            )
