"""Domain error taxonomy.

Validation errors are raised synchronously to the caller. Generation
outcomes are recorded on the report row instead of being raised; the
``GenerationFailed`` and ``GenerationCancelled`` messages end up in
``Report.error``.
"""

from __future__ import annotations

from collections.abc import Iterable


class AuditCoreError(Exception):
    """Base class for every error raised by the audit core."""


class AuditNotFound(AuditCoreError):
    def __init__(self, audit_id: str) -> None:
        super().__init__(f"Audit not found: {audit_id}")
        self.audit_id = audit_id


class InvalidAnswer(AuditCoreError):
    """The compliant flag disagrees with the non-compliance records."""

    def __init__(self, message: str, item_id: str | None = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class IncompleteAudit(AuditCoreError):
    def __init__(self, audit_id: str, missing_item_ids: Iterable[str]) -> None:
        self.audit_id = audit_id
        self.missing_item_ids = tuple(sorted(missing_item_ids))
        super().__init__(
            f"Audit {audit_id} has unanswered items: {', '.join(self.missing_item_ids)}"
        )


class InvalidTransition(AuditCoreError):
    def __init__(self, message: str, current: str | None = None) -> None:
        super().__init__(message)
        self.current = current


class AuditReadOnly(AuditCoreError):
    def __init__(self, audit_id: str, status: str) -> None:
        super().__init__(f"Audit {audit_id} is read-only while {status}")
        self.audit_id = audit_id
        self.status = status


class GenerationInProgress(AuditCoreError):
    def __init__(self, audit_id: str, report_id: str) -> None:
        super().__init__(
            f"Report generation already in progress for audit {audit_id} (report {report_id})"
        )
        self.audit_id = audit_id
        self.report_id = report_id


class GenerationFailed(AuditCoreError):
    """Raised by generation services; recorded on the report, never thrown to callers."""


class GenerationCancelled(AuditCoreError):
    def __init__(self, report_id: str) -> None:
        super().__init__("Report generation was cancelled by the user")
        self.report_id = report_id


class VersionNotFound(AuditCoreError):
    def __init__(self, report_id: str) -> None:
        super().__init__(f"Report version not found: {report_id}")
        self.report_id = report_id


class InvariantViolation(AuditCoreError):
    """Detected inconsistency in the latest-version flags. Logged and repaired."""

    def __init__(self, audit_id: str, detail: str) -> None:
        super().__init__(f"Latest-version invariant violated for audit {audit_id}: {detail}")
        self.audit_id = audit_id
        self.detail = detail


class ChecklistError(AuditCoreError):
    pass
