"""Persistence contract consumed by the audit core."""

from __future__ import annotations

from typing import Protocol, Sequence

from hygiene_audit.domain.models import Audit, Report, ReportStatus


class Persistence(Protocol):
    """Durable storage for audits and report versions.

    ``save_audit`` and ``save_report`` are atomic per document.
    ``next_version_number`` must hand out strictly increasing numbers per
    audit, even across deletions and concurrent callers. ``set_latest`` must
    clear and set the latest flags for one audit in a single transaction.
    """

    def load_audit(self, audit_id: str) -> Audit | None: ...

    def save_audit(self, audit: Audit) -> None: ...

    def delete_audit(self, audit_id: str) -> None:
        """Remove the audit along with all of its reports."""
        ...

    def load_reports(self, audit_id: str) -> list[Report]: ...

    def load_report(self, report_id: str) -> Report | None: ...

    def load_reports_by_status(self, statuses: Sequence[ReportStatus]) -> list[Report]: ...

    def save_report(self, report: Report) -> None: ...

    def finish_report(self, report: Report) -> bool:
        """Save a ``Done`` report and make it latest in one transaction."""
        ...

    def delete_report(self, report_id: str) -> bool: ...

    def next_version_number(self, audit_id: str) -> int: ...

    def set_latest(self, audit_id: str, report_id: str | None) -> bool: ...
