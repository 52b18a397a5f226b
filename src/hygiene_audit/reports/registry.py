"""Versioned collection of generated reports per audit."""

from __future__ import annotations

import logging
from uuid import uuid4

from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import AuditorSnapshot, Report, ReportStatus
from hygiene_audit.errors import InvalidTransition, InvariantViolation, VersionNotFound
from hygiene_audit.storage.base import Persistence
from hygiene_audit.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


class ReportVersionRegistry:
    """Owns report rows and the single-latest-version invariant.

    ``record_done``, ``promote_to_latest`` and the restore step of
    ``delete_version`` are the only code paths that move the latest flag.
    They run under the audit's lock, and each flag change is one storage
    transaction together with any row it depends on.
    """

    def __init__(self, persistence: Persistence, locks: AuditLocks) -> None:
        self._persistence = persistence
        self._locks = locks

    def create_version(
        self,
        audit_id: str,
        *,
        created_by: str | None = None,
        created_by_name: str | None = None,
        auditor_snapshot: AuditorSnapshot | None = None,
    ) -> Report:
        with self._locks.hold(audit_id):
            report = Report(
                id=uuid4().hex,
                audit_id=audit_id,
                status=ReportStatus.PENDING,
                version_number=self._persistence.next_version_number(audit_id),
                created_at=utc_now_iso(),
                is_latest=False,
                auditor_snapshot=auditor_snapshot,
                created_by=created_by,
                created_by_name=created_by_name,
            )
            self._persistence.save_report(report)
        logger.info(
            "Created report %s as version %d of audit %s",
            report.id,
            report.version_number,
            audit_id,
        )
        return report

    def get(self, report_id: str) -> Report:
        report = self._persistence.load_report(report_id)
        if report is None:
            raise VersionNotFound(report_id)
        return report

    def list_versions(self, audit_id: str) -> list[Report]:
        """All versions of an audit, highest version number first."""
        reports = self._persistence.load_reports(audit_id)
        return sorted(reports, key=lambda r: r.version_number, reverse=True)

    def promote_to_latest(self, report_id: str, audit_id: str | None = None) -> Report:
        report = self._resolve(report_id, audit_id)
        with self._locks.hold(report.audit_id):
            # Re-read under the lock: a concurrent delete wins if it got there first.
            report = self._resolve(report_id, report.audit_id)
            if report.status is not ReportStatus.DONE:
                raise InvalidTransition(
                    f"Only a finished report can be the latest version; report {report_id} "
                    f"is {report.status.value}",
                    current=report.status.value,
                )
            if report.is_latest:
                return report
            if not self._persistence.set_latest(report.audit_id, report.id):
                raise VersionNotFound(report_id)
        logger.info(
            "Report %s (v%d) is now the latest version of audit %s",
            report.id,
            report.version_number,
            report.audit_id,
        )
        return report.evolve(is_latest=True)

    def record_done(self, report: Report) -> Report | None:
        """Store a finished report as the new latest version.

        Returns None when the version was deleted while it was generating.
        """
        if report.status is not ReportStatus.DONE:
            raise InvalidTransition(
                f"Report {report.id} is {report.status.value}, not Done",
                current=report.status.value,
            )
        with self._locks.hold(report.audit_id):
            if not self._persistence.finish_report(report):
                return None
        logger.info(
            "Report %s (v%d) is now the latest version of audit %s",
            report.id,
            report.version_number,
            report.audit_id,
        )
        return report.evolve(is_latest=True)

    def delete_version(self, report_id: str, audit_id: str | None = None) -> Report:
        """Remove one version; the next-highest finished version takes over if needed."""
        report = self._resolve(report_id, audit_id)
        with self._locks.hold(report.audit_id):
            report = self._resolve(report_id, report.audit_id)
            if not self._persistence.delete_report(report.id):
                raise VersionNotFound(report_id)
            logger.info(
                "Deleted report %s (v%d) of audit %s",
                report.id,
                report.version_number,
                report.audit_id,
            )
            if report.is_latest:
                successor = self._highest_done(self._persistence.load_reports(report.audit_id))
                self._persistence.set_latest(
                    report.audit_id, successor.id if successor is not None else None
                )
                if successor is not None:
                    logger.info(
                        "Report %s (v%d) restored as latest version of audit %s",
                        successor.id,
                        successor.version_number,
                        report.audit_id,
                    )
        return report

    def current_report(self, audit_id: str) -> Report | None:
        """The latest version, repairing the latest flags if they are inconsistent."""
        with self._locks.hold(audit_id):
            reports = self._persistence.load_reports(audit_id)
            flagged = [r for r in reports if r.is_latest]
            if len(flagged) == 1 and flagged[0].status is ReportStatus.DONE:
                return flagged[0]
            done = [r for r in reports if r.status is ReportStatus.DONE]
            if not flagged and not done:
                return None

            target = self._highest_done(flagged) or self._highest_done(done)
            violation = InvariantViolation(
                audit_id,
                f"{len(flagged)} version(s) flagged latest, {len(done)} finished",
            )
            logger.warning(
                "%s; repairing to %s",
                violation,
                f"v{target.version_number}" if target else "no latest version",
            )
            self._persistence.set_latest(audit_id, target.id if target else None)
            return target.evolve(is_latest=True) if target else None

    def _resolve(self, report_id: str, audit_id: str | None) -> Report:
        report = self._persistence.load_report(report_id)
        if report is None or (audit_id is not None and report.audit_id != audit_id):
            raise VersionNotFound(report_id)
        return report

    @staticmethod
    def _highest_done(reports: list[Report]) -> Report | None:
        done = [r for r in reports if r.status is ReportStatus.DONE]
        if not done:
            return None
        return max(done, key=lambda r: r.version_number)
