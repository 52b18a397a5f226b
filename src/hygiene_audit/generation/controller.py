"""Generation job controller.

One job per audit completion: ``Pending -> Generating -> Done | Error |
Cancelled``. The job creates a new report version, hands a deep snapshot of
the audit to the generation service from a worker thread and records the
outcome on the report row. Cancelled and timed-out jobs end as ``Error``
rows so the attempt stays visible in the version history.

Whichever terminal event is observed first under the job lock wins; a
success that arrives after a cancellation or timeout is dropped, and a
cancellation requested after success has been recorded is a no-op.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import partial
from typing import Any, Mapping

from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import (
    ACTIVE_REPORT_STATUSES,
    AuditorSnapshot,
    AuditSnapshot,
    Report,
    ReportStatus,
)
from hygiene_audit.errors import GenerationCancelled, GenerationInProgress, VersionNotFound
from hygiene_audit.generation.service import (
    GenerationOutcome,
    GenerationRequest,
    GenerationService,
    JobHandle,
)
from hygiene_audit.reports.registry import ReportVersionRegistry
from hygiene_audit.storage.base import Persistence
from hygiene_audit.utils.time import parse_iso, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

AUDIT_DELETED_MESSAGE = "The audit was deleted while its report was being generated"
INTERRUPTED_MESSAGE = "Report generation was interrupted before it finished"

AuditorProvider = Callable[[], AuditorSnapshot | None]


class JobState(str, Enum):
    PENDING = "Pending"
    GENERATING = "Generating"
    DONE = "Done"
    ERROR = "Error"
    CANCELLED = "Cancelled"


TERMINAL_JOB_STATES = frozenset({JobState.DONE, JobState.ERROR, JobState.CANCELLED})


@dataclass
class _Job:
    report_id: str
    audit_id: str
    version_number: int
    state: JobState = JobState.PENDING
    handle: JobHandle | None = None
    timer: threading.Timer | None = None
    finished: threading.Event = field(default_factory=threading.Event)


class GenerationJobController:
    def __init__(
        self,
        persistence: Persistence,
        registry: ReportVersionRegistry,
        service: GenerationService,
        locks: AuditLocks,
        *,
        timeout_seconds: float = 300.0,
        auditor_provider: AuditorProvider | None = None,
        executor: Executor | None = None,
        max_workers: int = 4,
    ) -> None:
        self._persistence = persistence
        self._registry = registry
        self._service = service
        self._locks = locks
        self._timeout_seconds = timeout_seconds
        self._auditor_provider = auditor_provider
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="generation-submit",
        )
        self._jobs: dict[str, _Job] = {}
        self._active: dict[str, str] = {}
        self._lock = threading.Lock()
        self._closed = False

    # -- public API ---------------------------------------------------------

    def start_job(
        self,
        snapshot: AuditSnapshot,
        *,
        created_by: str | None = None,
        created_by_name: str | None = None,
    ) -> Report:
        """Create the next report version and start generating it.

        Returns the new ``Pending`` report immediately; the outcome is written
        to the report row later. Raises :class:`GenerationInProgress` if the
        audit already has a pending or generating report.
        """
        audit_id = snapshot.audit_id
        with self._locks.hold(audit_id):
            self.ensure_idle(audit_id)
            auditor = self._capture_auditor()
            report = self._registry.create_version(
                audit_id,
                created_by=created_by,
                created_by_name=created_by_name,
                auditor_snapshot=auditor,
            )
            job = _Job(
                report_id=report.id,
                audit_id=audit_id,
                version_number=report.version_number,
            )
            job.timer = threading.Timer(self._timeout_seconds, self._on_timeout, args=(report.id,))
            job.timer.daemon = True
            with self._lock:
                self._jobs[report.id] = job
                self._active[audit_id] = report.id
            job.timer.start()

        request = GenerationRequest(
            report_id=report.id,
            version_number=report.version_number,
            audit=snapshot,
            auditor=auditor,
        )
        self._executor.submit(self._submit, job, request)
        return report

    def cancel(self, report_id: str) -> bool:
        """Cancel a pending or generating job.

        Returns True if the report was moved to ``Error`` by this call and
        False if it had already reached a terminal state.
        """
        with self._lock:
            job = self._jobs.get(report_id)
        if job is None:
            return self._cancel_untracked(report_id)
        cancelled = self._finish(
            job,
            JobState.CANCELLED,
            error=str(GenerationCancelled(report_id)),
        )
        if cancelled:
            logger.info("Cancelled generation of report %s", report_id)
        return cancelled

    def active_job(self, audit_id: str) -> str | None:
        with self._lock:
            return self._active.get(audit_id)

    def job_state(self, report_id: str) -> JobState | None:
        with self._lock:
            job = self._jobs.get(report_id)
            return job.state if job is not None else None

    def wait(self, report_id: str, timeout: float | None = None) -> Report:
        """Block until the job for ``report_id`` is finished, then return its row."""
        with self._lock:
            job = self._jobs.get(report_id)
        if job is not None:
            job.finished.wait(timeout)
        return self._registry.get(report_id)

    def reap_stale_jobs(self) -> list[Report]:
        """Fail pending/generating rows that no live job in this process owns.

        Such rows are left behind by a crashed or closed session; once older
        than the generation timeout they would otherwise block the audit.
        """
        reaped: list[Report] = []
        for report in self._persistence.load_reports_by_status(list(ACTIVE_REPORT_STATUSES)):
            with self._lock:
                tracked = report.id in self._jobs
            if tracked or not self._is_stale(report):
                continue
            with self._locks.hold(report.audit_id):
                current = self._persistence.load_report(report.id)
                if current is None or not current.is_active:
                    continue
                failed = current.evolve(status=ReportStatus.ERROR, error=INTERRUPTED_MESSAGE)
                self._persistence.save_report(failed)
            logger.warning(
                "Marked stale report %s of audit %s as failed", report.id, report.audit_id
            )
            reaped.append(failed)
        return reaped

    def shutdown(self) -> None:
        """Stop tracking jobs; outcomes arriving afterwards are dropped.

        Rows still pending or generating stay as they are and are reaped as
        interrupted by the next process once they go stale.
        """
        with self._lock:
            self._closed = True
            jobs = list(self._jobs.values())
        for job in jobs:
            if job.timer is not None:
                job.timer.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # -- job steps ----------------------------------------------------------

    def _submit(self, job: _Job, request: GenerationRequest) -> None:
        try:
            handle = self._service.submit(request, partial(self._on_outcome, job.report_id))
        except Exception as exc:
            logger.exception("Generation service rejected report %s", job.report_id)
            self._finish(job, JobState.ERROR, error=f"Could not start report generation: {exc}")
            return

        with self._locks.hold(job.audit_id):
            with self._lock:
                job.handle = handle
                started = job.state is JobState.PENDING and not self._closed
                cancelled = self._closed or job.state in (JobState.CANCELLED, JobState.ERROR)
                if started:
                    job.state = JobState.GENERATING
            if started:
                report = self._persistence.load_report(job.report_id)
                if report is not None:
                    self._persistence.save_report(report.evolve(status=ReportStatus.GENERATING))
                logger.info("Report %s (v%d) is generating", job.report_id, job.version_number)
        if cancelled:
            # Cancelled or timed out before the service acknowledged the request.
            self._service.cancel(handle)

    def _on_outcome(self, report_id: str, outcome: GenerationOutcome) -> None:
        with self._lock:
            job = self._jobs.get(report_id)
        if job is None:
            logger.info("Ignoring outcome for report %s with no live job", report_id)
            return
        if outcome.succeeded:
            self._finish(job, JobState.DONE, report_data=outcome.report_data, usage=outcome.usage)
        else:
            self._finish(job, JobState.ERROR, error=outcome.failure)

    def _on_timeout(self, report_id: str) -> None:
        with self._lock:
            job = self._jobs.get(report_id)
        if job is None:
            return
        message = f"Report generation timed out after {self._timeout_seconds:g} seconds"
        if self._finish(job, JobState.ERROR, error=message):
            logger.warning("Report %s timed out", report_id)

    def _finish(
        self,
        job: _Job,
        state: JobState,
        *,
        error: str | None = None,
        report_data: Mapping[str, Any] | None = None,
        usage: Mapping[str, Any] | None = None,
    ) -> bool:
        with self._locks.hold(job.audit_id):
            with self._lock:
                if self._closed:
                    logger.info(
                        "Dropping %s for report %s after shutdown", state.value, job.report_id
                    )
                    return False
                if job.state in TERMINAL_JOB_STATES:
                    logger.info(
                        "Ignoring %s for report %s, job already %s",
                        state.value,
                        job.report_id,
                        job.state.value,
                    )
                    return False
                job.state = state
                handle = job.handle
            try:
                self._record(job, state, error=error, report_data=report_data, usage=usage)
            finally:
                self._release(job)
        if state is not JobState.DONE and handle is not None:
            self._service.cancel(handle)
        return True

    def _record(
        self,
        job: _Job,
        state: JobState,
        *,
        error: str | None,
        report_data: Mapping[str, Any] | None,
        usage: Mapping[str, Any] | None,
    ) -> None:
        report = self._persistence.load_report(job.report_id)
        if report is None:
            logger.warning("Report %s was deleted before its outcome was recorded", job.report_id)
            return

        if state is JobState.DONE and self._persistence.load_audit(job.audit_id) is None:
            state, error = JobState.ERROR, AUDIT_DELETED_MESSAGE
            with self._lock:
                job.state = state

        if state is JobState.DONE:
            finished = report.evolve(
                status=ReportStatus.DONE,
                report_data=dict(report_data or {}),
                usage=dict(usage) if usage is not None else None,
                error=None,
                generated_at=utc_now_iso(),
            )
            if self._registry.record_done(finished) is None:
                logger.warning("Report %s was deleted before it finished", job.report_id)
                return
            logger.info("Report %s (v%d) generated", job.report_id, job.version_number)
            return

        self._persistence.save_report(report.evolve(status=ReportStatus.ERROR, error=error))
        logger.warning("Report %s (v%d) failed: %s", job.report_id, job.version_number, error)

    def _release(self, job: _Job) -> None:
        if job.timer is not None:
            job.timer.cancel()
        with self._lock:
            if self._active.get(job.audit_id) == job.report_id:
                del self._active[job.audit_id]
            self._jobs.pop(job.report_id, None)
        job.finished.set()

    # -- helpers ------------------------------------------------------------

    def ensure_idle(self, audit_id: str) -> None:
        with self._lock:
            active = self._active.get(audit_id)
        if active is not None:
            raise GenerationInProgress(audit_id, active)
        # Rows written by another session count as in flight until they go stale.
        for report in self._persistence.load_reports(audit_id):
            if report.is_active and not self._is_stale(report):
                raise GenerationInProgress(audit_id, report.id)
            if report.is_active:
                self._persistence.save_report(
                    report.evolve(status=ReportStatus.ERROR, error=INTERRUPTED_MESSAGE)
                )
                logger.warning("Marked stale report %s of audit %s as failed", report.id, audit_id)

    def _cancel_untracked(self, report_id: str) -> bool:
        report = self._registry.get(report_id)
        with self._locks.hold(report.audit_id):
            current = self._persistence.load_report(report_id)
            if current is None:
                raise VersionNotFound(report_id)
            if not current.is_active:
                return False
            self._persistence.save_report(
                current.evolve(status=ReportStatus.ERROR, error=str(GenerationCancelled(report_id)))
            )
        logger.info("Cancelled untracked report %s", report_id)
        return True

    def _is_stale(self, report: Report) -> bool:
        try:
            created = parse_iso(report.created_at)
        except ValueError:
            return True
        return utc_now() - created > timedelta(seconds=self._timeout_seconds)

    def _capture_auditor(self) -> AuditorSnapshot | None:
        if self._auditor_provider is None:
            return None
        try:
            return self._auditor_provider()
        except Exception:
            # The report is still generated, just without auditor details.
            logger.warning("Could not read auditor details for the report snapshot", exc_info=True)
            return None
