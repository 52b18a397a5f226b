"""Contract for the external report-generation service."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol
from uuid import uuid4

from hygiene_audit.domain.models import AuditorSnapshot, AuditSnapshot


@dataclass(frozen=True)
class JobHandle:
    """Opaque reference to one submitted generation request."""

    job_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass(frozen=True)
class GenerationRequest:
    report_id: str
    version_number: int
    audit: AuditSnapshot
    auditor: AuditorSnapshot | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "reportId": self.report_id,
            "versionNumber": self.version_number,
            "auditData": self.audit.to_payload(),
            "auditor": self.auditor.to_dict() if self.auditor else None,
        }


@dataclass(frozen=True)
class GenerationOutcome:
    report_data: Mapping[str, Any] | None = None
    usage: Mapping[str, Any] | None = None
    failure: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @classmethod
    def success(
        cls,
        report_data: Mapping[str, Any],
        usage: Mapping[str, Any] | None = None,
    ) -> GenerationOutcome:
        return cls(report_data=report_data, usage=usage)

    @classmethod
    def failed(cls, reason: str) -> GenerationOutcome:
        return cls(failure=reason or "Report generation failed")


Notify = Callable[[GenerationOutcome], None]


class GenerationService(Protocol):
    """Slow, fallible content generator.

    ``submit`` returning a handle acknowledges that generation has started.
    The outcome arrives later, exactly once, through ``notify``, possibly on
    another thread. After ``cancel`` the service may still call ``notify``;
    the caller ignores late outcomes.
    """

    def submit(self, request: GenerationRequest, notify: Notify) -> JobHandle: ...

    def cancel(self, handle: JobHandle) -> None: ...

    def shutdown(self) -> None:
        """Stop accepting work; in-flight requests may still finish."""
        ...
