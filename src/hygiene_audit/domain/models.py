"""Domain objects for audits, answers and report versions."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from hygiene_audit.errors import InvalidAnswer


class AuditStatus(str, Enum):
    DRAFT = "Draft"
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    REVISED = "Revised"
    LOCKED = "Locked"


# completed_at is set exactly when the status is one of these.
COMPLETED_STATUSES = frozenset(
    {AuditStatus.COMPLETED, AuditStatus.REVISED, AuditStatus.LOCKED}
)
# Answers may only change in these statuses.
EDITABLE_STATUSES = frozenset(
    {
        AuditStatus.DRAFT,
        AuditStatus.NOT_STARTED,
        AuditStatus.IN_PROGRESS,
        AuditStatus.REVISED,
    }
)


class ReportStatus(str, Enum):
    PENDING = "Pending"
    GENERATING = "Generating"
    DONE = "Done"
    ERROR = "Error"


ACTIVE_REPORT_STATUSES = frozenset({ReportStatus.PENDING, ReportStatus.GENERATING})


@dataclass(frozen=True)
class NonComplianceRecord:
    location: str = ""
    finding: str = ""
    recommendation: str = ""
    photos: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "photos", tuple(self.photos))

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "finding": self.finding,
            "recommendation": self.recommendation,
            "photos": list(self.photos),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NonComplianceRecord:
        return cls(
            location=data.get("location") or "",
            finding=data.get("finding") or "",
            recommendation=data.get("recommendation") or "",
            photos=tuple(data.get("photos") or ()),
        )


@dataclass(frozen=True)
class AuditAnswer:
    """Verdict for one checklist item.

    ``compliant`` is True exactly when ``non_compliance_data`` is empty. The
    constructor rejects any other combination, so every instance in the
    system is consistent; use :meth:`compliant_answer` and
    :meth:`non_compliant` to build one.
    """

    compliant: bool
    non_compliance_data: tuple[NonComplianceRecord, ...] = ()

    def __post_init__(self) -> None:
        records = tuple(self.non_compliance_data)
        object.__setattr__(self, "non_compliance_data", records)
        if self.compliant and records:
            raise InvalidAnswer("A compliant answer cannot carry non-compliance records")
        if not self.compliant and not records:
            raise InvalidAnswer("A non-compliant answer needs at least one non-compliance record")

    @classmethod
    def compliant_answer(cls) -> AuditAnswer:
        return cls(compliant=True)

    @classmethod
    def non_compliant(
        cls, records: tuple[NonComplianceRecord, ...] | list[NonComplianceRecord]
    ) -> AuditAnswer:
        return cls(compliant=False, non_compliance_data=tuple(records))

    def with_record_added(self, record: NonComplianceRecord | None = None) -> AuditAnswer:
        return AuditAnswer.non_compliant(
            self.non_compliance_data + (record or NonComplianceRecord(),)
        )

    def with_record_removed(self, index: int) -> AuditAnswer:
        if index < 0 or index >= len(self.non_compliance_data):
            raise IndexError(f"No non-compliance record at index {index}")
        remaining = self.non_compliance_data[:index] + self.non_compliance_data[index + 1 :]
        if not remaining:
            return AuditAnswer.compliant_answer()
        return AuditAnswer.non_compliant(remaining)

    def to_dict(self) -> dict[str, Any]:
        return {
            "compliant": self.compliant,
            "nonComplianceData": [record.to_dict() for record in self.non_compliance_data],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditAnswer:
        records = tuple(
            NonComplianceRecord.from_dict(item) for item in data.get("nonComplianceData") or ()
        )
        return cls(compliant=bool(data.get("compliant")), non_compliance_data=records)


@dataclass
class Audit:
    id: str
    premise_id: str
    status: AuditStatus
    created_at: str
    completed_at: str | None = None
    answers: dict[str, AuditAnswer] = field(default_factory=dict)
    header_values: dict[str, str] = field(default_factory=dict)
    audit_type_id: str | None = None

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES


@dataclass(frozen=True)
class AuditorSnapshot:
    name: str = ""
    phone: str = ""
    email: str = ""
    web: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "phone": self.phone, "email": self.email, "web": self.web}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditorSnapshot:
        return cls(
            name=data.get("name") or "",
            phone=data.get("phone") or "",
            email=data.get("email") or "",
            web=data.get("web") or "",
        )


@dataclass(frozen=True)
class AuditSnapshot:
    """Deep, read-only copy of an audit taken when generation starts."""

    audit_id: str
    premise_id: str
    audit_type_id: str | None
    completed_at: str | None
    answers: Mapping[str, AuditAnswer]
    header_values: Mapping[str, str]

    @classmethod
    def capture(cls, audit: Audit) -> AuditSnapshot:
        # Answers are frozen values; copying the containers detaches the snapshot.
        return cls(
            audit_id=audit.id,
            premise_id=audit.premise_id,
            audit_type_id=audit.audit_type_id,
            completed_at=audit.completed_at,
            answers=MappingProxyType(dict(audit.answers)),
            header_values=MappingProxyType(copy.deepcopy(dict(audit.header_values))),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.audit_id,
            "premiseId": self.premise_id,
            "auditTypeId": self.audit_type_id,
            "completedAt": self.completed_at,
            "headerValues": dict(self.header_values),
            "answers": {item_id: answer.to_dict() for item_id, answer in self.answers.items()},
        }


@dataclass(frozen=True)
class Report:
    id: str
    audit_id: str
    status: ReportStatus
    version_number: int
    created_at: str
    is_latest: bool = False
    report_data: Mapping[str, Any] | None = None
    error: str | None = None
    usage: Mapping[str, Any] | None = None
    auditor_snapshot: AuditorSnapshot | None = None
    created_by: str | None = None
    created_by_name: str | None = None
    generated_at: str | None = None

    def __post_init__(self) -> None:
        if self.version_number < 1:
            raise ValueError(f"version_number must be positive, got {self.version_number}")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REPORT_STATUSES

    def evolve(self, **changes: Any) -> Report:
        return replace(self, **changes)
