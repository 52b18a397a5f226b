from __future__ import annotations

import os
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field

import pytest

from hygiene_audit.checklist.models import Checklist
from hygiene_audit.core.answers import AnswerStore
from hygiene_audit.core.lifecycle import AuditLifecycle
from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import AuditAnswer, AuditorSnapshot, NonComplianceRecord
from hygiene_audit.generation.controller import GenerationJobController
from hygiene_audit.generation.service import (
    GenerationOutcome,
    GenerationRequest,
    JobHandle,
    Notify,
)
from hygiene_audit.reports.registry import ReportVersionRegistry
from hygiene_audit.storage.db import SqliteStore
from hygiene_audit.workspace import AuditWorkspace


def pytest_sessionstart(session: pytest.Session) -> None:
    # Never talk to a real generation endpoint from unit tests.
    os.environ.pop("GENERATION_SERVICE_URL", None)


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


@dataclass
class Submission:
    request: GenerationRequest
    notify: Notify
    handle: JobHandle


@dataclass
class FakeGenerationService:
    """Generation service whose outcomes are delivered explicitly by the test."""

    submissions: list[Submission] = field(default_factory=list)
    cancelled: list[JobHandle] = field(default_factory=list)
    submit_error: Exception | None = None
    shut_down: bool = False

    def submit(self, request: GenerationRequest, notify: Notify) -> JobHandle:
        if self.submit_error is not None:
            raise self.submit_error
        handle = JobHandle()
        self.submissions.append(Submission(request, notify, handle))
        return handle

    def cancel(self, handle: JobHandle) -> None:
        self.cancelled.append(handle)

    def shutdown(self) -> None:
        self.shut_down = True

    def succeed(self, index: int = -1, data: dict | None = None, usage: dict | None = None) -> None:
        payload = data or {
            "summary": {"title": "Hygiene audit", "evaluation_text": "Satisfactory"},
            "sections": [],
        }
        self.submissions[index].notify(GenerationOutcome.success(payload, usage))

    def fail(self, index: int = -1, reason: str = "model overloaded") -> None:
        self.submissions[index].notify(GenerationOutcome.failed(reason))


@dataclass
class Harness:
    store: SqliteStore
    service: FakeGenerationService
    locks: AuditLocks
    answers: AnswerStore
    registry: ReportVersionRegistry
    controller: GenerationJobController
    lifecycle: AuditLifecycle
    workspace: AuditWorkspace
    checklist: Checklist


CHECKLIST_DATA = {
    "audit_title": "Test audit",
    "audit_sections": [
        {
            "id": "kitchen",
            "title": "Kitchen",
            "active": True,
            "items": [
                {"id": "A", "title": "Hand washing"},
                {"id": "B", "title": "Cold chain"},
                {"id": "C", "title": "Cleaning plan"},
                {"id": "D", "title": "Retired item", "active": False},
            ],
        },
        {
            "id": "outdoor",
            "title": "Outdoor area",
            "active": False,
            "items": [{"id": "E", "title": "Waste bins"}],
        },
    ],
}

AUDITOR = AuditorSnapshot(name="Jana Novak", phone="+420 600 000 000", email="jana@example.com")


@pytest.fixture
def checklist() -> Checklist:
    return Checklist.model_validate(CHECKLIST_DATA)


@pytest.fixture
def store(tmp_path):
    sqlite_store = SqliteStore(str(tmp_path / "audits.sqlite"))
    yield sqlite_store
    sqlite_store.close()


def make_harness(
    store: SqliteStore, checklist: Checklist, timeout_seconds: float = 60.0
) -> Harness:
    service = FakeGenerationService()
    locks = AuditLocks()
    answers = AnswerStore(store, locks)
    registry = ReportVersionRegistry(store, locks)
    controller = GenerationJobController(
        store,
        registry,
        service,
        locks,
        timeout_seconds=timeout_seconds,
        auditor_provider=lambda: AUDITOR,
        executor=InlineExecutor(),
    )
    lifecycle = AuditLifecycle(answers, controller, checklist, locks)
    workspace = AuditWorkspace(store, answers, lifecycle, controller, registry, locks)
    return Harness(
        store=store,
        service=service,
        locks=locks,
        answers=answers,
        registry=registry,
        controller=controller,
        lifecycle=lifecycle,
        workspace=workspace,
        checklist=checklist,
    )


@pytest.fixture
def harness(store, checklist):
    h = make_harness(store, checklist)
    yield h
    h.controller.shutdown()


def non_compliance(n: int = 1) -> AuditAnswer:
    return AuditAnswer.non_compliant(
        [
            NonComplianceRecord(
                location=f"Storeroom {i}",
                finding="Raw meat stored above ready-to-eat food",
                recommendation="Store raw meat on the bottom shelf",
                photos=(f"photos/{i}.jpg",),
            )
            for i in range(1, n + 1)
        ]
    )


def answer_all(workspace: AuditWorkspace, audit_id: str) -> None:
    workspace.on_answer_update(audit_id, "A", AuditAnswer.compliant_answer())
    workspace.on_answer_update(audit_id, "B", non_compliance(2))
    workspace.on_answer_update(audit_id, "C", AuditAnswer.compliant_answer())


def started_audit(workspace: AuditWorkspace, premise_id: str = "premise-1") -> str:
    audit = workspace.create_audit(premise_id, {"operator_name": "Bistro s.r.o."})
    workspace.on_start_audit(audit.id)
    return audit.id
