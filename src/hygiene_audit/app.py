"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from hygiene_audit.checklist.loader import load_checklist
from hygiene_audit.checklist.models import Checklist
from hygiene_audit.config import Settings, load_settings
from hygiene_audit.core.answers import AnswerStore
from hygiene_audit.core.lifecycle import AuditLifecycle
from hygiene_audit.core.locks import AuditLocks
from hygiene_audit.domain.models import AuditorSnapshot
from hygiene_audit.generation.controller import GenerationJobController
from hygiene_audit.generation.http_service import HttpGenerationService
from hygiene_audit.generation.service import GenerationService
from hygiene_audit.logging_utils import configure_logging
from hygiene_audit.reports.registry import ReportVersionRegistry
from hygiene_audit.storage.db import SqliteStore
from hygiene_audit.workspace import AuditWorkspace


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once per process; every audit screen shares the same workspace so
    per-audit serialization holds across sessions in this process.
    """

    settings: Settings
    store: SqliteStore
    checklist: Checklist
    service: GenerationService
    controller: GenerationJobController
    registry: ReportVersionRegistry
    workspace: AuditWorkspace

    def close(self) -> None:
        self.controller.shutdown()
        self.service.shutdown()
        self.store.close()


def build_app_context(
    settings: Settings,
    *,
    service: GenerationService | None = None,
    checklist: Checklist | None = None,
    store: SqliteStore | None = None,
) -> AppContext:
    store = store or SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
    checklist = checklist or load_checklist(settings.checklist.path)
    service = service or HttpGenerationService(settings.generation)
    auditor = AuditorSnapshot(**settings.auditor.model_dump())

    locks = AuditLocks()
    answers = AnswerStore(store, locks)
    registry = ReportVersionRegistry(store, locks)
    controller = GenerationJobController(
        store,
        registry,
        service,
        locks,
        timeout_seconds=settings.generation.timeout_seconds,
        auditor_provider=lambda: auditor,
        max_workers=settings.generation.max_workers,
    )
    lifecycle = AuditLifecycle(answers, controller, checklist, locks)
    workspace = AuditWorkspace(store, answers, lifecycle, controller, registry, locks)

    controller.reap_stale_jobs()

    return AppContext(
        settings=settings,
        store=store,
        checklist=checklist,
        service=service,
        controller=controller,
        registry=registry,
        workspace=workspace,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context."""
    configure_logging()
    return build_app_context(load_settings())
