"""Report generation jobs and service clients."""

from hygiene_audit.generation.controller import GenerationJobController, JobState
from hygiene_audit.generation.service import (
    GenerationOutcome,
    GenerationRequest,
    GenerationService,
    JobHandle,
)

__all__ = [
    "GenerationJobController",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationService",
    "JobHandle",
    "JobState",
]
