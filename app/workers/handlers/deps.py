from __future__ import annotations

from dataclasses import dataclass

from app.domain.contracts import SubmissionRepository
from app.domain.use_cases.orchestrator import PipelineOrchestrator


@dataclass(frozen=True)
class WorkerDeps:
    repository: SubmissionRepository
    orchestrator: PipelineOrchestrator
