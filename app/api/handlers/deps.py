from __future__ import annotations

from dataclasses import dataclass

from app.domain.contracts import SubmissionRepository
from app.domain.use_cases.orchestrator import PipelineOrchestrator
from app.settings import ReviewSettings


@dataclass(frozen=True)
class ApiDeps:
    repository: SubmissionRepository
    orchestrator: PipelineOrchestrator
    review_settings: ReviewSettings
