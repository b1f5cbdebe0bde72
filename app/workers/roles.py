from __future__ import annotations

from app.domain.models import PipelineStage

ROLE_TO_STAGE: dict[str, PipelineStage] = {
    "worker-archive": PipelineStage.ARCHIVE,
    "worker-early-content": PipelineStage.EARLY_CONTENT,
    "worker-summary": PipelineStage.SUMMARY,
    "worker-score": PipelineStage.SCORE,
}
