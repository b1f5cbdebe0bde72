from __future__ import annotations

from dataclasses import dataclass

from app.domain.models import PipelineStage


@dataclass(frozen=True)
class StageLifecycle:
    stage: PipelineStage
    # Whether a failed run is persisted into processing_state/processing_error.
    records_failure: bool
    max_attempts: int = 3


STAGE_LIFECYCLES: dict[PipelineStage, StageLifecycle] = {
    PipelineStage.ARCHIVE: StageLifecycle(
        stage=PipelineStage.ARCHIVE,
        records_failure=True,
    ),
    PipelineStage.EARLY_CONTENT: StageLifecycle(
        stage=PipelineStage.EARLY_CONTENT,
        records_failure=False,
        max_attempts=1,
    ),
    PipelineStage.SUMMARY: StageLifecycle(
        stage=PipelineStage.SUMMARY,
        records_failure=True,
    ),
    PipelineStage.SCORE: StageLifecycle(
        stage=PipelineStage.SCORE,
        records_failure=False,
    ),
}

# Index polling for the full summary tier: 30 polls, 2s apart.
INDEX_POLL_MAX_ATTEMPTS = 30
INDEX_POLL_INTERVAL_SECONDS = 2.0

MAX_PROCESSING_ERROR_LENGTH = 750


def truncate_processing_error(message: str) -> str:
    return message[:MAX_PROCESSING_ERROR_LENGTH]
