from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from app.domain.error_taxonomy import ErrorCode, RetryClassification


# Canonical values of source.processing_state.
#
# IMPORTANT:
# - Keep this enum synchronized with the DB CHECK constraint in
#   db/migrations/000001_bootstrap.up.sql.
# - The value is advisory. Read-side code derives progress from timestamps
#   (see app/domain/stage_inference.py) and never trusts COMPLETE alone.
class ProcessingState(StrEnum):
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    INDEXING = "indexing"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class PipelineStage(StrEnum):
    ARCHIVE = "archive"
    EARLY_CONTENT = "early-content"
    SUMMARY = "summary"
    SCORE = "score"


class SummaryTier(StrEnum):
    QUICK = "quick"
    FULL = "full"


class JobStatus(StrEnum):
    PENDING = "pending"
    CLAIMED = "claimed"
    DONE = "done"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class Screenshot:
    object_key: str
    url: str
    captured_at: datetime


@dataclass(frozen=True)
class SubmissionSource:
    archive_key: str | None = None
    archive_uploaded_at: datetime | None = None
    readme: str | None = None
    readme_filename: str | None = None
    readme_fetched_at: datetime | None = None
    screenshot_capture_started_at: datetime | None = None
    screenshot_capture_completed_at: datetime | None = None
    derived_summary: str | None = None
    summary_tier: SummaryTier | None = None
    summarized_at: datetime | None = None
    content_index_sync_started_at: datetime | None = None
    content_index_sync_completed_at: datetime | None = None
    processing_state: ProcessingState | None = None
    processing_error: str | None = None


@dataclass(frozen=True)
class SubmissionAI:
    review_summary: str | None = None
    score: float | None = None
    in_flight: bool = False
    in_flight_expires_at: datetime | None = None
    last_reviewed_at: datetime | None = None
    score_generation_started_at: datetime | None = None
    score_generation_completed_at: datetime | None = None


@dataclass(frozen=True)
class SubmissionSnapshot:
    submission_id: str
    hackathon_id: str
    title: str
    team: str
    repo_url: str
    site_url: str | None = None
    video_url: str | None = None
    manual_summary: str | None = None
    source: SubmissionSource = field(default_factory=SubmissionSource)
    ai: SubmissionAI = field(default_factory=SubmissionAI)
    screenshots: tuple[Screenshot, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PipelineJob:
    job_id: str
    submission_id: str
    stage: PipelineStage
    attempt: int
    tier: SummaryTier | None = None
    force_regenerate: bool = False
    # Number of times the job was re-queued while waiting on an external signal.
    polls: int = 0
    lease_expires_at: datetime | None = None


@dataclass(frozen=True)
class ProcessResult:
    success: bool
    detail: str = ""
    error_code: ErrorCode | None = None
    retry_classification: RetryClassification | None = None
    # Re-queue the same job after this delay instead of counting a failure.
    reschedule_after_seconds: float | None = None
    # Upstream hint for the next attempt of a recoverable failure.
    retry_after_seconds: float | None = None
