from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.domain.models import ProcessingState, SummaryTier


SUBMISSION_ID_PATTERN = r"^sub_[0-9A-HJKMNP-TV-Z]{26}$"


class ErrorResponse(BaseModel):
    detail: str


class ReviewErrorResponse(BaseModel):
    code: str
    message: str


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    ticks_total: int
    claims_total: int
    idle_ticks_total: int
    errors_total: int
    reclaimed_total: int


class HealthResponse(BaseModel):
    status: str
    role: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    mode: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics


class CreateSubmissionRequest(BaseModel):
    hackathon_id: str = Field(min_length=1, max_length=128)
    title: str = Field(min_length=1, max_length=256)
    team: str = Field(min_length=1, max_length=256)
    repo_url: str = Field(min_length=1, max_length=2048)
    site_url: str | None = Field(default=None, max_length=2048)
    video_url: str | None = Field(default=None, max_length=2048)


class ScreenshotResponse(BaseModel):
    object_key: str
    url: str
    captured_at: datetime


class SourceResponse(BaseModel):
    archive_key: str | None = None
    archive_uploaded_at: datetime | None = None
    readme_filename: str | None = None
    readme_fetched_at: datetime | None = None
    screenshot_capture_started_at: datetime | None = None
    screenshot_capture_completed_at: datetime | None = None
    summary_tier: SummaryTier | None = None
    summarized_at: datetime | None = None
    content_index_sync_started_at: datetime | None = None
    content_index_sync_completed_at: datetime | None = None
    processing_state: ProcessingState | None = None
    processing_error: str | None = None


class NoSummaryResponse(BaseModel):
    kind: str
    title: str
    message: str
    can_retry: bool


class SubmissionResponse(BaseModel):
    submission_id: str = Field(pattern=SUBMISSION_ID_PATTERN)
    hackathon_id: str
    title: str
    team: str
    repo_url: str
    site_url: str | None = None
    video_url: str | None = None
    phase: str
    summary: str | None = None
    summary_source: Literal["manual", "derived"] | None = None
    manual_summary: str | None = None
    derived_summary: str | None = None
    no_summary: NoSummaryResponse | None = None
    source: SourceResponse
    screenshots: list[ScreenshotResponse]
    review_in_flight: bool
    score: float | None = None
    review_summary: str | None = None
    last_reviewed_at: datetime | None = None


class ManualSummaryRequest(BaseModel):
    summary: str | None = None


class RegenerateSummaryRequest(BaseModel):
    tier: SummaryTier = SummaryTier.FULL
    force_regenerate: bool = False


class EnqueuedJobResponse(BaseModel):
    job_id: str
    submission_id: str
    stage: str
    tier: SummaryTier | None = None
    force_regenerate: bool


class RetryResponse(BaseModel):
    submission_id: str
    enqueued_stages: list[str]


class RubricRequest(BaseModel):
    rubric: str = Field(min_length=1)


class RubricResponse(BaseModel):
    hackathon_id: str
    rubric: str


class ReviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    submission_id: str | None = Field(default=None, alias="submissionId")


class ReviewResponse(BaseModel):
    score: float
    summary: str
