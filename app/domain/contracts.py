from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from app.domain.dto import (
    AIGatewayRequest,
    AIGatewayResult,
    CreateSubmissionCommand,
    IndexAnswer,
    KeyPage,
    ReadmeDocument,
    RepositoryArchive,
)
from app.domain.models import PipelineJob, PipelineStage, ProcessingState, Screenshot, SubmissionSnapshot, SummaryTier
from app.domain.repo_url import RepoRef


@runtime_checkable
class SubmissionRepository(Protocol):
    """Persistence contract for submission records and the stage job queue.

    Writers touch disjoint sub-fields, so every update is a partial patch.
    Job claims must remain compatible with Postgres row claims using
    SELECT ... FOR UPDATE SKIP LOCKED.
    """

    async def create_submission(self, cmd: CreateSubmissionCommand) -> SubmissionSnapshot: ...

    async def get_submission(self, *, submission_id: str) -> SubmissionSnapshot | None: ...

    async def delete_submission(self, *, submission_id: str) -> bool: ...

    # Partial patch of the `source` group. Passing None clears a field.
    async def update_source(self, *, submission_id: str, **changes: object) -> None: ...

    # Minimal write used when a full source patch cannot be persisted.
    async def mark_processing_error(
        self,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState = ProcessingState.ERROR,
    ) -> None: ...

    async def update_ai(self, *, submission_id: str, **changes: object) -> None: ...

    async def set_manual_summary(self, *, submission_id: str, summary: str | None) -> None: ...

    async def add_screenshot(self, *, submission_id: str, screenshot: Screenshot) -> None: ...

    # Returns False when no screenshot with that key is attached.
    async def remove_screenshot(self, *, submission_id: str, object_key: str) -> bool: ...

    # Compare-and-set on ai.in_flight: succeeds iff the lock is free or its lease has expired.
    # The returned lease expiry is the token the holder passes back to release.
    async def try_acquire_review_lock(
        self,
        *,
        submission_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> datetime | None: ...

    # Clears the lock only while it is still held under `lease_expires_at`.
    async def release_review_lock(self, *, submission_id: str, lease_expires_at: datetime) -> bool: ...

    async def get_hackathon_rubric(self, *, hackathon_id: str) -> str | None: ...

    async def set_hackathon_rubric(self, *, hackathon_id: str, rubric: str) -> None: ...

    async def enqueue_job(
        self,
        *,
        submission_id: str,
        stage: PipelineStage,
        tier: SummaryTier | None = None,
        force_regenerate: bool = False,
        delay_seconds: float = 0,
    ) -> PipelineJob: ...

    async def claim_next_job(
        self,
        *,
        stage: PipelineStage,
        worker_id: str,
        lease_seconds: int = 30,
    ) -> PipelineJob | None: ...

    async def heartbeat_job(self, *, job_id: str, worker_id: str, lease_seconds: int = 30) -> bool: ...

    async def reclaim_expired_jobs(self, *, stage: PipelineStage) -> int: ...

    # Put a claimed job back without counting an attempt.
    async def reschedule_job(self, *, job_id: str, worker_id: str, delay_seconds: float) -> None: ...

    async def finalize_job(
        self,
        *,
        job_id: str,
        worker_id: str,
        success: bool,
        detail: str,
        error_code: str | None = None,
        retry_delay_seconds: float = 0,
    ) -> None: ...


@runtime_checkable
class ObjectStore(Protocol):
    """S3-compatible object storage; every key lives under a submission prefix."""

    def put_bytes(self, *, key: str, payload: bytes, content_type: str = "application/octet-stream") -> str: ...

    def get_bytes(self, *, key: str) -> bytes: ...

    def delete_key(self, *, key: str) -> None: ...

    def list_keys(self, *, prefix: str, continuation_token: str | None = None) -> KeyPage: ...

    def presigned_url(self, *, key: str, expires_in_seconds: int) -> str: ...


@runtime_checkable
class SourceHost(Protocol):
    async def get_default_branch(self, repo: RepoRef) -> str | None: ...

    # Returns None when the ref does not exist.
    async def download_archive(self, repo: RepoRef, *, ref: str) -> RepositoryArchive | None: ...

    async def fetch_readme(self, repo: RepoRef) -> ReadmeDocument | None: ...


@runtime_checkable
class ScreenshotClient(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def capture(self, *, url: str) -> str: ...

    async def download(self, *, image_url: str) -> bytes: ...


@runtime_checkable
class ContentIndex(Protocol):
    async def is_synced(self, *, prefix: str) -> bool: ...

    async def query(self, *, prefix: str, question: str) -> IndexAnswer: ...


@runtime_checkable
class AIGateway(Protocol):
    async def complete(self, request: AIGatewayRequest) -> AIGatewayResult: ...
