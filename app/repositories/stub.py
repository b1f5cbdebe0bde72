from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime, timedelta
import itertools

from app.domain.dto import CreateSubmissionCommand
from app.domain.errors import DomainInvariantError, SubmissionNotFoundError
from app.domain.error_taxonomy import classify_error, resolve_stage_error
from app.domain.ids import new_job_public_id, new_submission_public_id
from app.domain.lifecycle import STAGE_LIFECYCLES, truncate_processing_error
from app.domain.models import (
    JobStatus,
    PipelineJob,
    PipelineStage,
    ProcessingState,
    Screenshot,
    SubmissionAI,
    SubmissionSnapshot,
    SubmissionSource,
    SummaryTier,
)

SOURCE_FIELDS = frozenset(item.name for item in fields(SubmissionSource))
AI_FIELDS = frozenset(item.name for item in fields(SubmissionAI))


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class _JobRow:
    job_id: str
    submission_id: str
    stage: PipelineStage
    tier: SummaryTier | None
    force_regenerate: bool
    seq: int
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    polls: int = 0
    available_at: datetime = field(default_factory=_utcnow)
    claimed_by: str | None = None
    lease_expires_at: datetime | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None

    def to_job(self) -> PipelineJob:
        return PipelineJob(
            job_id=self.job_id,
            submission_id=self.submission_id,
            stage=self.stage,
            attempt=self.attempts + 1,
            tier=self.tier,
            force_regenerate=self.force_regenerate,
            polls=self.polls,
            lease_expires_at=self.lease_expires_at,
        )


@dataclass
class InMemorySubmissionRepository:
    """Non-network repository with deterministic behavior for skeleton mode and tests."""

    submissions: dict[str, SubmissionSnapshot] = field(default_factory=dict)
    rubrics: dict[str, str] = field(default_factory=dict)
    jobs: dict[str, _JobRow] = field(default_factory=dict)
    finalizations: list[tuple[str, str, bool, str]] = field(default_factory=list)
    clock: Callable[[], datetime] = _utcnow
    _seq: itertools.count = field(default_factory=itertools.count)

    async def create_submission(self, cmd: CreateSubmissionCommand) -> SubmissionSnapshot:
        now = self.clock()
        snapshot = SubmissionSnapshot(
            submission_id=new_submission_public_id(),
            hackathon_id=cmd.hackathon_id,
            title=cmd.title,
            team=cmd.team,
            repo_url=cmd.repo_url,
            site_url=cmd.site_url,
            video_url=cmd.video_url,
            created_at=now,
            updated_at=now,
        )
        self.submissions[snapshot.submission_id] = snapshot
        return snapshot

    async def get_submission(self, *, submission_id: str) -> SubmissionSnapshot | None:
        return self.submissions.get(submission_id)

    async def delete_submission(self, *, submission_id: str) -> bool:
        if self.submissions.pop(submission_id, None) is None:
            return False
        # Mirror ON DELETE CASCADE of the jobs table.
        for job_id in [key for key, row in self.jobs.items() if row.submission_id == submission_id]:
            del self.jobs[job_id]
        return True

    async def update_source(self, *, submission_id: str, **changes: object) -> None:
        unknown = set(changes) - SOURCE_FIELDS
        if unknown:
            raise DomainInvariantError(f"unknown source fields: {sorted(unknown)}")
        message = changes.get("processing_error")
        if isinstance(message, str):
            changes["processing_error"] = truncate_processing_error(message)
        snapshot = self._require(submission_id)
        self._store(replace(snapshot, source=replace(snapshot.source, **changes)))

    async def mark_processing_error(
        self,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState = ProcessingState.ERROR,
    ) -> None:
        snapshot = self._require(submission_id)
        source = replace(
            snapshot.source,
            processing_state=next_state,
            processing_error=truncate_processing_error(message),
        )
        self._store(replace(snapshot, source=source))

    async def update_ai(self, *, submission_id: str, **changes: object) -> None:
        unknown = set(changes) - AI_FIELDS
        if unknown:
            raise DomainInvariantError(f"unknown ai fields: {sorted(unknown)}")
        snapshot = self._require(submission_id)
        self._store(replace(snapshot, ai=replace(snapshot.ai, **changes)))

    async def set_manual_summary(self, *, submission_id: str, summary: str | None) -> None:
        snapshot = self._require(submission_id)
        self._store(replace(snapshot, manual_summary=summary))

    async def add_screenshot(self, *, submission_id: str, screenshot: Screenshot) -> None:
        snapshot = self._require(submission_id)
        self._store(replace(snapshot, screenshots=(*snapshot.screenshots, screenshot)))

    async def remove_screenshot(self, *, submission_id: str, object_key: str) -> bool:
        snapshot = self._require(submission_id)
        kept = tuple(item for item in snapshot.screenshots if item.object_key != object_key)
        if len(kept) == len(snapshot.screenshots):
            return False
        self._store(replace(snapshot, screenshots=kept))
        return True

    async def try_acquire_review_lock(
        self,
        *,
        submission_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> datetime | None:
        snapshot = self.submissions.get(submission_id)
        if snapshot is None:
            return None
        current = now or self.clock()
        ai = snapshot.ai
        if ai.in_flight and ai.in_flight_expires_at is not None and ai.in_flight_expires_at > current:
            return None
        expires_at = current + timedelta(seconds=lease_seconds)
        # No await between check and write: atomic on a single event loop.
        self._store(replace(snapshot, ai=replace(ai, in_flight=True, in_flight_expires_at=expires_at)))
        return expires_at

    async def release_review_lock(self, *, submission_id: str, lease_expires_at: datetime) -> bool:
        snapshot = self.submissions.get(submission_id)
        if snapshot is None:
            return False
        ai = snapshot.ai
        if not ai.in_flight or ai.in_flight_expires_at != lease_expires_at:
            return False
        self._store(replace(snapshot, ai=replace(ai, in_flight=False, in_flight_expires_at=None)))
        return True

    async def get_hackathon_rubric(self, *, hackathon_id: str) -> str | None:
        return self.rubrics.get(hackathon_id)

    async def set_hackathon_rubric(self, *, hackathon_id: str, rubric: str) -> None:
        self.rubrics[hackathon_id] = rubric.strip()

    async def enqueue_job(
        self,
        *,
        submission_id: str,
        stage: PipelineStage,
        tier: SummaryTier | None = None,
        force_regenerate: bool = False,
        delay_seconds: float = 0,
    ) -> PipelineJob:
        self._require(submission_id)
        # One pending job per (submission, stage, tier); a repeat enqueue merges into it.
        for row in self.jobs.values():
            if (
                row.status == JobStatus.PENDING
                and row.submission_id == submission_id
                and row.stage == stage
                and row.tier == tier
            ):
                row.force_regenerate = row.force_regenerate or force_regenerate
                return row.to_job()

        row = _JobRow(
            job_id=new_job_public_id(),
            submission_id=submission_id,
            stage=stage,
            tier=tier,
            force_regenerate=force_regenerate,
            seq=next(self._seq),
            available_at=self.clock() + timedelta(seconds=delay_seconds),
        )
        self.jobs[row.job_id] = row
        return row.to_job()

    async def claim_next_job(
        self,
        *,
        stage: PipelineStage,
        worker_id: str,
        lease_seconds: int = 30,
    ) -> PipelineJob | None:
        now = self.clock()
        candidates = [
            row
            for row in self.jobs.values()
            if row.stage == stage and row.status == JobStatus.PENDING and row.available_at <= now
        ]
        if not candidates:
            return None
        row = min(candidates, key=lambda item: (item.available_at, item.seq))
        row.status = JobStatus.CLAIMED
        row.claimed_by = worker_id
        row.lease_expires_at = now + timedelta(seconds=lease_seconds)
        return row.to_job()

    async def heartbeat_job(self, *, job_id: str, worker_id: str, lease_seconds: int = 30) -> bool:
        row = self.jobs.get(job_id)
        if row is None or not self._owns(row, worker_id=worker_id):
            return False
        row.lease_expires_at = self.clock() + timedelta(seconds=lease_seconds)
        return True

    async def reclaim_expired_jobs(self, *, stage: PipelineStage) -> int:
        lifecycle = STAGE_LIFECYCLES[stage]
        now = self.clock()
        reclaimed = 0
        for row in self.jobs.values():
            if (
                row.stage == stage
                and row.status == JobStatus.CLAIMED
                and row.lease_expires_at is not None
                and row.lease_expires_at <= now
            ):
                row.attempts += 1
                row.last_error_code = "INTERNAL_ERROR"
                row.last_error_message = "claim lease expired and was reclaimed"
                row.claimed_by = None
                row.lease_expires_at = None
                row.status = JobStatus.PENDING if row.attempts < lifecycle.max_attempts else JobStatus.DEAD_LETTER
                reclaimed += 1
        return reclaimed

    async def reschedule_job(self, *, job_id: str, worker_id: str, delay_seconds: float) -> None:
        row = self.jobs.get(job_id)
        if row is None:
            return
        if not self._owns(row, worker_id=worker_id):
            raise DomainInvariantError("job ownership is stale")
        row.polls += 1
        row.status = JobStatus.PENDING
        row.available_at = self.clock() + timedelta(seconds=delay_seconds)
        row.claimed_by = None
        row.lease_expires_at = None

    async def finalize_job(
        self,
        *,
        job_id: str,
        worker_id: str,
        success: bool,
        detail: str,
        error_code: str | None = None,
        retry_delay_seconds: float = 0,
    ) -> None:
        self.finalizations.append((job_id, worker_id, success, detail))
        row = self.jobs.get(job_id)
        if row is None:
            # Submission was deleted while the job ran.
            return
        if not self._owns(row, worker_id=worker_id):
            raise DomainInvariantError("job ownership is stale")

        now = self.clock()
        if success:
            row.status = JobStatus.DONE
            row.last_error_code = None
            row.last_error_message = None
        else:
            lifecycle = STAGE_LIFECYCLES[row.stage]
            resolved_error_code = resolve_stage_error(stage=row.stage, code=error_code or "INTERNAL_ERROR")
            row.attempts += 1
            row.last_error_code = resolved_error_code
            row.last_error_message = detail
            # Mirror Postgres behavior: terminal -> failed, recoverable -> retry/dead_letter.
            if classify_error(resolved_error_code) == "terminal":
                row.status = JobStatus.FAILED
            elif row.attempts >= lifecycle.max_attempts:
                row.status = JobStatus.DEAD_LETTER
            else:
                row.status = JobStatus.PENDING
                row.available_at = now + timedelta(seconds=retry_delay_seconds)

        row.claimed_by = None
        row.lease_expires_at = None

    def jobs_for(self, submission_id: str, *, stage: PipelineStage | None = None) -> list[_JobRow]:
        return sorted(
            (
                row
                for row in self.jobs.values()
                if row.submission_id == submission_id and (stage is None or row.stage == stage)
            ),
            key=lambda item: item.seq,
        )

    def _owns(self, row: _JobRow, *, worker_id: str) -> bool:
        return (
            row.status == JobStatus.CLAIMED
            and row.claimed_by == worker_id
            and row.lease_expires_at is not None
            and row.lease_expires_at > self.clock()
        )

    def _require(self, submission_id: str) -> SubmissionSnapshot:
        snapshot = self.submissions.get(submission_id)
        if snapshot is None:
            raise SubmissionNotFoundError(submission_id)
        return snapshot

    def _store(self, snapshot: SubmissionSnapshot) -> None:
        self.submissions[snapshot.submission_id] = replace(snapshot, updated_at=self.clock())
