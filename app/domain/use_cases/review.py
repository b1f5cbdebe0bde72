from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
import logging
import time

from app.domain.artifacts import submission_prefix
from app.domain.dto import ReviewOutcome
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.models import PipelineStage, SubmissionSnapshot, SummaryTier
from app.domain.use_cases.orchestrator import PipelineOrchestrator
from app.settings import ReviewSettings

COMPONENT_ID = "domain.review.run"

Sleep = Callable[[float], Awaitable[None]]

logger = logging.getLogger("pipeline")


async def run_review(
    submission_id: str | None,
    *,
    orchestrator: PipelineOrchestrator,
    settings: ReviewSettings,
    sleep: Sleep = asyncio.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> ReviewOutcome:
    """Produce a rubric score for one submission, at most one run at a time.

    The review lock is a lease: a crashed run frees it after
    settings.lock_lease_seconds. Every path that acquired it releases it, and a
    run whose lease was taken over leaves the new holder's lock alone.
    """
    if not submission_id or not submission_id.strip():
        return ReviewOutcome(code="INVALID_INPUT", message="submissionId is required")

    repository = orchestrator.repository
    try:
        snapshot = await repository.get_submission(submission_id=submission_id)
        if snapshot is None:
            return ReviewOutcome(code="NOT_FOUND", message="Submission not found")
        rubric = await repository.get_hackathon_rubric(hackathon_id=snapshot.hackathon_id)
        if not rubric:
            return ReviewOutcome(code="NOT_FOUND", message="Hackathon rubric not found")

        lease_expires_at = await repository.try_acquire_review_lock(
            submission_id=submission_id,
            lease_seconds=settings.lock_lease_seconds,
        )
    except Exception as exc:
        logger.exception("review setup failed", extra={"submission_id": submission_id})
        return ReviewOutcome(code="SERVER_ERROR", message=str(exc) or "Internal server error")

    if lease_expires_at is None:
        return ReviewOutcome(code="IN_FLIGHT", message="AI review is already in progress")

    try:
        await _ensure_summary(
            snapshot,
            orchestrator=orchestrator,
            settings=settings,
            sleep=sleep,
            monotonic=monotonic,
        )
        outcome = await orchestrator.generate_score(submission_id)
        if outcome.status != "generated" or outcome.score is None:
            return ReviewOutcome(code="NOT_FOUND", message="Hackathon rubric not found")
        return ReviewOutcome(code="OK", score=outcome.score, summary=outcome.summary)
    except SubmissionNotFoundError:
        return ReviewOutcome(code="NOT_FOUND", message="Submission not found")
    except PipelineError as exc:
        logger.warning(
            "review failed",
            extra={"submission_id": submission_id, "error_code": exc.code, "error": exc.message},
        )
        return ReviewOutcome(code=exc.code, message=exc.message, retry_after_seconds=exc.retry_after_seconds)
    except Exception as exc:
        logger.exception("review raised unclassified error", extra={"submission_id": submission_id})
        return ReviewOutcome(code="SERVER_ERROR", message=str(exc) or "Internal server error")
    finally:
        await _release_lock(orchestrator, submission_id=submission_id, lease_expires_at=lease_expires_at)


async def _ensure_summary(
    snapshot: SubmissionSnapshot,
    *,
    orchestrator: PipelineOrchestrator,
    settings: ReviewSettings,
    sleep: Sleep,
    monotonic: Callable[[], float],
) -> None:
    submission_id = snapshot.submission_id
    if not snapshot.source.archive_key:
        try:
            await orchestrator.fetch_archive(submission_id)
        except PipelineError as exc:
            await orchestrator.record_stage_failure(
                submission_id,
                stage=PipelineStage.ARCHIVE,
                code=exc.code,
                message=exc.message,
            )
            raise
        snapshot = await _reload(orchestrator, submission_id)

    if not snapshot.source.derived_summary:
        indexed = snapshot.source.content_index_sync_completed_at is not None or (
            await orchestrator.content_index.is_synced(prefix=submission_prefix(submission_id))
        )
        tier = SummaryTier.FULL if indexed else SummaryTier.QUICK
        try:
            await orchestrator.generate_summary(submission_id, tier=tier)
        except PipelineError as exc:
            await orchestrator.record_stage_failure(
                submission_id,
                stage=PipelineStage.SUMMARY,
                code=exc.code,
                message=exc.message,
                tier=tier,
            )
            raise

    # Background workers may still be producing the summary.
    deadline = monotonic() + settings.poll_timeout_seconds
    while True:
        snapshot = await _reload(orchestrator, submission_id)
        if snapshot.source.derived_summary:
            return
        if monotonic() >= deadline:
            raise PipelineError(
                "NO_SUMMARY",
                f"no repository summary after waiting {settings.poll_timeout_seconds}s",
            )
        await sleep(settings.poll_interval_seconds)


async def _reload(orchestrator: PipelineOrchestrator, submission_id: str) -> SubmissionSnapshot:
    snapshot = await orchestrator.repository.get_submission(submission_id=submission_id)
    if snapshot is None:
        raise SubmissionNotFoundError(submission_id)
    return snapshot


async def _release_lock(
    orchestrator: PipelineOrchestrator,
    *,
    submission_id: str,
    lease_expires_at: datetime,
) -> None:
    try:
        released = await orchestrator.repository.release_review_lock(
            submission_id=submission_id,
            lease_expires_at=lease_expires_at,
        )
    except Exception as exc:
        # The lease expiry frees the lock eventually.
        logger.warning("review lock release failed", extra={"submission_id": submission_id, "error": str(exc)})
        return
    if not released:
        logger.warning("review lock lease expired before release", extra={"submission_id": submission_id})
