from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
import logging
from typing import Any

from app.domain.artifacts import submission_prefix
from app.domain.contracts import (
    AIGateway,
    ContentIndex,
    ObjectStore,
    ScreenshotClient,
    SourceHost,
    SubmissionRepository,
)
from app.domain.dto import (
    ArchiveFetchResult,
    CreateSubmissionCommand,
    EarlyContentResult,
    RetryPlan,
    ScoreOutcome,
    SummaryOutcome,
)
from app.domain.error_taxonomy import classify_error, error_class, resolve_stage_error
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.lifecycle import STAGE_LIFECYCLES
from app.domain.models import (
    PipelineJob,
    PipelineStage,
    ProcessingState,
    ProcessResult,
    SubmissionSnapshot,
    SummaryTier,
)
from app.domain.prompt_spec import PromptSpec
from app.domain.repo_url import parse_repo_url
from app.domain.use_cases.archive_fetch import fetch_archive
from app.domain.use_cases.early_content import fetch_early_content
from app.domain.use_cases.failure_recorder import FailureRecorder
from app.domain.use_cases.score import generate_score
from app.domain.use_cases.summary import generate_summary
from app.lib.storage.cleanup import delete_prefix

COMPONENT_ID = "domain.pipeline.orchestrator"
DEFAULT_PRESIGN_TTL_SECONDS = 7 * 24 * 60 * 60

logger = logging.getLogger("pipeline")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PipelineOrchestrator:
    """Entry points for running, re-triggering and cleaning up pipeline stages.

    Stage executors never write processing_state=error themselves; failed
    archive and full-summary runs are recorded here through the failure
    recorder.
    """

    def __init__(
        self,
        *,
        repository: SubmissionRepository,
        store: ObjectStore,
        source_host: SourceHost,
        screenshots: ScreenshotClient,
        content_index: ContentIndex,
        ai_gateway: AIGateway,
        prompt_spec: PromptSpec,
        presign_ttl_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS,
        failure_recorder: FailureRecorder | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.store = store
        self.source_host = source_host
        self.screenshots = screenshots
        self.content_index = content_index
        self.ai_gateway = ai_gateway
        self.prompt_spec = prompt_spec
        self.presign_ttl_seconds = presign_ttl_seconds
        self.failure_recorder = failure_recorder or FailureRecorder()
        self.clock = clock
        self._cleanup_tasks: set[asyncio.Task[None]] = set()

    async def run_job(self, job: PipelineJob) -> ProcessResult:
        try:
            if job.stage == PipelineStage.ARCHIVE:
                archive = await self.fetch_archive(job.submission_id)
                return ProcessResult(success=True, detail=f"archive stored at {archive.archive_key}")
            if job.stage == PipelineStage.EARLY_CONTENT:
                early = await self.fetch_early_content(job.submission_id)
                return ProcessResult(
                    success=True,
                    detail=(
                        f"readme={early.readme_found} screenshot={early.screenshot_captured} "
                        f"quick_summary_enqueued={early.quick_summary_enqueued}"
                    ),
                )
            if job.stage == PipelineStage.SUMMARY:
                summary = await self.generate_summary(
                    job.submission_id,
                    tier=job.tier or SummaryTier.FULL,
                    force_regenerate=job.force_regenerate,
                    polls=job.polls,
                )
                return ProcessResult(
                    success=True,
                    detail=f"{summary.tier} summary {summary.status}"
                    + (f" ({summary.reason})" if summary.reason else ""),
                    reschedule_after_seconds=summary.retry_after_seconds if summary.status == "waiting" else None,
                )
            if job.stage == PipelineStage.SCORE:
                score = await self.generate_score(job.submission_id)
                return ProcessResult(success=True, detail=f"score {score.status}")
            raise PipelineError("INTERNAL_ERROR", f"unsupported stage: {job.stage}")
        except SubmissionNotFoundError:
            # The record was deleted while the job waited; nothing is left to process.
            logger.info("submission gone, dropping job", extra={"submission_id": job.submission_id, "job_id": job.job_id})
            return ProcessResult(success=True, detail="submission deleted")
        except PipelineError as exc:
            return await self._fail(job, code=exc.code, message=exc.message, retry_after_seconds=exc.retry_after_seconds)
        except Exception as exc:
            logger.exception(
                "stage raised unclassified error",
                extra={"submission_id": job.submission_id, "stage": job.stage, "job_id": job.job_id},
            )
            return await self._fail(job, code="INTERNAL_ERROR", message=str(exc) or type(exc).__name__)

    async def fetch_archive(self, submission_id: str) -> ArchiveFetchResult:
        return await fetch_archive(
            submission_id=submission_id,
            repository=self.repository,
            source_host=self.source_host,
            store=self.store,
            clock=self.clock,
        )

    async def fetch_early_content(self, submission_id: str) -> EarlyContentResult:
        return await fetch_early_content(
            submission_id=submission_id,
            repository=self.repository,
            source_host=self.source_host,
            screenshots=self.screenshots,
            store=self.store,
            presign_ttl_seconds=self.presign_ttl_seconds,
            clock=self.clock,
        )

    async def generate_summary(
        self,
        submission_id: str,
        *,
        tier: SummaryTier,
        force_regenerate: bool = False,
        polls: int = 0,
    ) -> SummaryOutcome:
        return await generate_summary(
            submission_id=submission_id,
            tier=tier,
            force_regenerate=force_regenerate,
            repository=self.repository,
            content_index=self.content_index,
            ai_gateway=self.ai_gateway,
            prompt_spec=self.prompt_spec,
            polls=polls,
            clock=self.clock,
        )

    async def generate_score(self, submission_id: str) -> ScoreOutcome:
        return await generate_score(
            submission_id=submission_id,
            repository=self.repository,
            ai_gateway=self.ai_gateway,
            prompt_spec=self.prompt_spec,
            clock=self.clock,
        )

    async def create_submission(self, cmd: CreateSubmissionCommand) -> SubmissionSnapshot:
        # Raises INVALID_REPO_URL before anything is written.
        parse_repo_url(cmd.repo_url)
        snapshot = await self.repository.create_submission(cmd)
        await self.enqueue_submission(snapshot.submission_id)
        logger.info("submission registered", extra={"submission_id": snapshot.submission_id})
        return await self._require(snapshot.submission_id)

    async def enqueue_submission(self, submission_id: str) -> None:
        await self.repository.update_source(submission_id=submission_id, processing_state=ProcessingState.QUEUED)
        await self.repository.enqueue_job(submission_id=submission_id, stage=PipelineStage.ARCHIVE)
        await self.repository.enqueue_job(submission_id=submission_id, stage=PipelineStage.EARLY_CONTENT)

    async def retry_processing(self, submission_id: str) -> RetryPlan:
        snapshot = await self._require(submission_id)
        await self.repository.update_source(
            submission_id=submission_id,
            processing_state=ProcessingState.QUEUED,
            processing_error=None,
        )
        stages: list[str] = []
        if not snapshot.source.archive_key:
            await self.repository.enqueue_job(submission_id=submission_id, stage=PipelineStage.ARCHIVE)
            stages.append(PipelineStage.ARCHIVE.value)
        await self.repository.enqueue_job(submission_id=submission_id, stage=PipelineStage.EARLY_CONTENT)
        stages.append(PipelineStage.EARLY_CONTENT.value)
        if snapshot.source.archive_key:
            await self.repository.enqueue_job(
                submission_id=submission_id,
                stage=PipelineStage.SUMMARY,
                tier=SummaryTier.FULL,
            )
            stages.append(PipelineStage.SUMMARY.value)
        logger.info("processing retry requested", extra={"submission_id": submission_id, "stages": stages})
        return RetryPlan(submission_id=submission_id, enqueued_stages=tuple(stages))

    async def regenerate_summary(
        self,
        submission_id: str,
        *,
        tier: SummaryTier,
        force_regenerate: bool,
    ) -> PipelineJob:
        await self._require(submission_id)
        return await self.repository.enqueue_job(
            submission_id=submission_id,
            stage=PipelineStage.SUMMARY,
            tier=tier,
            force_regenerate=force_regenerate,
        )

    async def set_manual_summary(self, submission_id: str, summary: str | None) -> SubmissionSnapshot:
        await self._require(submission_id)
        normalized = summary.strip() if summary is not None else None
        await self.repository.set_manual_summary(submission_id=submission_id, summary=normalized or None)
        return await self._require(submission_id)

    async def delete_submission(self, submission_id: str) -> bool:
        """Delete the record, then clean up its objects in the background.

        Cleanup failures are logged and never undo or block the deletion.
        """
        deleted = await self.repository.delete_submission(submission_id=submission_id)
        if not deleted:
            return False
        self._schedule_cleanup(self._cleanup_objects(submission_id))
        return True

    async def remove_screenshot(self, submission_id: str, object_key: str) -> bool:
        """Detach a screenshot from the record, then delete its object in the background."""
        await self._require(submission_id)
        removed = await self.repository.remove_screenshot(submission_id=submission_id, object_key=object_key)
        if not removed:
            return False
        logger.info("screenshot removed", extra={"submission_id": submission_id, "object_key": object_key})
        self._schedule_cleanup(self._delete_object(submission_id, object_key))
        return True

    async def record_stage_failure(
        self,
        submission_id: str,
        *,
        stage: PipelineStage,
        code: str,
        message: str,
        tier: SummaryTier | None = None,
    ) -> bool:
        """Persist a classified stage failure on the record when the stage owns processing_state.

        Input errors are rejected without touching the record. Returns True
        when the failure was written.
        """
        error_code = resolve_stage_error(stage=stage, code=code)
        if error_class(error_code) == "input":
            return False
        if stage == PipelineStage.SUMMARY and tier == SummaryTier.QUICK:
            return False
        if not STAGE_LIFECYCLES[stage].records_failure:
            return False
        return await self.failure_recorder.record(self.repository, submission_id=submission_id, message=message)

    def _schedule_cleanup(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def drain_cleanups(self) -> None:
        if self._cleanup_tasks:
            await asyncio.gather(*tuple(self._cleanup_tasks))

    async def _cleanup_objects(self, submission_id: str) -> None:
        prefix = submission_prefix(submission_id)
        try:
            result = await delete_prefix(self.store, prefix=prefix)
        except Exception as exc:
            logger.warning(
                "object cleanup failed",
                extra={"submission_id": submission_id, "prefix": prefix, "error": str(exc)},
            )
            return
        logger.info(
            "object cleanup finished",
            extra={
                "submission_id": submission_id,
                "prefix": prefix,
                "pages": result.pages,
                "deleted": result.deleted,
                "failed": result.failed,
            },
        )

    async def _delete_object(self, submission_id: str, object_key: str) -> None:
        try:
            await asyncio.to_thread(self.store.delete_key, key=object_key)
        except Exception as exc:
            logger.warning(
                "object delete failed",
                extra={"submission_id": submission_id, "object_key": object_key, "error": str(exc)},
            )

    async def _fail(
        self,
        job: PipelineJob,
        *,
        code: str,
        message: str,
        retry_after_seconds: float | None = None,
    ) -> ProcessResult:
        error_code = resolve_stage_error(stage=job.stage, code=code)
        await self.record_stage_failure(
            job.submission_id,
            stage=job.stage,
            code=error_code,
            message=message,
            tier=job.tier,
        )
        return ProcessResult(
            success=False,
            detail=message,
            error_code=error_code,
            retry_classification=classify_error(error_code),
            retry_after_seconds=retry_after_seconds,
        )

    async def _require(self, submission_id: str) -> SubmissionSnapshot:
        snapshot = await self.repository.get_submission(submission_id=submission_id)
        if snapshot is None:
            raise SubmissionNotFoundError(submission_id)
        return snapshot
