from __future__ import annotations

from app.api.handlers.deps import ApiDeps
from app.api.schemas import (
    CreateSubmissionRequest,
    EnqueuedJobResponse,
    NoSummaryResponse,
    RetryResponse,
    ScreenshotResponse,
    SourceResponse,
    SubmissionResponse,
)
from app.domain.dto import CreateSubmissionCommand
from app.domain.models import SubmissionSnapshot, SummaryTier
from app.domain.stage_inference import describe_submission

COMPONENT_ID = "api.submissions"


async def create_submission_handler(*, request: CreateSubmissionRequest, api_deps: ApiDeps) -> SubmissionResponse:
    snapshot = await api_deps.orchestrator.create_submission(
        CreateSubmissionCommand(
            hackathon_id=request.hackathon_id,
            title=request.title,
            team=request.team,
            repo_url=request.repo_url,
            site_url=request.site_url or None,
            video_url=request.video_url or None,
        )
    )
    return submission_response(snapshot)


async def get_submission_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse | None:
    snapshot = await api_deps.repository.get_submission(submission_id=submission_id)
    if snapshot is None:
        return None
    return submission_response(snapshot)


async def delete_submission_handler(*, submission_id: str, api_deps: ApiDeps) -> bool:
    return await api_deps.orchestrator.delete_submission(submission_id)


async def remove_screenshot_handler(*, submission_id: str, object_key: str, api_deps: ApiDeps) -> bool:
    return await api_deps.orchestrator.remove_screenshot(submission_id, object_key)


async def set_manual_summary_handler(
    *,
    submission_id: str,
    summary: str | None,
    api_deps: ApiDeps,
) -> SubmissionResponse:
    snapshot = await api_deps.orchestrator.set_manual_summary(submission_id, summary)
    return submission_response(snapshot)


async def retry_processing_handler(*, submission_id: str, api_deps: ApiDeps) -> RetryResponse:
    plan = await api_deps.orchestrator.retry_processing(submission_id)
    return RetryResponse(submission_id=plan.submission_id, enqueued_stages=list(plan.enqueued_stages))


async def regenerate_summary_handler(
    *,
    submission_id: str,
    tier: SummaryTier,
    force_regenerate: bool,
    api_deps: ApiDeps,
) -> EnqueuedJobResponse:
    job = await api_deps.orchestrator.regenerate_summary(
        submission_id,
        tier=tier,
        force_regenerate=force_regenerate,
    )
    return EnqueuedJobResponse(
        job_id=job.job_id,
        submission_id=job.submission_id,
        stage=job.stage.value,
        tier=job.tier,
        force_regenerate=job.force_regenerate,
    )


def submission_response(snapshot: SubmissionSnapshot) -> SubmissionResponse:
    """Read model: stored fields plus the phase and no-summary explanation inferred from them."""
    view = describe_submission(snapshot)
    source = snapshot.source
    no_summary = None
    if view.no_summary is not None:
        no_summary = NoSummaryResponse(
            kind=view.no_summary.kind.value,
            title=view.no_summary.title,
            message=view.no_summary.message,
            can_retry=view.no_summary.can_retry,
        )
    return SubmissionResponse(
        submission_id=snapshot.submission_id,
        hackathon_id=snapshot.hackathon_id,
        title=snapshot.title,
        team=snapshot.team,
        repo_url=snapshot.repo_url,
        site_url=snapshot.site_url,
        video_url=snapshot.video_url,
        phase=view.phase.value,
        summary=view.effective_summary,
        summary_source=view.summary_source,
        manual_summary=snapshot.manual_summary,
        derived_summary=source.derived_summary,
        no_summary=no_summary,
        source=SourceResponse(
            archive_key=source.archive_key,
            archive_uploaded_at=source.archive_uploaded_at,
            readme_filename=source.readme_filename,
            readme_fetched_at=source.readme_fetched_at,
            screenshot_capture_started_at=source.screenshot_capture_started_at,
            screenshot_capture_completed_at=source.screenshot_capture_completed_at,
            summary_tier=source.summary_tier,
            summarized_at=source.summarized_at,
            content_index_sync_started_at=source.content_index_sync_started_at,
            content_index_sync_completed_at=source.content_index_sync_completed_at,
            processing_state=source.processing_state,
            processing_error=source.processing_error,
        ),
        screenshots=[
            ScreenshotResponse(object_key=item.object_key, url=item.url, captured_at=item.captured_at)
            for item in snapshot.screenshots
        ],
        review_in_flight=view.review_in_flight,
        score=view.score,
        review_summary=view.review_summary,
        last_reviewed_at=view.last_reviewed_at,
    )
