from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
import logging

from app.domain.artifacts import screenshot_object_key
from app.domain.contracts import ObjectStore, ScreenshotClient, SourceHost, SubmissionRepository
from app.domain.dto import EarlyContentResult
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.models import PipelineStage, Screenshot, SubmissionSnapshot, SummaryTier
from app.domain.repo_url import parse_repo_url

COMPONENT_ID = "domain.early_content.fetch"
SCREENSHOT_CONTENT_TYPE = "image/png"

logger = logging.getLogger("pipeline")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


async def fetch_early_content(
    *,
    submission_id: str,
    repository: SubmissionRepository,
    source_host: SourceHost,
    screenshots: ScreenshotClient,
    store: ObjectStore,
    presign_ttl_seconds: int,
    clock: Callable[[], datetime] = _utcnow,
) -> EarlyContentResult:
    """Collect README and site screenshot, then queue a quick summary if anything was found.

    The two sub-steps are independent. A failure in either is logged and
    leaves its completion marker unset; it never fails the stage.
    """
    snapshot = await repository.get_submission(submission_id=submission_id)
    if snapshot is None:
        raise SubmissionNotFoundError(submission_id)

    readme_found = await _fetch_readme(snapshot, repository=repository, source_host=source_host, clock=clock)
    screenshot_captured = False
    if snapshot.site_url:
        screenshot_captured = await _capture_screenshot(
            snapshot,
            repository=repository,
            screenshots=screenshots,
            store=store,
            presign_ttl_seconds=presign_ttl_seconds,
            clock=clock,
        )

    refreshed = await repository.get_submission(submission_id=submission_id)
    if refreshed is None:
        raise SubmissionNotFoundError(submission_id)
    has_early_content = bool(refreshed.source.readme) or len(refreshed.screenshots) > 0
    enqueue_quick = has_early_content and not refreshed.source.derived_summary
    if enqueue_quick:
        await repository.enqueue_job(
            submission_id=submission_id,
            stage=PipelineStage.SUMMARY,
            tier=SummaryTier.QUICK,
        )
    return EarlyContentResult(
        readme_found=readme_found,
        screenshot_captured=screenshot_captured,
        quick_summary_enqueued=enqueue_quick,
    )


async def _fetch_readme(
    snapshot: SubmissionSnapshot,
    *,
    repository: SubmissionRepository,
    source_host: SourceHost,
    clock: Callable[[], datetime],
) -> bool:
    submission_id = snapshot.submission_id
    document = None
    try:
        document = await source_host.fetch_readme(parse_repo_url(snapshot.repo_url))
    except PipelineError as exc:
        logger.warning(
            "readme fetch failed",
            extra={"submission_id": submission_id, "error_code": exc.code, "error": exc.message},
        )

    # The attempt is recorded even without content so the read side can move on.
    if document is None:
        await repository.update_source(submission_id=submission_id, readme_fetched_at=clock())
        return False
    await repository.update_source(
        submission_id=submission_id,
        readme=document.text,
        readme_filename=document.filename,
        readme_fetched_at=clock(),
    )
    return True


async def _capture_screenshot(
    snapshot: SubmissionSnapshot,
    *,
    repository: SubmissionRepository,
    screenshots: ScreenshotClient,
    store: ObjectStore,
    presign_ttl_seconds: int,
    clock: Callable[[], datetime],
) -> bool:
    """Take one full-page capture of the site and attach it to the record.

    Each run adds exactly one screenshot. Later runs append to the list and
    entries are removed through remove_screenshot.
    """
    submission_id = snapshot.submission_id
    site_url = snapshot.site_url or ""
    if not screenshots.enabled:
        logger.info("screenshot service not configured, skipping capture", extra={"submission_id": submission_id})
        return False

    await repository.update_source(submission_id=submission_id, screenshot_capture_started_at=clock())
    try:
        image_url = await screenshots.capture(url=site_url)
        image = await screenshots.download(image_url=image_url)
        captured_at = clock()
        key = screenshot_object_key(submission_id=submission_id, captured_at=captured_at)
        await asyncio.to_thread(store.put_bytes, key=key, payload=image, content_type=SCREENSHOT_CONTENT_TYPE)
        url = await asyncio.to_thread(store.presigned_url, key=key, expires_in_seconds=presign_ttl_seconds)
    except PipelineError as exc:
        logger.warning(
            "screenshot capture failed",
            extra={"submission_id": submission_id, "error_code": exc.code, "error": exc.message},
        )
        return False

    await repository.add_screenshot(
        submission_id=submission_id,
        screenshot=Screenshot(object_key=key, url=url, captured_at=captured_at),
    )
    await repository.update_source(submission_id=submission_id, screenshot_capture_completed_at=clock())
    return True
