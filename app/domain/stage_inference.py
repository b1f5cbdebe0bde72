from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from app.domain.models import ProcessingState, SubmissionSnapshot, SummaryTier

# Read-side reconstruction of pipeline progress.
#
# Several background writers update one record independently, so the phase
# shown to users is derived from timestamps and flags on a snapshot instead
# of being stored. Everything here is pure: no I/O, no clock, no exceptions.


class PipelinePhase(StrEnum):
    FETCHING_README = "fetching-readme"
    MAPPING_URLS = "mapping-urls"
    CAPTURING_SCREENSHOTS = "capturing-screenshots"
    GENERATING_SUMMARY = "generating-summary"
    NONE = "none"


class NoSummaryKind(StrEnum):
    REPOSITORY_FAILED = "repository_failed"
    PARTIAL_FAILURE = "partial_failure"
    AWAITING_FULL_SUMMARY = "awaiting_full_summary"
    NOTHING_AVAILABLE = "nothing_available"


@dataclass(frozen=True)
class NoSummaryExplanation:
    kind: NoSummaryKind
    title: str
    message: str
    can_retry: bool


@dataclass(frozen=True)
class SubmissionView:
    submission_id: str
    effective_summary: str | None
    summary_source: str | None
    summary_tier: SummaryTier | None
    phase: PipelinePhase
    no_summary: NoSummaryExplanation | None
    processing_state: ProcessingState | None
    processing_error: str | None
    review_in_flight: bool
    score: float | None
    review_summary: str | None
    last_reviewed_at: datetime | None
    screenshot_urls: tuple[str, ...]


def effective_summary(snapshot: SubmissionSnapshot) -> str | None:
    """Manual summary wins over the machine summary; neither is ever erased by the other."""
    if _has_text(snapshot.manual_summary):
        return snapshot.manual_summary
    if _has_text(snapshot.source.derived_summary):
        return snapshot.source.derived_summary
    return None


def infer_pipeline_phase(snapshot: SubmissionSnapshot) -> PipelinePhase:
    """Return the user-facing phase; first matching rule wins."""
    source = snapshot.source
    has_summary = effective_summary(snapshot) is not None
    readme_fetched = source.readme_fetched_at is not None
    capture_started = source.screenshot_capture_started_at is not None
    capture_completed = source.screenshot_capture_completed_at is not None
    site_url = _has_text(snapshot.site_url)

    if has_summary:
        return PipelinePhase.NONE
    if _has_blocking_error(snapshot) and not _has_alternate_source(snapshot):
        return PipelinePhase.NONE
    if source.content_index_sync_completed_at is not None:
        return PipelinePhase.NONE
    if not readme_fetched and _has_text(snapshot.repo_url):
        return PipelinePhase.FETCHING_README
    if readme_fetched and site_url and not capture_started:
        return PipelinePhase.MAPPING_URLS
    if capture_started and not capture_completed:
        return PipelinePhase.CAPTURING_SCREENSHOTS
    if readme_fetched and (not site_url or capture_completed):
        return PipelinePhase.GENERATING_SUMMARY
    return PipelinePhase.NONE


def explain_missing_summary(snapshot: SubmissionSnapshot) -> NoSummaryExplanation | None:
    """Explain why no summary exists once there is no phase left to show.

    Returns None while a phase is active or a summary exists.
    """
    if effective_summary(snapshot) is not None:
        return None
    if infer_pipeline_phase(snapshot) != PipelinePhase.NONE:
        return None

    source = snapshot.source
    readme_fetch_failed = source.readme_fetched_at is not None and not _has_text(source.readme)
    screenshot_capture_failed = (
        _has_text(snapshot.site_url)
        and source.screenshot_capture_started_at is not None
        and not (source.screenshot_capture_completed_at is not None and len(snapshot.screenshots) > 0)
    )
    blocking_error = _has_blocking_error(snapshot)

    if blocking_error and not _has_alternate_source(snapshot):
        detail = (source.processing_error or "").strip() or "the repository could not be processed"
        return NoSummaryExplanation(
            kind=NoSummaryKind.REPOSITORY_FAILED,
            title="Repository processing failed",
            message=f"We could not process this repository: {detail}. Check that it is public and retry.",
            can_retry=True,
        )

    if blocking_error or readme_fetch_failed or screenshot_capture_failed:
        failed_parts: list[str] = []
        if blocking_error:
            failed_parts.append("repository download")
        if readme_fetch_failed:
            failed_parts.append("README")
        if screenshot_capture_failed:
            failed_parts.append("site screenshots")
        return NoSummaryExplanation(
            kind=NoSummaryKind.PARTIAL_FAILURE,
            title="Some content could not be collected",
            message=(
                f"No summary yet: {', '.join(failed_parts)} unavailable. "
                "Other sources can still be used; retry to generate a summary."
            ),
            can_retry=True,
        )

    if source.content_index_sync_completed_at is not None:
        return NoSummaryExplanation(
            kind=NoSummaryKind.AWAITING_FULL_SUMMARY,
            title="Generating full summary",
            message="The repository is indexed and the full summary is being generated.",
            can_retry=False,
        )

    return NoSummaryExplanation(
        kind=NoSummaryKind.NOTHING_AVAILABLE,
        title="No summary available",
        message="There is no README, site or indexed repository content to summarize yet.",
        can_retry=True,
    )


def describe_submission(snapshot: SubmissionSnapshot) -> SubmissionView:
    summary = effective_summary(snapshot)
    if summary is None:
        summary_source = None
    elif _has_text(snapshot.manual_summary):
        summary_source = "manual"
    else:
        summary_source = "derived"

    return SubmissionView(
        submission_id=snapshot.submission_id,
        effective_summary=summary,
        summary_source=summary_source,
        summary_tier=snapshot.source.summary_tier if summary_source == "derived" else None,
        phase=infer_pipeline_phase(snapshot),
        no_summary=explain_missing_summary(snapshot),
        processing_state=snapshot.source.processing_state,
        processing_error=snapshot.source.processing_error,
        review_in_flight=snapshot.ai.in_flight,
        score=snapshot.ai.score,
        review_summary=snapshot.ai.review_summary,
        last_reviewed_at=snapshot.ai.last_reviewed_at,
        screenshot_urls=tuple(item.url for item in snapshot.screenshots),
    )


def _has_blocking_error(snapshot: SubmissionSnapshot) -> bool:
    return snapshot.source.processing_state == ProcessingState.ERROR


def _has_alternate_source(snapshot: SubmissionSnapshot) -> bool:
    return _has_text(snapshot.site_url) or _has_text(snapshot.video_url) or len(snapshot.screenshots) > 0


def _has_text(value: str | None) -> bool:
    return isinstance(value, str) and value.strip() != ""
