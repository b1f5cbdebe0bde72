from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
import logging

from app.domain.artifacts import submission_prefix
from app.domain.contracts import AIGateway, ContentIndex, SubmissionRepository
from app.domain.dto import AIGatewayRequest, IndexDocument, SummaryOutcome
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.lifecycle import INDEX_POLL_INTERVAL_SECONDS, INDEX_POLL_MAX_ATTEMPTS
from app.domain.models import PipelineStage, ProcessingState, SubmissionSnapshot, SummaryTier
from app.domain.prompt_spec import PromptSpec, parse_json_object, render_prompt, validate_response
from app.domain.repo_url import parse_repo_url

COMPONENT_ID = "domain.summary.generate"
FALLBACK_KEY_FILES = 5

QUICK_SUMMARY_SECTIONS: tuple[tuple[str, str], ...] = (
    ("mainPurpose", "Main Purpose"),
    ("keyTechnologiesAndFrameworks", "Key Technologies and Frameworks"),
    ("mainFeaturesAndFunctionality", "Main Features and Functionality"),
)

logger = logging.getLogger("pipeline")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def should_skip(snapshot: SubmissionSnapshot, *, tier: SummaryTier, force_regenerate: bool) -> bool:
    """An existing summary short-circuits generation unless forced.

    A full request still runs over a quick summary, since full supersedes quick.
    """
    if force_regenerate or not snapshot.source.derived_summary:
        return False
    if tier == SummaryTier.QUICK:
        return True
    return snapshot.source.summary_tier == SummaryTier.FULL


async def generate_summary(
    *,
    submission_id: str,
    tier: SummaryTier,
    force_regenerate: bool,
    repository: SubmissionRepository,
    content_index: ContentIndex,
    ai_gateway: AIGateway,
    prompt_spec: PromptSpec,
    polls: int = 0,
    clock: Callable[[], datetime] = _utcnow,
) -> SummaryOutcome:
    snapshot = await repository.get_submission(submission_id=submission_id)
    if snapshot is None:
        raise SubmissionNotFoundError(submission_id)

    if should_skip(snapshot, tier=tier, force_regenerate=force_regenerate):
        return SummaryOutcome(status="skipped", tier=tier, summary=snapshot.source.derived_summary, reason="exists")

    if tier == SummaryTier.QUICK:
        return await _generate_quick(
            snapshot,
            repository=repository,
            ai_gateway=ai_gateway,
            prompt_spec=prompt_spec,
            clock=clock,
        )
    return await _generate_full(
        snapshot,
        repository=repository,
        content_index=content_index,
        prompt_spec=prompt_spec,
        polls=polls,
        clock=clock,
    )


async def _generate_quick(
    snapshot: SubmissionSnapshot,
    *,
    repository: SubmissionRepository,
    ai_gateway: AIGateway,
    prompt_spec: PromptSpec,
    clock: Callable[[], datetime],
) -> SummaryOutcome:
    source = snapshot.source
    if not source.readme and not snapshot.screenshots:
        return SummaryOutcome(status="unavailable", tier=SummaryTier.QUICK, reason="no_early_content")

    readme = (source.readme or "")[: prompt_spec.readme_max_chars]
    user_prompt = render_prompt(
        template=prompt_spec.quick_summary.user_template,
        inputs={
            "submission": _submission_inputs(snapshot),
            "content": {
                "readme": readme,
                "readme_filename": source.readme_filename,
                "screenshot_urls": [item.url for item in snapshot.screenshots],
            },
        },
    )
    result = await ai_gateway.complete(
        AIGatewayRequest(
            system_prompt=prompt_spec.quick_summary.system,
            user_prompt=user_prompt,
            model=prompt_spec.model,
            temperature=prompt_spec.temperature,
        )
    )
    payload = result.raw_json if result.raw_json is not None else parse_json_object(result.raw_text)
    if payload is None:
        raise PipelineError("AI_FAIL", "quick summary response is not a JSON object")
    try:
        validate_response(payload=payload, schema=prompt_spec.responses["quick_summary"])
    except ValueError as exc:
        raise PipelineError("AI_FAIL", f"quick summary response is invalid: {exc}") from exc

    summary = format_quick_summary(title=snapshot.title, payload=payload)
    await repository.update_source(
        submission_id=snapshot.submission_id,
        derived_summary=summary,
        summary_tier=SummaryTier.QUICK,
        summarized_at=clock(),
    )
    return SummaryOutcome(status="generated", tier=SummaryTier.QUICK, summary=summary)


async def _generate_full(
    snapshot: SubmissionSnapshot,
    *,
    repository: SubmissionRepository,
    content_index: ContentIndex,
    prompt_spec: PromptSpec,
    polls: int,
    clock: Callable[[], datetime],
) -> SummaryOutcome:
    submission_id = snapshot.submission_id
    source = snapshot.source
    if not source.archive_key:
        raise PipelineError("NO_ARCHIVE", "full summary requires a stored repository archive")

    prefix = submission_prefix(submission_id)
    if source.content_index_sync_completed_at is None:
        if await content_index.is_synced(prefix=prefix):
            await repository.update_source(submission_id=submission_id, content_index_sync_completed_at=clock())
        elif polls + 1 < INDEX_POLL_MAX_ATTEMPTS:
            return SummaryOutcome(
                status="waiting",
                tier=SummaryTier.FULL,
                reason="index_not_synced",
                retry_after_seconds=INDEX_POLL_INTERVAL_SECONDS,
            )
        else:
            logger.warning(
                "content index still not synced, generating anyway",
                extra={"submission_id": submission_id, "prefix": prefix, "polls": polls + 1},
            )

    await repository.update_source(submission_id=submission_id, processing_state=ProcessingState.GENERATING)

    question = render_prompt(
        template=prompt_spec.full_summary.user_template,
        inputs={
            "repo": {"name": parse_repo_url(snapshot.repo_url).name},
            "submission": _submission_inputs(snapshot),
            "content": {"prefix": prefix},
        },
    )
    answer = await content_index.query(prefix=prefix, question=question)
    if not answer.documents:
        raise PipelineError("INDEX_UNAVAILABLE", f"content index returned no documents for {prefix}")

    # The index is shared by all submissions and cannot filter by path server-side.
    relevant = [item for item in answer.documents if item.path.startswith(prefix)]
    if not relevant:
        sample = ", ".join(item.path for item in answer.documents[:10])
        raise PipelineError(
            "AI_FAIL",
            f"none of {len(answer.documents)} indexed documents match {prefix}; sample paths: {sample}",
        )

    summary = format_full_summary(title=snapshot.title, response=answer.response, documents=relevant, prefix=prefix)
    await repository.update_source(
        submission_id=submission_id,
        derived_summary=summary,
        summary_tier=SummaryTier.FULL,
        summarized_at=clock(),
        processing_state=ProcessingState.COMPLETE,
        processing_error=None,
    )
    await repository.enqueue_job(submission_id=submission_id, stage=PipelineStage.SCORE)
    return SummaryOutcome(status="generated", tier=SummaryTier.FULL, summary=summary)


def format_quick_summary(*, title: str, payload: dict[str, object]) -> str:
    sections = [f"# Repository Summary: {title}"]
    for key, heading in QUICK_SUMMARY_SECTIONS:
        text = str(payload.get(key) or "").strip() or "Not available."
        sections.append(f"## {heading}\n\n{text}")
    return "\n\n".join(sections)


def format_full_summary(
    *,
    title: str,
    response: str | None,
    documents: list[IndexDocument],
    prefix: str,
) -> str:
    header = f"# Repository Summary: {title}\n\n"
    if response and response.strip():
        return header + response.strip()
    key_files = ", ".join(_relative_path(item.path, prefix) for item in documents[:FALLBACK_KEY_FILES])
    return header + f"Analyzed {len(documents)} files from this repository. Key files: {key_files}."


def _relative_path(path: str, prefix: str) -> str:
    return path[len(prefix):] if path.startswith(prefix) else path


def _submission_inputs(snapshot: SubmissionSnapshot) -> dict[str, object]:
    return {
        "title": snapshot.title,
        "team": snapshot.team,
        "repo_url": snapshot.repo_url,
        "site_url": snapshot.site_url,
    }
