from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from app.domain.contracts import AIGateway, SubmissionRepository
from app.domain.dto import AIGatewayRequest, ScoreOutcome
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.prompt_spec import PromptSpec, parse_json_object, render_prompt, validate_response
from app.domain.scoring import normalize_score, parse_score

COMPONENT_ID = "domain.score.generate"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


async def generate_score(
    *,
    submission_id: str,
    repository: SubmissionRepository,
    ai_gateway: AIGateway,
    prompt_spec: PromptSpec,
    clock: Callable[[], datetime] = _utcnow,
) -> ScoreOutcome:
    """Score the machine summary against the hackathon rubric."""
    snapshot = await repository.get_submission(submission_id=submission_id)
    if snapshot is None:
        raise SubmissionNotFoundError(submission_id)

    summary = (snapshot.source.derived_summary or "").strip()
    if not summary:
        raise PipelineError("NO_SUMMARY", "score requires a generated repository summary")

    rubric = await repository.get_hackathon_rubric(hackathon_id=snapshot.hackathon_id)
    if not rubric or not rubric.strip():
        return ScoreOutcome(status="skipped", reason="no_rubric")

    await repository.update_ai(submission_id=submission_id, score_generation_started_at=clock())

    user_prompt = render_prompt(
        template=prompt_spec.review.user_template,
        inputs={
            "hackathon": {"rubric": rubric},
            "content": {"summary": summary},
            "submission": {
                "title": snapshot.title,
                "team": snapshot.team,
                "repo_url": snapshot.repo_url,
                "site_url": snapshot.site_url,
            },
        },
    )
    result = await ai_gateway.complete(
        AIGatewayRequest(
            system_prompt=prompt_spec.review.system,
            user_prompt=user_prompt,
            model=prompt_spec.model,
            temperature=prompt_spec.temperature,
        )
    )
    payload = result.raw_json if result.raw_json is not None else parse_json_object(result.raw_text)
    if payload is None:
        raise PipelineError("AI_FAIL", "review response is not a JSON object")
    try:
        validate_response(payload=payload, schema=prompt_spec.responses["review"])
    except ValueError as exc:
        raise PipelineError("AI_FAIL", f"review response is invalid: {exc}") from exc

    raw_score = parse_score(payload.get("score"))
    if raw_score is None:
        raise PipelineError("AI_FAIL", f"review score is not numeric: {payload.get('score')!r}")
    score = normalize_score(raw_score)
    review_summary = str(payload["summary"]).strip()

    now = clock()
    await repository.update_ai(
        submission_id=submission_id,
        score=score,
        review_summary=review_summary,
        last_reviewed_at=now,
        score_generation_completed_at=now,
    )
    return ScoreOutcome(status="generated", score=score, summary=review_summary)
