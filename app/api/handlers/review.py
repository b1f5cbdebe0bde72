from __future__ import annotations

from app.api.handlers.deps import ApiDeps
from app.domain.dto import ReviewOutcome
from app.domain.use_cases.review import run_review

COMPONENT_ID = "api.review"

REVIEW_STATUS_CODES: dict[str, int] = {
    "OK": 200,
    "INVALID_INPUT": 400,
    "NOT_FOUND": 404,
    "IN_FLIGHT": 409,
    "RATE_LIMIT": 429,
}

# Server errors expose one of NO_ARCHIVE, NO_SUMMARY, AI_FAIL or SERVER_ERROR.
SERVER_ERROR_CODES: dict[str, str] = {
    "INVALID_REPO_URL": "NO_ARCHIVE",
    "REPO_NOT_FOUND": "NO_ARCHIVE",
    "REPO_ACCESS_DENIED": "NO_ARCHIVE",
    "REPO_FETCH_FAILED": "NO_ARCHIVE",
    "STORAGE_FAILED": "NO_ARCHIVE",
    "NO_ARCHIVE": "NO_ARCHIVE",
    "NO_SUMMARY": "NO_SUMMARY",
    "INDEX_UNAVAILABLE": "AI_FAIL",
    "AI_FAIL": "AI_FAIL",
}


async def run_review_handler(*, submission_id: str | None, api_deps: ApiDeps) -> ReviewOutcome:
    return await run_review(
        submission_id,
        orchestrator=api_deps.orchestrator,
        settings=api_deps.review_settings,
    )


def review_status_code(outcome: ReviewOutcome) -> int:
    # Every other failure, classified or not, surfaces as a server error.
    return REVIEW_STATUS_CODES.get(outcome.code, 500)


def review_error_code(outcome: ReviewOutcome) -> str:
    if review_status_code(outcome) != 500:
        return outcome.code
    return SERVER_ERROR_CODES.get(outcome.code, "SERVER_ERROR")
