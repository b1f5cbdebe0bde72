from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

# Canonical error vocabulary for all stages and the review entrypoint.
ErrorCode = Literal[
    "INVALID_REPO_URL",
    "REPO_NOT_FOUND",
    "REPO_ACCESS_DENIED",
    "REPO_FETCH_FAILED",
    "STORAGE_FAILED",
    "INDEX_UNAVAILABLE",
    "RATE_LIMIT",
    "AI_FAIL",
    "NO_ARCHIVE",
    "NO_SUMMARY",
    "INTERNAL_ERROR",
]

ErrorClass = Literal["input", "access", "transient", "dependency", "internal"]

RetryClassification = Literal["recoverable", "terminal"]

# Allowed persisted values for processing_error codes.
CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "INVALID_REPO_URL",
    "REPO_NOT_FOUND",
    "REPO_ACCESS_DENIED",
    "REPO_FETCH_FAILED",
    "STORAGE_FAILED",
    "INDEX_UNAVAILABLE",
    "RATE_LIMIT",
    "AI_FAIL",
    "NO_ARCHIVE",
    "NO_SUMMARY",
    "INTERNAL_ERROR",
)

ERROR_CLASSES: Mapping[ErrorCode, ErrorClass] = {
    "INVALID_REPO_URL": "input",
    "REPO_NOT_FOUND": "access",
    "REPO_ACCESS_DENIED": "access",
    "REPO_FETCH_FAILED": "transient",
    "STORAGE_FAILED": "transient",
    "INDEX_UNAVAILABLE": "transient",
    "RATE_LIMIT": "transient",
    "AI_FAIL": "transient",
    "NO_ARCHIVE": "dependency",
    "NO_SUMMARY": "dependency",
    "INTERNAL_ERROR": "internal",
}

# Errors that can be retried within stage attempt policy. Access errors need
# owner intervention and go through the explicit retry entrypoint instead.
RECOVERABLE_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        "REPO_FETCH_FAILED",
        "STORAGE_FAILED",
        "INDEX_UNAVAILABLE",
        "RATE_LIMIT",
        "AI_FAIL",
        "NO_SUMMARY",
        "INTERNAL_ERROR",
    }
)

# Stage-specific allowlist. If a stage emits a code outside this map,
# it is normalized to INTERNAL_ERROR by resolve_stage_error().
STAGE_ERROR_MAP: Mapping[str, frozenset[ErrorCode]] = {
    "archive": frozenset(
        {
            "INVALID_REPO_URL",
            "REPO_NOT_FOUND",
            "REPO_ACCESS_DENIED",
            "REPO_FETCH_FAILED",
            "STORAGE_FAILED",
            "INTERNAL_ERROR",
        }
    ),
    "early-content": frozenset(
        {
            "INVALID_REPO_URL",
            "STORAGE_FAILED",
            "INTERNAL_ERROR",
        }
    ),
    "summary": frozenset(
        {
            "NO_ARCHIVE",
            "INDEX_UNAVAILABLE",
            "RATE_LIMIT",
            "AI_FAIL",
            "INTERNAL_ERROR",
        }
    ),
    "score": frozenset(
        {
            "NO_SUMMARY",
            "RATE_LIMIT",
            "AI_FAIL",
            "INTERNAL_ERROR",
        }
    ),
}


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_error(code: ErrorCode) -> RetryClassification:
    if code in RECOVERABLE_ERROR_CODES:
        return "recoverable"
    return "terminal"


def error_class(code: ErrorCode) -> ErrorClass:
    return ERROR_CLASSES.get(code, "internal")


def resolve_stage_error(*, stage: str, code: str) -> ErrorCode:
    allowed = STAGE_ERROR_MAP.get(stage, frozenset({"INTERNAL_ERROR"}))
    if code in allowed and is_canonical_error_code(code):
        return code  # type: ignore[return-value]
    # Keep persistence stable even if upstream emitted unsupported code.
    return "INTERNAL_ERROR"
