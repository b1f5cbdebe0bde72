from __future__ import annotations

from app.domain.error_taxonomy import ErrorCode, RetryClassification, classify_error


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class SubmissionNotFoundError(DomainError):
    def __init__(self, submission_id: str) -> None:
        super().__init__(f"submission not found: {submission_id}")
        self.submission_id = submission_id


class PipelineError(DomainError):
    """Classified failure raised by stage executors and external adapters."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.code: ErrorCode = code
        self.message = message
        self.retry_after_seconds = retry_after_seconds

    @property
    def retry_classification(self) -> RetryClassification:
        return classify_error(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"
