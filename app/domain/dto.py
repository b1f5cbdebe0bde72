from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from app.domain.error_taxonomy import ErrorCode
from app.domain.models import SummaryTier


@dataclass(frozen=True)
class CreateSubmissionCommand:
    hackathon_id: str
    title: str
    team: str
    repo_url: str
    site_url: str | None = None
    video_url: str | None = None


@dataclass(frozen=True)
class KeyPage:
    keys: tuple[str, ...]
    next_token: str | None = None


@dataclass(frozen=True)
class PrefixCleanupResult:
    prefix: str
    pages: int
    deleted: int
    failed: int
    truncated: bool = False


@dataclass(frozen=True)
class ReadmeDocument:
    filename: str
    text: str


@dataclass(frozen=True)
class RepositoryArchive:
    ref: str
    payload: bytes


@dataclass(frozen=True)
class IndexDocument:
    path: str


@dataclass(frozen=True)
class IndexAnswer:
    response: str | None
    documents: tuple[IndexDocument, ...] = ()


@dataclass(frozen=True)
class AIGatewayRequest:
    system_prompt: str
    user_prompt: str
    model: str
    temperature: float


@dataclass(frozen=True)
class AIGatewayResult:
    raw_text: str
    raw_json: dict[str, object] | None
    tokens_input: int
    tokens_output: int
    latency_ms: int


@dataclass(frozen=True)
class ArchiveFetchResult:
    archive_key: str
    ref: str
    size_bytes: int


@dataclass(frozen=True)
class EarlyContentResult:
    readme_found: bool
    screenshot_captured: bool
    quick_summary_enqueued: bool


SummaryStatus = Literal["generated", "skipped", "waiting", "unavailable"]


@dataclass(frozen=True)
class SummaryOutcome:
    status: SummaryStatus
    tier: SummaryTier
    summary: str | None = None
    reason: str | None = None
    # Set when status == "waiting": re-run after this many seconds.
    retry_after_seconds: float | None = None


ScoreStatus = Literal["generated", "skipped"]


@dataclass(frozen=True)
class ScoreOutcome:
    status: ScoreStatus
    score: float | None = None
    summary: str | None = None
    reason: str | None = None


ReviewCode = Literal["OK", "NOT_FOUND", "IN_FLIGHT", "INVALID_INPUT", "SERVER_ERROR"] | ErrorCode


@dataclass(frozen=True)
class ReviewOutcome:
    code: ReviewCode
    message: str = ""
    score: float | None = None
    summary: str | None = None
    retry_after_seconds: float | None = None

    @property
    def ok(self) -> bool:
        return self.code == "OK"


@dataclass(frozen=True)
class RetryPlan:
    submission_id: str
    enqueued_stages: tuple[str, ...] = field(default_factory=tuple)
