from __future__ import annotations

from dataclasses import dataclass, field

from app.domain.dto import (
    AIGatewayRequest,
    AIGatewayResult,
    IndexAnswer,
    IndexDocument,
    ReadmeDocument,
    RepositoryArchive,
)
from app.domain.errors import PipelineError
from app.domain.repo_url import RepoRef


@dataclass
class StubSourceHost:
    default_branches: dict[str, str] = field(default_factory=dict)
    # slug -> {ref: payload}
    archives: dict[str, dict[str, bytes]] = field(default_factory=dict)
    readmes: dict[str, ReadmeDocument] = field(default_factory=dict)
    # slug -> error raised by every call for that repository
    errors: dict[str, PipelineError] = field(default_factory=dict)
    readme_errors: dict[str, PipelineError] = field(default_factory=dict)
    requested_refs: list[str] = field(default_factory=list)

    async def get_default_branch(self, repo: RepoRef) -> str | None:
        self._raise_configured(repo)
        return self.default_branches.get(repo.slug)

    async def download_archive(self, repo: RepoRef, *, ref: str) -> RepositoryArchive | None:
        self._raise_configured(repo)
        self.requested_refs.append(ref)
        payload = self.archives.get(repo.slug, {}).get(ref)
        if payload is None:
            return None
        return RepositoryArchive(ref=ref, payload=payload)

    async def fetch_readme(self, repo: RepoRef) -> ReadmeDocument | None:
        error = self.readme_errors.get(repo.slug)
        if error is not None:
            raise error
        return self.readmes.get(repo.slug)

    def _raise_configured(self, repo: RepoRef) -> None:
        error = self.errors.get(repo.slug)
        if error is not None:
            raise error


@dataclass
class StubScreenshotClient:
    is_enabled: bool = True
    images: dict[str, bytes] = field(default_factory=dict)
    failing_urls: set[str] = field(default_factory=set)
    captured: list[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return self.is_enabled

    async def capture(self, *, url: str) -> str:
        if url in self.failing_urls:
            raise PipelineError("INTERNAL_ERROR", f"screenshot capture failed for {url}")
        self.captured.append(url)
        image_url = f"https://screenshots.invalid/{len(self.captured)}.png"
        self.images.setdefault(image_url, b"\x89PNG stub")
        return image_url

    async def download(self, *, image_url: str) -> bytes:
        payload = self.images.get(image_url)
        if payload is None:
            raise PipelineError("INTERNAL_ERROR", f"screenshot image not found: {image_url}")
        return payload


@dataclass
class StubContentIndex:
    """Index fake: a prefix counts as synced once it is in `synced_prefixes`."""

    synced_prefixes: set[str] = field(default_factory=set)
    # Returned by query() when set; otherwise a canned answer over the prefix.
    answer: IndexAnswer | None = None
    sync_checks: int = 0
    questions: list[str] = field(default_factory=list)

    async def is_synced(self, *, prefix: str) -> bool:
        self.sync_checks += 1
        return prefix in self.synced_prefixes

    async def query(self, *, prefix: str, question: str) -> IndexAnswer:
        self.questions.append(question)
        if self.answer is not None:
            return self.answer
        return IndexAnswer(
            response="The repository implements a small web service with tests.",
            documents=(IndexDocument(path=f"{prefix}README.md"),),
        )


@dataclass
class StubAIGateway:
    calls: list[AIGatewayRequest] = field(default_factory=list)
    # Queue of canned JSON payloads; when empty a payload is picked by prompt shape.
    responses: list[dict[str, object]] = field(default_factory=list)
    error: PipelineError | None = None

    async def complete(self, request: AIGatewayRequest) -> AIGatewayResult:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        if self.responses:
            payload = self.responses.pop(0)
        elif "rubric" in request.user_prompt.lower():
            payload = {"score": 7.5, "summary": "Solid submission with a working prototype."}
        else:
            payload = {
                "mainPurpose": "Helps teams track hackathon progress.",
                "keyTechnologiesAndFrameworks": "Python, FastAPI",
                "mainFeaturesAndFunctionality": "Submission tracking and status pages.",
            }
        return AIGatewayResult(
            raw_text="stub gateway output",
            raw_json=dict(payload),
            tokens_input=128,
            tokens_output=256,
            latency_ms=120,
        )
