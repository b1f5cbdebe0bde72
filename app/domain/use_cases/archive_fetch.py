from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
import logging

from app.domain.artifacts import archive_object_key
from app.domain.contracts import ObjectStore, SourceHost, SubmissionRepository
from app.domain.dto import ArchiveFetchResult, RepositoryArchive
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.models import PipelineStage, ProcessingState, SummaryTier
from app.domain.repo_url import RepoRef, parse_repo_url

COMPONENT_ID = "domain.archive.fetch"
FALLBACK_BRANCHES: tuple[str, ...] = ("main", "master")

logger = logging.getLogger("pipeline")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def candidate_refs(default_branch: str | None) -> list[str]:
    """Default branch first, then the conventional fallbacks, without repeats."""
    refs: list[str] = []
    for ref in (default_branch, *FALLBACK_BRANCHES):
        if ref and ref not in refs:
            refs.append(ref)
    return refs


async def fetch_archive(
    *,
    submission_id: str,
    repository: SubmissionRepository,
    source_host: SourceHost,
    store: ObjectStore,
    clock: Callable[[], datetime] = _utcnow,
) -> ArchiveFetchResult:
    """Download the repository archive, store it under the submission prefix and start indexing."""
    snapshot = await repository.get_submission(submission_id=submission_id)
    if snapshot is None:
        raise SubmissionNotFoundError(submission_id)

    # Parsing happens before any write so a bad URL leaves the record untouched.
    repo = parse_repo_url(snapshot.repo_url)

    await repository.update_source(
        submission_id=submission_id,
        processing_state=ProcessingState.DOWNLOADING,
        processing_error=None,
    )
    archive = await _download_first_available(source_host, repo)

    await repository.update_source(submission_id=submission_id, processing_state=ProcessingState.UPLOADING)
    uploaded_at = clock()
    key = archive_object_key(submission_id=submission_id, repo_name=repo.name, uploaded_at=uploaded_at)
    await asyncio.to_thread(store.put_bytes, key=key, payload=archive.payload, content_type="application/zip")

    await repository.update_source(
        submission_id=submission_id,
        archive_key=key,
        archive_uploaded_at=uploaded_at,
        content_index_sync_started_at=clock(),
        processing_state=ProcessingState.INDEXING,
    )
    await repository.enqueue_job(
        submission_id=submission_id,
        stage=PipelineStage.SUMMARY,
        tier=SummaryTier.FULL,
    )
    logger.info(
        "archive stored",
        extra={"submission_id": submission_id, "repo": repo.slug, "object_key": key, "ref": archive.ref},
    )
    return ArchiveFetchResult(archive_key=key, ref=archive.ref, size_bytes=len(archive.payload))


async def _download_first_available(source_host: SourceHost, repo: RepoRef) -> RepositoryArchive:
    default_branch = await source_host.get_default_branch(repo)
    refs = candidate_refs(default_branch)
    for ref in refs:
        archive = await source_host.download_archive(repo, ref=ref)
        if archive is not None:
            return archive
    raise PipelineError(
        "REPO_NOT_FOUND",
        f"no archive for {repo.slug} on any of the branches: {', '.join(refs)}",
    )
