import asyncio
from dataclasses import replace

import pytest

from app.clients.github import GitHubSourceHost
from app.clients.stub import StubAIGateway, StubContentIndex, StubScreenshotClient
from app.domain.contracts import (
    AIGateway,
    ContentIndex,
    ObjectStore,
    ScreenshotClient,
    SourceHost,
    SubmissionRepository,
)
from app.domain.models import JobStatus, PipelineStage
from app.lib.storage.memory import InMemoryObjectStore
from app.repositories.sql_loader import load_sql
from app.repositories.stub import InMemorySubmissionRepository
from app.roles import validate_role
from app.services.bootstrap import build_runtime_container
from app.settings import AIGatewaySettings, AppSettings, GitHubSettings, ReviewSettings
from app.workers.loop import WorkerLoop
from tests.unit.pipeline_fixtures import submission_command


def _skeleton_settings() -> AppSettings:
    return AppSettings(
        database_url=None,
        storage=None,
        github=GitHubSettings(),
        firecrawl=None,
        content_index=None,
        ai_gateway=None,
        review=ReviewSettings(),
    )


@pytest.mark.unit
def test_claim_query_uses_skip_locked() -> None:
    assert "FOR UPDATE SKIP LOCKED" in load_sql("claim_next_job.sql")


@pytest.mark.unit
def test_skeleton_container_falls_back_to_stubs() -> None:
    container = build_runtime_container(validate_role("api"), _skeleton_settings())

    assert container.worker_loop is None
    assert isinstance(container.repository, InMemorySubmissionRepository)
    assert isinstance(container.store, InMemoryObjectStore)
    assert isinstance(container.source_host, GitHubSourceHost)
    assert isinstance(container.screenshots, StubScreenshotClient)
    assert container.screenshots.enabled is False
    assert isinstance(container.content_index, StubContentIndex)
    assert isinstance(container.ai_gateway, StubAIGateway)
    assert isinstance(container.repository, SubmissionRepository)
    assert isinstance(container.store, ObjectStore)
    assert isinstance(container.source_host, SourceHost)
    assert isinstance(container.screenshots, ScreenshotClient)
    assert isinstance(container.content_index, ContentIndex)
    assert isinstance(container.ai_gateway, AIGateway)


@pytest.mark.unit
def test_runtime_container_wires_worker_through_contracts() -> None:
    container = build_runtime_container(validate_role("worker-score"), _skeleton_settings())

    assert isinstance(container.worker_loop, WorkerLoop)
    assert container.worker_loop.stage == PipelineStage.SCORE


@pytest.mark.unit
def test_worker_loop_claim_process_finalize_lifecycle() -> None:
    container = build_runtime_container(validate_role("worker-score"), _skeleton_settings())
    assert container.worker_loop is not None
    repository = container.repository
    assert isinstance(repository, InMemorySubmissionRepository)

    async def _run() -> None:
        snapshot = await repository.create_submission(submission_command())
        await repository.update_source(submission_id=snapshot.submission_id, derived_summary="summary")
        await repository.set_hackathon_rubric(hackathon_id=snapshot.hackathon_id, rubric="Impact")
        job = await repository.enqueue_job(submission_id=snapshot.submission_id, stage=PipelineStage.SCORE)

        assert await container.worker_loop.run_once() is True

        stored = await repository.get_submission(submission_id=snapshot.submission_id)
        assert repository.jobs[job.job_id].status == JobStatus.DONE
        assert stored is not None
        assert stored.ai.score == 7.5

    asyncio.run(_run())


@pytest.mark.unit
def test_runtime_mode_reflects_configured_services() -> None:
    skeleton = build_runtime_container(validate_role("api"), _skeleton_settings())
    live = build_runtime_container(
        validate_role("api"),
        replace(_skeleton_settings(), ai_gateway=AIGatewaySettings(url="https://gateway.example/v1", token="t")),
    )

    assert skeleton.mode == "skeleton"
    assert skeleton.configured_services == ()
    assert live.mode == "live"
    assert live.configured_services == ("ai-gateway",)
