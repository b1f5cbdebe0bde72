import asyncio
import logging

import pytest

from app.domain.artifacts import submission_prefix
from app.domain.errors import PipelineError, SubmissionNotFoundError
from app.domain.models import PipelineJob, PipelineStage, ProcessingState, Screenshot, SummaryTier
from app.domain.stage_inference import effective_summary
from tests.unit.pipeline_fixtures import REPO_SLUG, Pipeline, build_pipeline, submission_command


def _job(submission_id: str, stage: PipelineStage, *, tier: SummaryTier | None = None) -> PipelineJob:
    return PipelineJob(job_id="job_test", submission_id=submission_id, stage=stage, attempt=1, tier=tier)


@pytest.mark.unit
def test_create_submission_enqueues_archive_and_early_content() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()

        snapshot = await pipeline.orchestrator.create_submission(submission_command())

        stages = [job.stage for job in pipeline.repository.jobs_for(snapshot.submission_id)]
        assert snapshot.source.processing_state == ProcessingState.QUEUED
        assert stages == [PipelineStage.ARCHIVE, PipelineStage.EARLY_CONTENT]

    asyncio.run(_run())


@pytest.mark.unit
def test_manual_summary_takes_precedence_until_cleared() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        submission_id = created.submission_id
        await pipeline.repository.update_source(submission_id=submission_id, derived_summary="machine v1")

        with_manual = await pipeline.orchestrator.set_manual_summary(submission_id, "judge notes")
        await pipeline.repository.update_source(submission_id=submission_id, derived_summary="machine v2")
        after_derived_change = await pipeline.repository.get_submission(submission_id=submission_id)
        cleared = await pipeline.orchestrator.set_manual_summary(submission_id, "   ")

        assert effective_summary(with_manual) == "judge notes"
        assert after_derived_change is not None
        assert effective_summary(after_derived_change) == "judge notes"
        assert cleared.manual_summary is None
        assert effective_summary(cleared) == "machine v2"

    asyncio.run(_run())


@pytest.mark.unit
def test_failed_archive_job_records_error_on_submission() -> None:
    async def _run() -> None:
        pipeline = build_pipeline(with_archive=False)
        created = await pipeline.repository.create_submission(submission_command())

        result = await pipeline.orchestrator.run_job(_job(created.submission_id, PipelineStage.ARCHIVE))

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert result.success is False
        assert result.error_code == "REPO_NOT_FOUND"
        assert result.retry_classification == "terminal"
        assert stored is not None
        assert stored.source.processing_state == ProcessingState.ERROR
        assert stored.source.processing_error is not None
        assert REPO_SLUG in stored.source.processing_error

    asyncio.run(_run())


@pytest.mark.unit
def test_invalid_repo_url_fails_archive_without_touching_state() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command(repo_url="not a url"))

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.orchestrator.fetch_archive(created.submission_id)

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert exc_info.value.code == "INVALID_REPO_URL"
        assert stored == created

    asyncio.run(_run())


@pytest.mark.unit
def test_invalid_repo_url_job_leaves_record_untouched() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command(repo_url="not a url"))

        result = await pipeline.orchestrator.run_job(_job(created.submission_id, PipelineStage.ARCHIVE))

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert result.success is False
        assert result.error_code == "INVALID_REPO_URL"
        assert result.retry_classification == "terminal"
        assert stored == created
        assert stored is not None
        assert stored.source.processing_error is None

    asyncio.run(_run())


@pytest.mark.unit
def test_create_submission_rejects_invalid_repo_url_before_writing() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.orchestrator.create_submission(submission_command(repo_url="not a url"))

        assert exc_info.value.code == "INVALID_REPO_URL"
        assert pipeline.repository.submissions == {}
        assert pipeline.repository.jobs == {}

    asyncio.run(_run())


@pytest.mark.unit
def test_quick_summary_failure_does_not_record_error() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(submission_id=created.submission_id, readme="# Rocket")
        pipeline.ai_gateway.error = PipelineError("RATE_LIMIT", "slow down", retry_after_seconds=30)

        result = await pipeline.orchestrator.run_job(
            _job(created.submission_id, PipelineStage.SUMMARY, tier=SummaryTier.QUICK)
        )

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert result.success is False
        assert result.error_code == "RATE_LIMIT"
        assert result.retry_after_seconds == 30
        assert stored is not None
        assert stored.source.processing_error is None

    asyncio.run(_run())


@pytest.mark.unit
def test_unclassified_stage_error_becomes_internal_error() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())

        async def _explode(repo: object) -> str | None:
            del repo
            raise KeyError("default_branch")

        pipeline.source_host.get_default_branch = _explode  # type: ignore[method-assign]

        result = await pipeline.orchestrator.run_job(_job(created.submission_id, PipelineStage.ARCHIVE))

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert result.error_code == "INTERNAL_ERROR"
        assert result.retry_classification == "recoverable"
        assert stored is not None
        assert stored.source.processing_state == ProcessingState.ERROR

    asyncio.run(_run())


@pytest.mark.unit
def test_waiting_full_summary_asks_for_reschedule() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(
            submission_id=created.submission_id,
            archive_key=f"{created.submission_id}/rocket-1",
        )

        result = await pipeline.orchestrator.run_job(
            _job(created.submission_id, PipelineStage.SUMMARY, tier=SummaryTier.FULL)
        )

        assert result.success is True
        assert result.reschedule_after_seconds == 2.0

    asyncio.run(_run())


@pytest.mark.unit
def test_job_for_deleted_submission_is_dropped() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()

        result = await pipeline.orchestrator.run_job(_job("sub_gone", PipelineStage.SCORE))

        assert result.success is True
        assert result.detail == "submission deleted"

    asyncio.run(_run())


@pytest.mark.unit
def test_retry_processing_clears_error_and_requeues() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.mark_processing_error(submission_id=created.submission_id, message="REPO_NOT_FOUND")

        plan = await pipeline.orchestrator.retry_processing(created.submission_id)

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert plan.enqueued_stages == ("archive", "early-content")
        assert stored is not None
        assert stored.source.processing_state == ProcessingState.QUEUED
        assert stored.source.processing_error is None

    asyncio.run(_run())


@pytest.mark.unit
def test_retry_processing_with_archive_requeues_full_summary() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(
            submission_id=created.submission_id,
            archive_key=f"{created.submission_id}/rocket-1",
        )

        plan = await pipeline.orchestrator.retry_processing(created.submission_id)

        summary_jobs = pipeline.repository.jobs_for(created.submission_id, stage=PipelineStage.SUMMARY)
        assert plan.enqueued_stages == ("early-content", "summary")
        assert [job.tier for job in summary_jobs] == [SummaryTier.FULL]

    asyncio.run(_run())


@pytest.mark.unit
def test_regenerate_summary_merges_into_pending_job() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())

        first = await pipeline.orchestrator.regenerate_summary(
            created.submission_id,
            tier=SummaryTier.FULL,
            force_regenerate=False,
        )
        second = await pipeline.orchestrator.regenerate_summary(
            created.submission_id,
            tier=SummaryTier.FULL,
            force_regenerate=True,
        )

        assert second.job_id == first.job_id
        assert second.force_regenerate is True
        assert len(pipeline.repository.jobs_for(created.submission_id)) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_regenerate_summary_for_missing_submission_raises() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        with pytest.raises(SubmissionNotFoundError):
            await pipeline.orchestrator.regenerate_summary("sub_missing", tier=SummaryTier.QUICK, force_regenerate=False)

    asyncio.run(_run())


@pytest.mark.unit
def test_delete_removes_record_jobs_and_objects() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        snapshot = await pipeline.orchestrator.create_submission(submission_command())
        submission_id = snapshot.submission_id
        await pipeline.orchestrator.fetch_archive(submission_id)
        pipeline.store.put_bytes(key="sub_other/keep", payload=b"x")

        deleted = await pipeline.orchestrator.delete_submission(submission_id)
        await pipeline.orchestrator.drain_cleanups()

        assert deleted is True
        assert await pipeline.repository.get_submission(submission_id=submission_id) is None
        assert pipeline.repository.jobs_for(submission_id) == []
        assert not any(key.startswith(submission_prefix(submission_id)) for key in pipeline.store.objects)
        assert "sub_other/keep" in pipeline.store.objects
        assert await pipeline.orchestrator.delete_submission(submission_id) is False

    asyncio.run(_run())


@pytest.mark.unit
def test_delete_survives_cleanup_failure() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())

        def _broken_list(*, prefix: str, continuation_token: str | None = None):
            raise RuntimeError(f"listing {prefix} failed")

        pipeline.store.list_keys = _broken_list  # type: ignore[method-assign]

        deleted = await pipeline.orchestrator.delete_submission(created.submission_id)
        await pipeline.orchestrator.drain_cleanups()

        assert deleted is True
        assert await pipeline.repository.get_submission(submission_id=created.submission_id) is None

    asyncio.run(_run())


async def _attach_screenshot(pipeline: Pipeline, submission_id: str, key: str) -> None:
    pipeline.store.put_bytes(key=key, payload=b"\x89PNG", content_type="image/png")
    await pipeline.repository.add_screenshot(
        submission_id=submission_id,
        screenshot=Screenshot(object_key=key, url=f"https://cdn.example/{key}", captured_at=pipeline.clock()),
    )


@pytest.mark.unit
def test_remove_screenshot_detaches_row_then_deletes_object() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        submission_id = created.submission_id
        first = f"{submission_id}/screenshots/screenshot-1.png"
        second = f"{submission_id}/screenshots/screenshot-2.png"
        await _attach_screenshot(pipeline, submission_id, first)
        await _attach_screenshot(pipeline, submission_id, second)

        removed = await pipeline.orchestrator.remove_screenshot(submission_id, first)
        stored = await pipeline.repository.get_submission(submission_id=submission_id)
        await pipeline.orchestrator.drain_cleanups()

        assert removed is True
        assert stored is not None
        assert [item.object_key for item in stored.screenshots] == [second]
        assert first not in pipeline.store.objects
        assert second in pipeline.store.objects
        assert await pipeline.orchestrator.remove_screenshot(submission_id, first) is False
        with pytest.raises(SubmissionNotFoundError):
            await pipeline.orchestrator.remove_screenshot("sub_missing", first)

    asyncio.run(_run())


@pytest.mark.unit
def test_remove_screenshot_survives_object_delete_failure(caplog: pytest.LogCaptureFixture) -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        key = f"{created.submission_id}/screenshots/screenshot-1.png"
        await _attach_screenshot(pipeline, created.submission_id, key)
        pipeline.store.failing_keys.add(key)

        with caplog.at_level(logging.WARNING, logger="pipeline"):
            removed = await pipeline.orchestrator.remove_screenshot(created.submission_id, key)
            await pipeline.orchestrator.drain_cleanups()

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert removed is True
        assert stored is not None
        assert stored.screenshots == ()
        assert any(getattr(record, "object_key", None) == key for record in caplog.records)

    asyncio.run(_run())
