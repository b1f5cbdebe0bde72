import asyncio
from dataclasses import replace

import pytest

from app.domain.artifacts import submission_prefix
from app.domain.dto import IndexAnswer, IndexDocument
from app.domain.errors import PipelineError
from app.domain.lifecycle import INDEX_POLL_MAX_ATTEMPTS
from app.domain.models import PipelineStage, ProcessingState, Screenshot, SummaryTier
from app.domain.use_cases.summary import format_full_summary, format_quick_summary, should_skip
from tests.unit.pipeline_fixtures import build_pipeline, submission_command


@pytest.mark.unit
def test_quick_summary_is_skipped_when_summary_exists() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(
            submission_id=created.submission_id,
            derived_summary="existing",
            summary_tier=SummaryTier.QUICK,
            readme="# Rocket",
        )
        before = await pipeline.repository.get_submission(submission_id=created.submission_id)

        outcome = await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.QUICK)

        after = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert outcome.status == "skipped"
        assert after == before
        assert pipeline.ai_gateway.calls == []

    asyncio.run(_run())


@pytest.mark.unit
def test_force_regenerate_overwrites_existing_summary() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(
            submission_id=created.submission_id,
            derived_summary="existing",
            summary_tier=SummaryTier.QUICK,
            readme="# Rocket",
        )

        outcome = await pipeline.orchestrator.generate_summary(
            created.submission_id,
            tier=SummaryTier.QUICK,
            force_regenerate=True,
        )

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert outcome.status == "generated"
        assert stored is not None
        assert stored.source.derived_summary is not None
        assert stored.source.derived_summary.startswith("# Repository Summary: Rocket")
        assert "## Main Purpose" in stored.source.derived_summary

    asyncio.run(_run())


@pytest.mark.unit
def test_quick_summary_without_early_content_is_unavailable() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())

        outcome = await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.QUICK)

        assert outcome.status == "unavailable"
        assert pipeline.ai_gateway.calls == []

    asyncio.run(_run())


@pytest.mark.unit
def test_invalid_quick_summary_response_is_ai_failure() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(submission_id=created.submission_id, readme="# Rocket")
        pipeline.ai_gateway.responses.append({"mainPurpose": "only one key"})

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.QUICK)

        assert exc_info.value.code == "AI_FAIL"

    asyncio.run(_run())


@pytest.mark.unit
def test_full_summary_supersedes_quick_without_force_and_enqueues_score() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        submission_id = created.submission_id
        prefix = submission_prefix(submission_id)
        pipeline.content_index.synced_prefixes.add(prefix)
        await pipeline.repository.update_source(
            submission_id=submission_id,
            archive_key=f"{prefix}rocket-1",
            derived_summary="quick one",
            summary_tier=SummaryTier.QUICK,
            processing_error="stale",
        )

        outcome = await pipeline.orchestrator.generate_summary(submission_id, tier=SummaryTier.FULL)

        stored = await pipeline.repository.get_submission(submission_id=submission_id)
        assert outcome.status == "generated"
        assert stored is not None
        assert stored.source.summary_tier == SummaryTier.FULL
        assert stored.source.processing_state == ProcessingState.COMPLETE
        assert stored.source.processing_error is None
        assert stored.source.content_index_sync_completed_at is not None
        assert prefix in pipeline.content_index.questions[0]
        assert [job.stage for job in pipeline.repository.jobs_for(submission_id)] == [PipelineStage.SCORE]

    asyncio.run(_run())


@pytest.mark.unit
def test_full_summary_waits_while_index_is_not_synced() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(
            submission_id=created.submission_id,
            archive_key=f"{created.submission_id}/rocket-1",
        )

        outcome = await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.FULL)

        assert outcome.status == "waiting"
        assert outcome.retry_after_seconds == 2.0
        assert pipeline.content_index.questions == []

    asyncio.run(_run())


@pytest.mark.unit
def test_full_summary_proceeds_after_last_poll_without_sync() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        await pipeline.repository.update_source(
            submission_id=created.submission_id,
            archive_key=f"{created.submission_id}/rocket-1",
        )

        outcome = await pipeline.orchestrator.generate_summary(
            created.submission_id,
            tier=SummaryTier.FULL,
            polls=INDEX_POLL_MAX_ATTEMPTS - 1,
        )

        stored = await pipeline.repository.get_submission(submission_id=created.submission_id)
        assert outcome.status == "generated"
        assert stored is not None
        assert stored.source.content_index_sync_completed_at is None

    asyncio.run(_run())


@pytest.mark.unit
def test_full_summary_requires_archive() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.FULL)

        assert exc_info.value.code == "NO_ARCHIVE"

    asyncio.run(_run())


@pytest.mark.unit
@pytest.mark.parametrize(
    ("documents", "expected_code"),
    [
        ((), "INDEX_UNAVAILABLE"),
        ((IndexDocument(path="sub_OTHER/README.md"),), "AI_FAIL"),
    ],
)
def test_full_summary_rejects_documents_outside_the_submission_prefix(
    documents: tuple[IndexDocument, ...],
    expected_code: str,
) -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command())
        prefix = submission_prefix(created.submission_id)
        pipeline.content_index.synced_prefixes.add(prefix)
        pipeline.content_index.answer = IndexAnswer(response="text", documents=documents)
        await pipeline.repository.update_source(submission_id=created.submission_id, archive_key=f"{prefix}a")

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.FULL)

        assert exc_info.value.code == expected_code

    asyncio.run(_run())


@pytest.mark.unit
def test_should_skip_rules() -> None:
    async def _snapshot():
        pipeline = build_pipeline()
        return await pipeline.repository.create_submission(submission_command())

    snapshot = asyncio.run(_snapshot())
    quick = replace(snapshot, source=replace(snapshot.source, derived_summary="s", summary_tier=SummaryTier.QUICK))
    full = replace(snapshot, source=replace(snapshot.source, derived_summary="s", summary_tier=SummaryTier.FULL))

    assert should_skip(snapshot, tier=SummaryTier.QUICK, force_regenerate=False) is False
    assert should_skip(quick, tier=SummaryTier.QUICK, force_regenerate=False) is True
    assert should_skip(quick, tier=SummaryTier.FULL, force_regenerate=False) is False
    assert should_skip(full, tier=SummaryTier.FULL, force_regenerate=False) is True
    assert should_skip(full, tier=SummaryTier.FULL, force_regenerate=True) is False


@pytest.mark.unit
def test_summary_formatting() -> None:
    quick = format_quick_summary(title="Rocket", payload={"mainPurpose": "Tracks launches."})
    fallback = format_full_summary(
        title="Rocket",
        response="  ",
        documents=[IndexDocument(path="sub_x/src/app.py"), IndexDocument(path="sub_x/README.md")],
        prefix="sub_x/",
    )

    assert "## Main Purpose\n\nTracks launches." in quick
    assert "## Key Technologies and Frameworks\n\nNot available." in quick
    assert fallback.endswith("Analyzed 2 files from this repository. Key files: src/app.py, README.md.")


@pytest.mark.unit
def test_quick_summary_prompt_includes_screenshot_urls() -> None:
    async def _run() -> None:
        pipeline = build_pipeline()
        created = await pipeline.repository.create_submission(submission_command(site_url="https://rocket.example"))
        await pipeline.repository.add_screenshot(
            submission_id=created.submission_id,
            screenshot=Screenshot(
                object_key=f"{created.submission_id}/screenshots/s.png",
                url="https://cdn.example/s.png",
                captured_at=pipeline.clock(),
            ),
        )

        outcome = await pipeline.orchestrator.generate_summary(created.submission_id, tier=SummaryTier.QUICK)

        assert outcome.status == "generated"
        assert "https://cdn.example/s.png" in pipeline.ai_gateway.calls[0].user_prompt

    asyncio.run(_run())
