from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import UTC, datetime
import importlib
import json
from typing import Any

from app.domain.dto import CreateSubmissionCommand
from app.domain.errors import DomainInvariantError, SubmissionNotFoundError
from app.domain.error_taxonomy import classify_error, resolve_stage_error
from app.domain.ids import new_job_public_id, new_submission_public_id
from app.domain.lifecycle import STAGE_LIFECYCLES, truncate_processing_error
from app.domain.models import (
    PipelineJob,
    PipelineStage,
    ProcessingState,
    Screenshot,
    SubmissionAI,
    SubmissionSnapshot,
    SubmissionSource,
    SummaryTier,
)
from app.repositories.sql_loader import load_sql

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


SQL_CREATE_SUBMISSION = load_sql("create_submission.sql")
SQL_GET_SUBMISSION = load_sql("get_submission.sql")
SQL_LIST_SCREENSHOTS = load_sql("list_screenshots.sql")
SQL_DELETE_SUBMISSION = load_sql("delete_submission.sql")
SQL_UPDATE_SUBMISSION_FIELDS = load_sql("update_submission_fields.sql")
SQL_MARK_PROCESSING_ERROR = load_sql("mark_processing_error.sql")
SQL_SET_MANUAL_SUMMARY = load_sql("set_manual_summary.sql")
SQL_ADD_SCREENSHOT = load_sql("add_screenshot.sql")
SQL_REMOVE_SCREENSHOT = load_sql("remove_screenshot.sql")
SQL_ACQUIRE_REVIEW_LOCK = load_sql("acquire_review_lock.sql")
SQL_RELEASE_REVIEW_LOCK = load_sql("release_review_lock.sql")
SQL_GET_HACKATHON_RUBRIC = load_sql("get_hackathon_rubric.sql")
SQL_UPSERT_HACKATHON_RUBRIC = load_sql("upsert_hackathon_rubric.sql")
SQL_ENQUEUE_JOB = load_sql("enqueue_job.sql")
SQL_CLAIM_NEXT_JOB = load_sql("claim_next_job.sql")
SQL_HEARTBEAT_JOB = load_sql("heartbeat_job.sql")
SQL_RECLAIM_EXPIRED_JOBS = load_sql("reclaim_expired_jobs.sql")
SQL_RESCHEDULE_JOB = load_sql("reschedule_job.sql")
SQL_FINALIZE_SUCCESS = load_sql("finalize_success.sql")
SQL_FINALIZE_FAILURE = load_sql("finalize_failure.sql")
SQL_JOB_EXISTS = load_sql("job_exists.sql")
SQL_GET_JOB_STAGE = load_sql("get_job_stage.sql")

# Column names match the dataclass field names one to one.
SOURCE_COLUMNS = tuple(item.name for item in fields(SubmissionSource))
AI_COLUMNS = tuple(item.name for item in fields(SubmissionAI))


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "sqlstate", None) == "23505"


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres repository mode")

        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=1,
            max_size=5,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresSubmissionRepository:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def create_submission(self, cmd: CreateSubmissionCommand) -> SubmissionSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    row = await conn.fetchrow(
                        SQL_CREATE_SUBMISSION,
                        new_submission_public_id(),
                        cmd.hackathon_id,
                        cmd.title,
                        cmd.team,
                        cmd.repo_url,
                        cmd.site_url,
                        cmd.video_url,
                    )
                except Exception as exc:
                    if _is_unique_violation(exc):
                        continue
                    raise
                if row is None:
                    raise DomainInvariantError("failed to create submission")
                return _snapshot_from_row(row, screenshots=())
        raise DomainInvariantError("failed to allocate unique submission public id")

    async def get_submission(self, *, submission_id: str) -> SubmissionSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_SUBMISSION, submission_id)
            if row is None:
                return None
            screenshot_rows = await conn.fetch(SQL_LIST_SCREENSHOTS, submission_id)
        screenshots = tuple(
            Screenshot(object_key=item["object_key"], url=item["url"], captured_at=item["captured_at"])
            for item in screenshot_rows
        )
        return _snapshot_from_row(row, screenshots=screenshots)

    async def delete_submission(self, *, submission_id: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_DELETE_SUBMISSION, submission_id)
        return row is not None

    async def update_source(self, *, submission_id: str, **changes: object) -> None:
        if "processing_error" in changes and isinstance(changes["processing_error"], str):
            changes["processing_error"] = truncate_processing_error(changes["processing_error"])
        await self._patch(submission_id, allowed=SOURCE_COLUMNS, changes=changes)

    async def mark_processing_error(
        self,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState = ProcessingState.ERROR,
    ) -> None:
        await self._execute_for_submission(
            SQL_MARK_PROCESSING_ERROR,
            submission_id,
            truncate_processing_error(message),
            next_state.value,
        )

    async def update_ai(self, *, submission_id: str, **changes: object) -> None:
        await self._patch(submission_id, allowed=AI_COLUMNS, changes=changes)

    async def set_manual_summary(self, *, submission_id: str, summary: str | None) -> None:
        await self._execute_for_submission(SQL_SET_MANUAL_SUMMARY, submission_id, summary)

    async def add_screenshot(self, *, submission_id: str, screenshot: Screenshot) -> None:
        await self._execute_for_submission(
            SQL_ADD_SCREENSHOT,
            submission_id,
            screenshot.object_key,
            screenshot.url,
            screenshot.captured_at,
        )

    async def remove_screenshot(self, *, submission_id: str, object_key: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_REMOVE_SCREENSHOT, submission_id, object_key)
        if row is None:
            raise SubmissionNotFoundError(submission_id)
        return int(row["removed"]) > 0

    async def try_acquire_review_lock(
        self,
        *,
        submission_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> datetime | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_ACQUIRE_REVIEW_LOCK,
                submission_id,
                now or datetime.now(tz=UTC),
                lease_seconds,
            )
        if row is None:
            return None
        return row["in_flight_expires_at"]

    async def release_review_lock(self, *, submission_id: str, lease_expires_at: datetime) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_RELEASE_REVIEW_LOCK, submission_id, lease_expires_at)
        return row is not None

    async def get_hackathon_rubric(self, *, hackathon_id: str) -> str | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_HACKATHON_RUBRIC, hackathon_id)
        if row is None:
            return None
        return row["rubric"] or None

    async def set_hackathon_rubric(self, *, hackathon_id: str, rubric: str) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_UPSERT_HACKATHON_RUBRIC, hackathon_id, rubric.strip())

    async def enqueue_job(
        self,
        *,
        submission_id: str,
        stage: PipelineStage,
        tier: SummaryTier | None = None,
        force_regenerate: bool = False,
        delay_seconds: float = 0,
    ) -> PipelineJob:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_ENQUEUE_JOB,
                submission_id,
                stage.value,
                tier.value if tier is not None else "",
                force_regenerate,
                new_job_public_id(),
                float(delay_seconds),
            )
        if row is None:
            raise SubmissionNotFoundError(submission_id)
        return _job_from_row(row, submission_id=submission_id)

    async def claim_next_job(
        self,
        *,
        stage: PipelineStage,
        worker_id: str,
        lease_seconds: int = 30,
    ) -> PipelineJob | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SQL_CLAIM_NEXT_JOB, stage.value, worker_id, lease_seconds)
        if row is None:
            return None
        return _job_from_row(row, submission_id=row["submission_public_id"])

    async def heartbeat_job(self, *, job_id: str, worker_id: str, lease_seconds: int = 30) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_HEARTBEAT_JOB, job_id, worker_id, lease_seconds)
        return row is not None

    async def reclaim_expired_jobs(self, *, stage: PipelineStage) -> int:
        lifecycle = STAGE_LIFECYCLES[stage]
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                SQL_RECLAIM_EXPIRED_JOBS,
                stage.value,
                "INTERNAL_ERROR",
                "claim lease expired and was reclaimed",
                lifecycle.max_attempts,
            )
        return len(rows)

    async def reschedule_job(self, *, job_id: str, worker_id: str, delay_seconds: float) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SQL_RESCHEDULE_JOB, job_id, worker_id, float(delay_seconds))
                if row is None:
                    await self._raise_unless_gone(conn, job_id)

    async def finalize_job(
        self,
        *,
        job_id: str,
        worker_id: str,
        success: bool,
        detail: str,
        error_code: str | None = None,
        retry_delay_seconds: float = 0,
    ) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                if success:
                    row = await conn.fetchrow(SQL_FINALIZE_SUCCESS, job_id, worker_id)
                    if row is None:
                        await self._raise_unless_gone(conn, job_id)
                    return

                stage_row = await conn.fetchrow(SQL_GET_JOB_STAGE, job_id)
                if stage_row is None:
                    # Submission was deleted while the job ran.
                    return
                stage = PipelineStage(stage_row["stage"])
                resolved_error_code = resolve_stage_error(stage=stage, code=error_code or "INTERNAL_ERROR")
                # Terminal errors stop at failed; recoverable ones follow retry/dead-letter policy.
                row = await conn.fetchrow(
                    SQL_FINALIZE_FAILURE,
                    job_id,
                    worker_id,
                    resolved_error_code,
                    detail,
                    classify_error(resolved_error_code) == "terminal",
                    STAGE_LIFECYCLES[stage].max_attempts,
                    float(retry_delay_seconds),
                )
                if row is None:
                    raise DomainInvariantError("finalize rejected by ownership guard")

    async def _raise_unless_gone(self, conn: Any, job_id: str) -> None:
        exists = await conn.fetchrow(SQL_JOB_EXISTS, job_id)
        if exists is not None:
            raise DomainInvariantError("job ownership is stale")

    async def _patch(self, submission_id: str, *, allowed: tuple[str, ...], changes: dict[str, object]) -> None:
        if not changes:
            return
        unknown = set(changes) - set(allowed)
        if unknown:
            raise DomainInvariantError(f"unknown submission fields: {sorted(unknown)}")
        columns = list(changes)
        # Column names come from the dataclass whitelist above, never from callers.
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        query = SQL_UPDATE_SUBMISSION_FIELDS.format(assignments=assignments)
        values = [_to_db_value(changes[column]) for column in columns]
        await self._execute_for_submission(query, submission_id, *values)

    async def _execute_for_submission(self, query: str, submission_id: str, *args: object) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(query, submission_id, *args)
        if row is None:
            raise SubmissionNotFoundError(submission_id)


def _to_db_value(value: object) -> object:
    if isinstance(value, (ProcessingState, SummaryTier)):
        return value.value
    return value


def _record_get(row: object, key: str) -> object | None:
    if isinstance(row, dict):
        return row.get(key)
    try:
        return row[key]  # type: ignore[index]
    except (KeyError, IndexError):
        return None


def _as_str(value: object | None) -> str | None:
    if isinstance(value, str):
        return value
    return None


def _as_datetime(value: object | None) -> datetime | None:
    if isinstance(value, datetime):
        return value
    return None


def _as_float(value: object | None) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def _snapshot_from_row(row: object, *, screenshots: tuple[Screenshot, ...]) -> SubmissionSnapshot:
    processing_state = _as_str(_record_get(row, "processing_state"))
    summary_tier = _as_str(_record_get(row, "summary_tier"))
    source = SubmissionSource(
        archive_key=_as_str(_record_get(row, "archive_key")),
        archive_uploaded_at=_as_datetime(_record_get(row, "archive_uploaded_at")),
        readme=_as_str(_record_get(row, "readme")),
        readme_filename=_as_str(_record_get(row, "readme_filename")),
        readme_fetched_at=_as_datetime(_record_get(row, "readme_fetched_at")),
        screenshot_capture_started_at=_as_datetime(_record_get(row, "screenshot_capture_started_at")),
        screenshot_capture_completed_at=_as_datetime(_record_get(row, "screenshot_capture_completed_at")),
        derived_summary=_as_str(_record_get(row, "derived_summary")),
        summary_tier=SummaryTier(summary_tier) if summary_tier else None,
        summarized_at=_as_datetime(_record_get(row, "summarized_at")),
        content_index_sync_started_at=_as_datetime(_record_get(row, "content_index_sync_started_at")),
        content_index_sync_completed_at=_as_datetime(_record_get(row, "content_index_sync_completed_at")),
        processing_state=ProcessingState(processing_state) if processing_state else None,
        processing_error=_as_str(_record_get(row, "processing_error")),
    )
    ai = SubmissionAI(
        review_summary=_as_str(_record_get(row, "review_summary")),
        score=_as_float(_record_get(row, "score")),
        in_flight=bool(_record_get(row, "in_flight")),
        in_flight_expires_at=_as_datetime(_record_get(row, "in_flight_expires_at")),
        last_reviewed_at=_as_datetime(_record_get(row, "last_reviewed_at")),
        score_generation_started_at=_as_datetime(_record_get(row, "score_generation_started_at")),
        score_generation_completed_at=_as_datetime(_record_get(row, "score_generation_completed_at")),
    )
    return SubmissionSnapshot(
        submission_id=_as_str(_record_get(row, "public_id")) or "",
        hackathon_id=_as_str(_record_get(row, "hackathon_id")) or "",
        title=_as_str(_record_get(row, "title")) or "",
        team=_as_str(_record_get(row, "team")) or "",
        repo_url=_as_str(_record_get(row, "repo_url")) or "",
        site_url=_as_str(_record_get(row, "site_url")),
        video_url=_as_str(_record_get(row, "video_url")),
        manual_summary=_as_str(_record_get(row, "manual_summary")),
        source=source,
        ai=ai,
        screenshots=screenshots,
        created_at=_as_datetime(_record_get(row, "created_at")),
        updated_at=_as_datetime(_record_get(row, "updated_at")),
    )


def _job_from_row(row: object, *, submission_id: str) -> PipelineJob:
    tier = _as_str(_record_get(row, "tier"))
    return PipelineJob(
        job_id=_as_str(_record_get(row, "public_id")) or "",
        submission_id=submission_id,
        stage=PipelineStage(_as_str(_record_get(row, "stage"))),
        attempt=int(_record_get(row, "attempts") or 0) + 1,  # type: ignore[call-overload]
        tier=SummaryTier(tier) if tier else None,
        force_regenerate=bool(_record_get(row, "force_regenerate")),
        polls=int(_record_get(row, "polls") or 0),  # type: ignore[call-overload]
        lease_expires_at=_as_datetime(_record_get(row, "lease_expires_at")),
    )
