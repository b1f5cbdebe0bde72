from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from collections.abc import Awaitable, Callable
import logging
import math

from fastapi import Body, FastAPI, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from app.api.handlers.deps import ApiDeps
from app.api.handlers.review import review_error_code, review_status_code, run_review_handler
from app.api.handlers.submissions import (
    create_submission_handler,
    delete_submission_handler,
    remove_screenshot_handler,
    get_submission_handler,
    regenerate_summary_handler,
    retry_processing_handler,
    set_manual_summary_handler,
)
from app.api.schemas import (
    CreateSubmissionRequest,
    EnqueuedJobResponse,
    ErrorResponse,
    HealthResponse,
    ManualSummaryRequest,
    ReadyResponse,
    RegenerateSummaryRequest,
    RetryResponse,
    ReviewErrorResponse,
    ReviewRequest,
    ReviewResponse,
    RubricRequest,
    RubricResponse,
    SubmissionResponse,
    WorkerMetrics,
)
from app.domain.errors import DomainInvariantError, PipelineError, SubmissionNotFoundError

from app.workers.loop import WorkerLoop
from app.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

NOT_FOUND_RESPONSES = {404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}


def build_app(
    role: str,
    run_id: str,
    worker_loop: WorkerLoop | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
    mode: str = "skeleton",
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_state: WorkerRuntimeState | None = None
    worker_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task, worker_state
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker_loop is not None:
            settings = worker_runtime_settings or worker_runtime_settings_from_env()
            worker_state = WorkerRuntimeState()
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    worker_loop=worker_loop,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=worker_state,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            await worker_task

        if api_deps is not None:
            await api_deps.orchestrator.drain_cleanups()

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="submission-enrichment-pipeline", version="0.1.0", lifespan=lifespan)

    def _deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role, mode=mode)

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker_loop is not None
        worker_loop_ready = True
        metrics = WorkerMetrics(
            started=False,
            stopped=False,
            ticks_total=0,
            claims_total=0,
            idle_ticks_total=0,
            errors_total=0,
            reclaimed_total=0,
        )
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_state is not None
                and worker_state.started
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_state is not None:
                metrics = WorkerMetrics(
                    started=worker_state.started,
                    stopped=worker_state.stopped,
                    ticks_total=worker_state.ticks_total,
                    claims_total=worker_state.claims_total,
                    idle_ticks_total=worker_state.idle_ticks_total,
                    errors_total=worker_state.errors_total,
                    reclaimed_total=worker_state.reclaimed_total,
                )

        return ReadyResponse(
            status="ready",
            role=role,
            mode=mode,
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=metrics,
        )

    @app.post(
        "/submissions",
        response_model=SubmissionResponse,
        status_code=201,
        responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Submissions"],
    )
    async def create_submission(request: CreateSubmissionRequest) -> SubmissionResponse:
        try:
            return await create_submission_handler(request=request, api_deps=_deps())
        except DomainInvariantError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except PipelineError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc

    @app.get(
        "/submissions/{submission_id}",
        response_model=SubmissionResponse,
        responses=NOT_FOUND_RESPONSES,
        tags=["Submissions"],
    )
    async def get_submission(submission_id: str) -> SubmissionResponse:
        submission = await get_submission_handler(submission_id=submission_id, api_deps=_deps())
        if submission is None:
            raise HTTPException(status_code=404, detail="submission not found")
        return submission

    @app.delete(
        "/submissions/{submission_id}",
        status_code=204,
        responses=NOT_FOUND_RESPONSES,
        tags=["Submissions"],
    )
    async def delete_submission(submission_id: str) -> Response:
        deleted = await delete_submission_handler(submission_id=submission_id, api_deps=_deps())
        if not deleted:
            raise HTTPException(status_code=404, detail="submission not found")
        return Response(status_code=204)

    @app.delete(
        "/submissions/{submission_id}/screenshots",
        status_code=204,
        responses=NOT_FOUND_RESPONSES,
        tags=["Submissions"],
    )
    async def remove_screenshot(
        submission_id: str,
        object_key: str = Query(min_length=1),  # noqa: B008
    ) -> Response:
        try:
            removed = await remove_screenshot_handler(
                submission_id=submission_id,
                object_key=object_key,
                api_deps=_deps(),
            )
        except SubmissionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        if not removed:
            raise HTTPException(status_code=404, detail="screenshot not found")
        return Response(status_code=204)

    @app.put(
        "/submissions/{submission_id}/manual-summary",
        response_model=SubmissionResponse,
        responses=NOT_FOUND_RESPONSES,
        tags=["Submissions"],
    )
    async def set_manual_summary(submission_id: str, request: ManualSummaryRequest) -> SubmissionResponse:
        try:
            return await set_manual_summary_handler(
                submission_id=submission_id,
                summary=request.summary,
                api_deps=_deps(),
            )
        except SubmissionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post(
        "/submissions/{submission_id}/retry",
        response_model=RetryResponse,
        status_code=202,
        responses=NOT_FOUND_RESPONSES,
        tags=["Pipeline"],
    )
    async def retry_processing(submission_id: str) -> RetryResponse:
        try:
            return await retry_processing_handler(submission_id=submission_id, api_deps=_deps())
        except SubmissionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post(
        "/submissions/{submission_id}/summary",
        response_model=EnqueuedJobResponse,
        status_code=202,
        responses=NOT_FOUND_RESPONSES,
        tags=["Pipeline"],
    )
    async def regenerate_summary(
        submission_id: str,
        request: RegenerateSummaryRequest | None = Body(default=None),  # noqa: B008
    ) -> EnqueuedJobResponse:
        request = request or RegenerateSummaryRequest()
        try:
            return await regenerate_summary_handler(
                submission_id=submission_id,
                tier=request.tier,
                force_regenerate=request.force_regenerate,
                api_deps=_deps(),
            )
        except SubmissionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.put("/hackathons/{hackathon_id}/rubric", response_model=RubricResponse, tags=["Hackathons"])
    async def set_rubric(hackathon_id: str, request: RubricRequest) -> RubricResponse:
        deps = _deps()
        await deps.repository.set_hackathon_rubric(hackathon_id=hackathon_id, rubric=request.rubric)
        rubric = await deps.repository.get_hackathon_rubric(hackathon_id=hackathon_id)
        return RubricResponse(hackathon_id=hackathon_id, rubric=rubric or "")

    @app.post(
        "/review",
        response_model=ReviewResponse,
        responses={
            400: {"model": ReviewErrorResponse},
            404: {"model": ReviewErrorResponse},
            409: {"model": ReviewErrorResponse},
            429: {"model": ReviewErrorResponse},
            500: {"model": ReviewErrorResponse},
        },
        tags=["Review"],
    )
    async def review(request: ReviewRequest | None = Body(default=None)) -> JSONResponse:  # noqa: B008
        outcome = await run_review_handler(
            submission_id=request.submission_id if request is not None else None,
            api_deps=_deps(),
        )
        status_code = review_status_code(outcome)
        if outcome.ok:
            return JSONResponse(status_code=200, content={"score": outcome.score, "summary": outcome.summary})

        headers: dict[str, str] = {}
        if outcome.code == "RATE_LIMIT":
            retry_after = outcome.retry_after_seconds if outcome.retry_after_seconds is not None else 60
            headers["Retry-After"] = str(max(1, math.ceil(retry_after)))
        return JSONResponse(
            status_code=status_code,
            content={"code": review_error_code(outcome), "message": outcome.message},
            headers=headers,
        )

    return app
