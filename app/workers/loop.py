from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from app.domain.contracts import SubmissionRepository
from app.domain.error_taxonomy import classify_error, resolve_stage_error
from app.domain.errors import DomainInvariantError
from app.domain.models import PipelineJob, PipelineStage, ProcessResult

ProcessHandler = Callable[[PipelineJob], Awaitable[ProcessResult]]
logger = logging.getLogger("runtime")

DEFAULT_RETRY_DELAY_SECONDS = 5.0


@dataclass
class WorkerLoop:
    role: str
    stage: PipelineStage
    repository: SubmissionRepository
    process: ProcessHandler
    claim_lease_seconds: int = 30
    heartbeat_interval_ms: int = 10000
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS

    async def run_once(self) -> bool:
        job = await self.repository.claim_next_job(
            stage=self.stage,
            worker_id=self.role,
            lease_seconds=self.claim_lease_seconds,
        )
        if job is None:
            return False

        lease_lost = False
        stop_heartbeat = asyncio.Event()

        async def _heartbeat_loop() -> None:
            nonlocal lease_lost
            interval_seconds = max(self.heartbeat_interval_ms, 1) / 1000
            while not stop_heartbeat.is_set():
                try:
                    await asyncio.wait_for(stop_heartbeat.wait(), timeout=interval_seconds)
                    break
                except TimeoutError:
                    pass

                heartbeat_ok = await self.repository.heartbeat_job(
                    job_id=job.job_id,
                    worker_id=self.role,
                    lease_seconds=self.claim_lease_seconds,
                )
                if not heartbeat_ok:
                    lease_lost = True
                    stop_heartbeat.set()
                    break

        heartbeat_task = asyncio.create_task(_heartbeat_loop())
        try:
            result = await self.process(job)
        finally:
            stop_heartbeat.set()
            await heartbeat_task

        if lease_lost:
            raise DomainInvariantError("claim ownership is stale")

        if result.success and result.reschedule_after_seconds is not None:
            await self.repository.reschedule_job(
                job_id=job.job_id,
                worker_id=self.role,
                delay_seconds=result.reschedule_after_seconds,
            )
            return True

        error_code = None
        retry_delay_seconds = 0.0
        if not result.success:
            error_code = resolve_stage_error(
                stage=self.stage,
                code=result.error_code or "INTERNAL_ERROR",
            )
            retry_classification = result.retry_classification or classify_error(error_code)
            retry_delay_seconds = (
                result.retry_after_seconds if result.retry_after_seconds is not None else self.retry_delay_seconds
            )
            logger.warning(
                "worker stage failed",
                extra={
                    "submission_id": job.submission_id,
                    "job_id": job.job_id,
                    "stage": self.stage,
                    "error_code": error_code,
                    "retry_classification": retry_classification,
                },
            )

        await self.repository.finalize_job(
            job_id=job.job_id,
            worker_id=self.role,
            success=result.success,
            detail=result.detail,
            error_code=error_code,
            retry_delay_seconds=retry_delay_seconds,
        )
        return True
