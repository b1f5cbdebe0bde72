from __future__ import annotations

from app.domain.error_taxonomy import classify_error
from app.domain.models import PipelineJob, ProcessResult
from app.workers.handlers.deps import WorkerDeps
from app.workers.loop import ProcessHandler
from app.workers.roles import ROLE_TO_STAGE


def build_process_handler(role: str, deps: WorkerDeps) -> ProcessHandler:
    stage = ROLE_TO_STAGE.get(role)
    if stage is None:
        raise ValueError(f"No worker handler for role '{role}'")

    async def _process(job: PipelineJob) -> ProcessResult:
        if job.stage != stage:
            return ProcessResult(
                success=False,
                detail=f"role {role} cannot process {job.stage} jobs",
                error_code="INTERNAL_ERROR",
                retry_classification=classify_error("INTERNAL_ERROR"),
            )
        return await deps.orchestrator.run_job(job)

    return _process
