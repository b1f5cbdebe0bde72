from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from app.settings import env_int
from app.workers.loop import DEFAULT_RETRY_DELAY_SECONDS, WorkerLoop


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    poll_interval_ms: int = 200
    idle_backoff_ms: int = 1000
    error_backoff_ms: int = 2000
    claim_lease_seconds: int = 30
    heartbeat_interval_ms: int = 10000
    retry_delay_seconds: int = int(DEFAULT_RETRY_DELAY_SECONDS)
    # Expired leases are swept at most this often, not on every tick.
    reclaim_interval_ms: int = 5000


@dataclass
class WorkerRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    claims_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0
    reclaimed_total: int = 0


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    defaults = WorkerRuntimeSettings()
    return WorkerRuntimeSettings(
        poll_interval_ms=env_int("WORKER_POLL_INTERVAL_MS", defaults.poll_interval_ms),
        idle_backoff_ms=env_int("WORKER_IDLE_BACKOFF_MS", defaults.idle_backoff_ms),
        error_backoff_ms=env_int("WORKER_ERROR_BACKOFF_MS", defaults.error_backoff_ms),
        claim_lease_seconds=env_int("WORKER_CLAIM_LEASE_SECONDS", defaults.claim_lease_seconds),
        heartbeat_interval_ms=env_int("WORKER_HEARTBEAT_INTERVAL_MS", defaults.heartbeat_interval_ms),
        retry_delay_seconds=env_int("WORKER_RETRY_DELAY_SECONDS", defaults.retry_delay_seconds),
        reclaim_interval_ms=env_int("WORKER_RECLAIM_INTERVAL_MS", defaults.reclaim_interval_ms),
    )


async def run_worker_until_stopped(
    *,
    worker_loop: WorkerLoop,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    """Drive one stage's worker loop until `stop_event` is set.

    Each tick first sweeps expired leases (rate limited by
    `reclaim_interval_ms`) so jobs of crashed workers become claimable again,
    then claims and processes at most one job. Tick errors are logged and
    backed off; they never stop the loop.
    """
    state = state or WorkerRuntimeState()
    owns_lifecycle = isinstance(worker_loop, WorkerLoop)
    if owns_lifecycle:
        worker_loop.claim_lease_seconds = settings.claim_lease_seconds
        worker_loop.heartbeat_interval_ms = settings.heartbeat_interval_ms
        worker_loop.retry_delay_seconds = settings.retry_delay_seconds

    context = {"role": role, "service": role, "run_id": run_id, "stage": worker_loop.stage}
    state.started = True
    logger.info("worker loop started", extra=context)

    next_reclaim_at = 0.0
    while not stop_event.is_set():
        try:
            if owns_lifecycle and time.monotonic() >= next_reclaim_at:
                next_reclaim_at = time.monotonic() + settings.reclaim_interval_ms / 1000
                reclaimed = await worker_loop.repository.reclaim_expired_jobs(stage=worker_loop.stage)
                if reclaimed:
                    state.reclaimed_total += reclaimed
                    logger.warning("expired job leases reclaimed", extra={**context, "reclaimed": reclaimed})

            did_work = await worker_loop.run_once()
            state.ticks_total += 1
            if did_work:
                state.claims_total += 1
                delay_ms = settings.poll_interval_ms
                logger.info("worker tick", extra={**context, "did_work": "true"})
            else:
                state.idle_ticks_total += 1
                delay_ms = settings.idle_backoff_ms
                logger.debug("worker tick", extra={**context, "did_work": "false"})
        except Exception:
            state.ticks_total += 1
            state.errors_total += 1
            delay_ms = settings.error_backoff_ms
            logger.exception("worker tick error", extra=context)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            continue

    state.stopped = True
    logger.info("worker loop stopped", extra=context)
