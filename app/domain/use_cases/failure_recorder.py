from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import logging
from typing import Protocol

from app.domain.contracts import SubmissionRepository
from app.domain.lifecycle import truncate_processing_error
from app.domain.models import ProcessingState

COMPONENT_ID = "domain.failure.record"

logger = logging.getLogger("pipeline")


class FailureWriteStrategy(Protocol):
    name: str

    async def write(
        self,
        repository: SubmissionRepository,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState,
        source_changes: Mapping[str, object],
    ) -> None: ...


@dataclass(frozen=True)
class FullSourceUpdate:
    """Patch the error fields together with any source fields the failed stage had produced."""

    name: str = "full_source_update"

    async def write(
        self,
        repository: SubmissionRepository,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState,
        source_changes: Mapping[str, object],
    ) -> None:
        await repository.update_source(
            submission_id=submission_id,
            **source_changes,
            processing_state=next_state,
            processing_error=message,
        )


@dataclass(frozen=True)
class MinimalErrorUpdate:
    """Narrow write touching only the error fields."""

    name: str = "minimal_error_update"

    async def write(
        self,
        repository: SubmissionRepository,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState,
        source_changes: Mapping[str, object],
    ) -> None:
        del source_changes
        await repository.mark_processing_error(submission_id=submission_id, message=message, next_state=next_state)


DEFAULT_STRATEGIES: tuple[FailureWriteStrategy, ...] = (FullSourceUpdate(), MinimalErrorUpdate())


class FailureRecorder:
    """Persist a stage failure on the submission record, trying each write strategy in order.

    Never raises: a failure that cannot be recorded is logged and reported as False.
    """

    def __init__(self, strategies: Sequence[FailureWriteStrategy] = DEFAULT_STRATEGIES) -> None:
        if not strategies:
            raise ValueError("failure recorder needs at least one write strategy")
        self._strategies = tuple(strategies)

    async def record(
        self,
        repository: SubmissionRepository,
        *,
        submission_id: str,
        message: str,
        next_state: ProcessingState = ProcessingState.ERROR,
        source_changes: Mapping[str, object] | None = None,
    ) -> bool:
        truncated = truncate_processing_error(message)
        changes = {
            key: value
            for key, value in (source_changes or {}).items()
            if key not in ("processing_state", "processing_error")
        }
        for strategy in self._strategies:
            try:
                await strategy.write(
                    repository,
                    submission_id=submission_id,
                    message=truncated,
                    next_state=next_state,
                    source_changes=changes,
                )
            except Exception as exc:
                logger.warning(
                    "failure record write failed",
                    extra={"submission_id": submission_id, "strategy": strategy.name, "error": str(exc)},
                )
                continue
            return True

        logger.error(
            "failure could not be recorded",
            extra={"submission_id": submission_id, "strategies": [item.name for item in self._strategies]},
        )
        return False
