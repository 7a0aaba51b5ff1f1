"""Whole-run resubmission for transient failures.

A run is idempotent end to end, so a failure marked retryable (vault
unreachable, write timeout, slow propagation) is handled by running the
same request again. Permanent failures are returned after the first attempt.
A cancel() on the orchestrator ends the loop: the backoff sleep wakes up and
no further resubmission is made.
"""

from __future__ import annotations

from typing import Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from vaultseed.models.schemas import ProvisioningRequest, ProvisioningRun, RunState
from vaultseed.orchestration.orchestrator import ProvisioningOrchestrator

logger = structlog.get_logger(__name__)


def _resubmit_predicate(orchestrator: ProvisioningOrchestrator) -> Callable[[ProvisioningRun], bool]:
    def _should_resubmit(run: ProvisioningRun) -> bool:
        return (
            not orchestrator.cancelled
            and run.state is RunState.FAILED
            and run.failure is not None
            and run.failure.kind != "cancelled"
            and run.failure.retryable
        )

    return _should_resubmit


def _last_run(retry_state: RetryCallState) -> ProvisioningRun:
    logger.error("run_retries_exhausted", attempts=retry_state.attempt_number)
    return retry_state.outcome.result()


async def run_with_retries(
    orchestrator: ProvisioningOrchestrator,
    request: ProvisioningRequest,
    retries: int = 0,
    backoff_seconds: float = 1.0,
    max_backoff_seconds: float = 30.0,
) -> ProvisioningRun:
    """
    Run a request, resubmitting it up to `retries` times on transient failure.

    Any earlier cancel request is cleared once, before the first attempt.

    Args:
        orchestrator: Orchestrator to drive.
        request: Request to submit on every attempt.
        retries: Extra attempts after the first.
        backoff_seconds: Initial wait between attempts.
        max_backoff_seconds: Ceiling for the wait between attempts.

    Returns:
        The last run executed.
    """
    orchestrator.reset_cancel()

    retrying = AsyncRetrying(
        stop=stop_any(
            stop_after_attempt(retries + 1),
            lambda retry_state: orchestrator.cancelled,
        ),
        wait=wait_exponential(
            multiplier=backoff_seconds,
            min=backoff_seconds,
            max=max_backoff_seconds,
        ),
        sleep=orchestrator.wait_cancelled,
        retry=retry_if_result(_resubmit_predicate(orchestrator)),
        retry_error_callback=_last_run,
        before_sleep=lambda retry_state: logger.warning(
            "run_resubmitting",
            attempt=retry_state.attempt_number,
            failure=retry_state.outcome.result().failure.describe(),
            wait=retry_state.next_action.sleep,
        ),
    )
    return await retrying(orchestrator.run, request)
