"""
Provisioning orchestrator.

Drives one provisioning run through its state machine:

    init -> materializing -> storing -> binding -> confirming -> ready
                        (any non-terminal state) -> failed

Each secret is materialized and immediately stored; its plaintext is
dropped as soon as the store acknowledges. Grants are issued once every
reference exists, then confirmed by bounded polling. A run halts at the
first failure and never rolls back stored secrets: storing is idempotent,
so the recovery path is to resubmit the whole run.

Usage:
    orchestrator = ProvisioningOrchestrator(store, binder, materializer, caller)
    run = await orchestrator.run(request)
    if run.is_ready:
        refs = run.reference_map
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional

import structlog

from vaultseed.access.binder import AccessBinder
from vaultseed.core.exceptions import (
    BindingTimeout,
    PreconditionUnmet,
    RetryableError,
    RunCancelled,
    StoreWriteTimeout,
)
from vaultseed.models.schemas import (
    Binding,
    BindingRequest,
    BindingState,
    FailureReason,
    ProvisioningRequest,
    ProvisioningRun,
    RunState,
    SecretReference,
    SecretSpec,
)
from vaultseed.secrets.materializer import CredentialMaterializer
from vaultseed.secrets.store import CallerContext, SecretStore

logger = structlog.get_logger(__name__)

_ALLOWED_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.INIT: {RunState.MATERIALIZING, RunState.FAILED},
    RunState.MATERIALIZING: {RunState.STORING, RunState.BINDING, RunState.FAILED},
    RunState.STORING: {RunState.BINDING, RunState.FAILED},
    RunState.BINDING: {RunState.CONFIRMING, RunState.FAILED},
    RunState.CONFIRMING: {RunState.READY, RunState.FAILED},
    RunState.READY: set(),
    RunState.FAILED: set(),
}


class _StepFailed(Exception):
    """A component error tagged with the secret or binding it came from."""

    def __init__(
        self,
        error: BaseException,
        secret_name: Optional[str] = None,
        binding: Optional[str] = None,
    ):
        self.error = error
        self.secret_name = secret_name
        self.binding = binding
        super().__init__(str(error))


class ProvisioningOrchestrator:
    """
    Converges secrets and access bindings to a requested state.

    The store, binder and materializer are passed in explicitly; the
    orchestrator keeps no state between runs.
    """

    def __init__(
        self,
        store: SecretStore,
        binder: AccessBinder,
        materializer: CredentialMaterializer,
        caller: CallerContext,
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
        store_timeout: float = 30.0,
        grant_timeout: float = 30.0,
        max_concurrency: int = 4,
    ) -> None:
        self.store = store
        self.binder = binder
        self.materializer = materializer
        self.caller = caller
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.store_timeout = store_timeout
        self.grant_timeout = grant_timeout
        self.max_concurrency = max_concurrency
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Stop the active run at its next suspension point.

        The request stays in force until reset_cancel(), so a run started
        afterwards (e.g. a resubmission) ends Failed(cancelled) immediately.
        """
        logger.info("run_cancel_requested")
        self._cancel_event.set()

    def reset_cancel(self) -> None:
        self._cancel_event.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def wait_cancelled(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds, waking early on cancel(). Returns cancelled."""
        try:
            async with asyncio.timeout(timeout):
                await self._cancel_event.wait()
        except TimeoutError:
            pass
        return self.cancelled

    async def run(self, request: ProvisioningRequest) -> ProvisioningRun:
        """
        Execute one provisioning run.

        Failures are recorded on the returned run rather than raised. Task
        cancellation is recorded as Failed(cancelled) and then re-raised.
        A pending cancel() request fails the run before anything is written.
        """
        run = ProvisioningRun()
        log = logger.bind(run_id=run.run_id)
        log.info(
            "run_started",
            secrets=request.secret_names,
            bindings=[b.describe() for b in request.bindings],
        )

        confirm_timeout = request.confirm_timeout_seconds or self.confirm_timeout
        poll_interval = request.poll_interval_seconds or self.poll_interval

        try:
            self._check_cancelled()
            self.preflight(request)
            self._transition(run, RunState.MATERIALIZING)
            await self._provision_secrets(run, request.secret_specs)

            self._check_cancelled()
            self._transition(run, RunState.BINDING)
            bindings = await self._issue_grants(run, request.bindings)

            self._check_cancelled()
            self._transition(run, RunState.CONFIRMING)
            await self._confirm_bindings(run, bindings, confirm_timeout, poll_interval)

            self._transition(run, RunState.READY)
        except _StepFailed as step:
            self._fail(run, step.error, secret_name=step.secret_name, binding=step.binding)
        except asyncio.CancelledError:
            self._fail(run, RunCancelled("Run cancelled"))
            raise
        except Exception as e:
            self._fail(run, e)
        finally:
            run.finished_at = datetime.now(timezone.utc)
            log.info(
                "run_finished",
                state=run.state.value,
                references=len(run.references),
                failure=run.failure.describe() if run.failure else None,
            )

        return run

    def preflight(self, request: ProvisioningRequest) -> None:
        """
        Checks that must pass before anything is written.

        Raises:
            PreconditionUnmet: If an external precondition is not satisfied.
            _StepFailed: Wrapping PolicyViolation, or ConfigurationError for
                an unset from_env variable, for the offending secret.
        """
        for precondition in request.preconditions:
            if not precondition.satisfied:
                raise PreconditionUnmet(precondition.name, precondition.description)

        for spec in request.secret_specs:
            try:
                self.materializer.validate(spec)
            except Exception as e:
                raise _StepFailed(e, secret_name=spec.name) from e

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _provision_secrets(
        self, run: ProvisioningRun, specs: list[SecretSpec]
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        references = await self._run_halting(
            [
                (self._provision_secret(run, spec, semaphore), {"secret_name": spec.name})
                for spec in specs
            ]
        )
        for spec, reference in zip(specs, references):
            run.references[spec.name] = reference

    async def _provision_secret(
        self,
        run: ProvisioningRun,
        spec: SecretSpec,
        semaphore: asyncio.Semaphore,
    ) -> SecretReference:
        async with semaphore:
            self._check_cancelled()

            if self.materializer.needs_generation(spec):
                existing = await self._bounded(self.store.exists(spec.name), spec.name)
                if existing:
                    reference = await self._bounded(self.store.reference(spec.name), spec.name)
                    logger.info(
                        "secret_reused",
                        run_id=run.run_id,
                        secret=spec.name,
                        version=reference.version,
                    )
                    return reference

            value = self.materializer.materialize(spec)
            try:
                self._check_cancelled()
                if run.state is RunState.MATERIALIZING:
                    self._transition(run, RunState.STORING)
                return await self._bounded(
                    self.store.put(spec.name, value, self.caller), spec.name
                )
            finally:
                del value

    async def _issue_grants(
        self, run: ProvisioningRun, requests: list[BindingRequest]
    ) -> list[Binding]:
        bindings = await self._run_halting(
            [
                (self._grant(run, request), {"binding": request.describe()})
                for request in requests
            ]
        )
        run.bindings = list(bindings)
        return bindings

    async def _grant(self, run: ProvisioningRun, request: BindingRequest) -> Binding:
        resource = request.resource
        if request.secret_name is not None:
            resource = run.references[request.secret_name].location_uri

        try:
            async with asyncio.timeout(self.grant_timeout):
                return await self.binder.grant(request.identity, resource, request.capability)
        except TimeoutError as e:
            raise BindingTimeout(
                f"Grant request not acknowledged within {self.grant_timeout}s",
                {"binding": request.describe()},
            ) from e

    async def _confirm_bindings(
        self,
        run: ProvisioningRun,
        bindings: list[Binding],
        confirm_timeout: float,
        poll_interval: float,
    ) -> None:
        confirmed = await self._run_halting(
            [
                (
                    self.binder.confirm(
                        binding,
                        max_wait=confirm_timeout,
                        poll_interval=poll_interval,
                        cancel_event=self._cancel_event,
                    ),
                    {"binding": binding.describe()},
                )
                for binding in bindings
            ]
        )
        run.bindings = list(confirmed)

        for binding in confirmed:
            if binding.state is not BindingState.ACTIVE:
                raise _StepFailed(
                    BindingTimeout(
                        f"Binding not active after {confirm_timeout}s",
                        {"binding": binding.describe()},
                    ),
                    binding=binding.describe(),
                )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _bounded(self, awaitable: Awaitable[Any], secret_name: str) -> Any:
        try:
            async with asyncio.timeout(self.store_timeout):
                return await awaitable
        except TimeoutError as e:
            raise StoreWriteTimeout(
                getattr(self.store, "name", "store"),
                f"No acknowledgment within {self.store_timeout}s",
                {"secret": secret_name},
            ) from e

    async def _run_halting(
        self, items: list[tuple[Awaitable[Any], dict[str, str]]]
    ) -> list[Any]:
        """Run awaitables concurrently; on the first error cancel the rest.

        Errors are reported in submission order, tagged with their context.
        """
        if not items:
            return []

        tasks = [asyncio.ensure_future(awaitable) for awaitable, _ in items]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task, (_, context) in zip(tasks, items):
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                raise _StepFailed(error, **context)

        return [task.result() for task in tasks]

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise RunCancelled("Run cancelled")

    def _transition(self, run: ProvisioningRun, state: RunState) -> None:
        if state not in _ALLOWED_TRANSITIONS[run.state]:
            raise RuntimeError(f"Invalid run transition {run.state.value} -> {state.value}")
        logger.info(
            "run_state_changed",
            run_id=run.run_id,
            previous=run.state.value,
            state=state.value,
        )
        run.state = state
        run.history.append(state)

    def _fail(
        self,
        run: ProvisioningRun,
        error: BaseException,
        secret_name: Optional[str] = None,
        binding: Optional[str] = None,
    ) -> None:
        kind = "cancelled" if isinstance(error, RunCancelled) else type(error).__name__
        run.failure = FailureReason(
            kind=kind,
            message=getattr(error, "message", None) or str(error),
            secret_name=secret_name,
            binding=binding,
            retryable=isinstance(error, RetryableError),
        )
        if not run.state.is_terminal:
            self._transition(run, RunState.FAILED)
        logger.error(
            "run_failed",
            run_id=run.run_id,
            kind=kind,
            secret=secret_name,
            binding=binding,
            error=str(error),
            retryable=run.failure.retryable,
        )
