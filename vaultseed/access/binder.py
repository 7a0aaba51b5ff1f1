"""Access binder: grant capabilities and confirm they have propagated.

Permission systems are eventually consistent, so a grant is never assumed
to be effective when the request returns. `confirm` polls with a bounded
tenacity loop instead of sleeping for a fixed period.

Usage:
    binding = await binder.grant("app-id", "vaultseed", Capability.READ)
    binding = await binder.confirm(binding, max_wait=60, poll_interval=2)
    if binding.state is BindingState.FAILED:
        ...
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Literal, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    wait_exponential,
    wait_fixed,
)

from vaultseed.core.exceptions import IdentityNotFound, ResourceNotFound, RunCancelled
from vaultseed.models.schemas import Binding, BindingState, Capability

logger = structlog.get_logger(__name__)

# sleeps may wake marginally early; closer than this counts as the deadline
_DEADLINE_SLACK = 0.001


class AccessBinder(ABC):
    """Base class for access binders.

    Subclasses implement `grant` and a single-observation `check`; the
    polling loop in `confirm` is shared.
    """

    def __init__(
        self,
        poll_backoff: Literal["fixed", "exponential"] = "exponential",
        max_poll_interval: float = 10.0,
    ) -> None:
        self.poll_backoff = poll_backoff
        self.max_poll_interval = max_poll_interval

    @abstractmethod
    async def grant(
        self, identity_id: str, resource_id: str, capability: Capability
    ) -> Binding:
        """Request a grant. Returns a Pending binding.

        Raises:
            IdentityNotFound: If the identity does not exist.
            ResourceNotFound: If the resource does not exist.
        """
        ...

    @abstractmethod
    async def check(self, binding: Binding) -> BindingState:
        """Observe the binding once."""
        ...

    async def confirm(
        self,
        binding: Binding,
        max_wait: float,
        poll_interval: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Binding:
        """
        Poll until the binding is Active or max_wait elapses.

        The last poll is scheduled on the deadline, so a grant that becomes
        effective before max_wait is reported Active.
        A check() that is still outstanding at the deadline, or when
        cancel_event is set, is abandoned and counts as Pending.

        Args:
            binding: Binding returned by grant().
            max_wait: Seconds to wait for propagation.
            poll_interval: Initial seconds between polls.
            cancel_event: When set, polling stops immediately.

        Returns:
            The binding with state Active, or Failed on timeout.

        Raises:
            RunCancelled: If cancel_event is set before confirmation.
        """
        if binding.state is BindingState.ACTIVE:
            return binding

        base_wait = self._wait_strategy(poll_interval)
        deadline = time.monotonic() + max_wait

        def _wait(retry_state: RetryCallState) -> float:
            remaining = max_wait - (retry_state.seconds_since_start or 0.0)
            return max(0.0, min(base_wait(retry_state), remaining))

        def _stop(retry_state: RetryCallState) -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            elapsed = retry_state.seconds_since_start or 0.0
            return elapsed >= max_wait - _DEADLINE_SLACK

        async def _sleep(seconds: float) -> None:
            if cancel_event is None:
                await asyncio.sleep(seconds)
                return
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass

        state = BindingState.PENDING
        try:
            async for attempt in AsyncRetrying(
                stop=_stop,
                wait=_wait,
                sleep=_sleep,
                retry=retry_if_result(lambda s: s is not BindingState.ACTIVE),
                before_sleep=lambda retry_state: logger.debug(
                    "binding_pending",
                    binding=binding.describe(),
                    attempt=retry_state.attempt_number,
                    wait=retry_state.next_action.sleep,
                ),
            ):
                with attempt:
                    state = await self._observe(binding, deadline, cancel_event)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(state)
        except RetryError:
            pass

        if cancel_event is not None and cancel_event.is_set() and state is not BindingState.ACTIVE:
            raise RunCancelled(
                "Binding confirmation cancelled",
                {"binding": binding.describe()},
            )

        if state is BindingState.ACTIVE:
            logger.info("binding_active", binding=binding.describe())
            return binding.with_state(BindingState.ACTIVE)

        logger.warning(
            "binding_confirmation_timeout",
            binding=binding.describe(),
            max_wait=max_wait,
        )
        return binding.with_state(BindingState.FAILED)

    async def _observe(
        self,
        binding: Binding,
        deadline: float,
        cancel_event: Optional[asyncio.Event],
    ) -> BindingState:
        """One check() call, abandoned as Pending at the deadline or on cancel."""
        check = asyncio.ensure_future(self.check(binding))
        waiters = {check}
        if cancel_event is not None:
            waiters.add(asyncio.ensure_future(cancel_event.wait()))
        try:
            await asyncio.wait(
                waiters,
                timeout=max(deadline - time.monotonic(), _DEADLINE_SLACK),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if check.cancelled():
            logger.warning("binding_check_interrupted", binding=binding.describe())
            return BindingState.PENDING
        return check.result()

    def _wait_strategy(self, poll_interval: float):
        if self.poll_backoff == "fixed":
            return wait_fixed(poll_interval)
        return wait_exponential(
            multiplier=poll_interval,
            min=poll_interval,
            max=max(poll_interval, self.max_poll_interval),
        )


# =============================================================================
# In-memory Control Plane
# =============================================================================


class AccessDirectory:
    """
    In-memory identities, resources and grants.

    Shared by InMemoryAccessBinder (which records grants) and
    InMemorySecretStore (which enforces them). A grant becomes effective at
    the clock time recorded with it.
    """

    def __init__(
        self,
        identities: Iterable[str] = (),
        resources: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.identities: set[str] = set(identities)
        self.resources: set[str] = set(resources)
        self.clock = clock
        self._grants: dict[tuple[str, str, Capability], float] = {}

    def add_identity(self, identity_id: str) -> None:
        self.identities.add(identity_id)

    def add_resource(self, resource_id: str) -> None:
        self.resources.add(resource_id)

    def record_grant(
        self,
        identity_id: str,
        resource_id: str,
        capability: Capability,
        delay: float = 0.0,
    ) -> None:
        """Record a grant effective after `delay` seconds. Re-grants keep the earlier time."""
        key = (identity_id, resource_id, capability)
        effective_at = self.clock() + delay
        self._grants[key] = min(self._grants.get(key, effective_at), effective_at)

    def grant_state(
        self, identity_id: str, resource_id: str, capability: Capability
    ) -> BindingState:
        effective_at = self._grants.get((identity_id, resource_id, capability))
        if effective_at is None or self.clock() < effective_at:
            return BindingState.PENDING
        return BindingState.ACTIVE

    def is_authorized(
        self,
        identity_id: str,
        resource_ids: Iterable[str],
        capability: Capability,
    ) -> bool:
        """True if an effective grant on any of the resources implies the capability."""
        now = self.clock()
        targets = set(resource_ids)
        for (identity, resource, granted), effective_at in self._grants.items():
            if (
                identity == identity_id
                and resource in targets
                and granted.implies(capability)
                and now >= effective_at
            ):
                return True
        return False


class InMemoryAccessBinder(AccessBinder):
    """Access binder over an AccessDirectory with simulated propagation delay."""

    def __init__(
        self,
        directory: AccessDirectory,
        propagation_delay: float = 0.0,
        poll_backoff: Literal["fixed", "exponential"] = "exponential",
        max_poll_interval: float = 10.0,
    ) -> None:
        super().__init__(poll_backoff=poll_backoff, max_poll_interval=max_poll_interval)
        self.directory = directory
        self.propagation_delay = propagation_delay

    async def grant(
        self, identity_id: str, resource_id: str, capability: Capability
    ) -> Binding:
        if identity_id not in self.directory.identities:
            raise IdentityNotFound(identity_id, {"resource": resource_id})
        if resource_id not in self.directory.resources:
            raise ResourceNotFound(resource_id, {"identity": identity_id})

        self.directory.record_grant(
            identity_id, resource_id, capability, delay=self.propagation_delay
        )
        binding = Binding(
            identity_id=identity_id,
            resource_id=resource_id,
            capability=capability,
        )
        logger.info("binding_granted", binding=binding.describe())
        return binding

    async def check(self, binding: Binding) -> BindingState:
        return self.directory.grant_state(
            binding.identity_id, binding.resource_id, binding.capability
        )
