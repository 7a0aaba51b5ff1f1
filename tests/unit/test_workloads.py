"""Unit tests for workload env rendering and retry resubmission."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultseed.models.schemas import (
    BindingRequest,
    FailureReason,
    GenerateSource,
    ProvisioningRequest,
    ProvisioningRun,
    RunState,
    SecretReference,
    SecretSpec,
    WorkloadSpec,
)
from vaultseed.orchestration import (
    missing_read_bindings,
    render_workload_env,
    render_workloads,
    run_with_retries,
)

REFS = {
    "db-pass": SecretReference(name="db-pass", location_uri="https://v/secrets/db-pass", version="v1"),
    "api-key": SecretReference(name="api-key", location_uri="https://v/secrets/api-key", version="v7"),
}


def workload(**overrides) -> WorkloadSpec:
    fields = {
        "name": "web",
        "identity": "web-id",
        "env": {"PORT": "8080", "MODE": "prod"},
        "secret_env": {"DB_PASSWORD": "db-pass", "API_KEY": "api-key"},
    }
    fields.update(overrides)
    return WorkloadSpec(**fields)


class TestRenderWorkloads:
    """Reference-only runtime config."""

    def test_plain_and_secret_entries(self):
        env = render_workload_env(workload(), REFS)

        assert env[:2] == [
            {"name": "MODE", "value": "prod"},
            {"name": "PORT", "value": "8080"},
        ]
        assert env[2:] == [
            {"name": "API_KEY", "secret_ref": "https://v/secrets/api-key", "version": "v7", "identity": "web-id"},
            {"name": "DB_PASSWORD", "secret_ref": "https://v/secrets/db-pass", "version": "v1", "identity": "web-id"},
        ]

    def test_missing_reference(self):
        with pytest.raises(KeyError):
            render_workload_env(workload(secret_env={"X": "other"}), REFS)

    def test_render_all(self):
        rendered = render_workloads([workload(), workload(name="worker", secret_env={})], REFS)

        assert set(rendered) == {"web", "worker"}
        assert len(rendered["worker"]) == 2


class TestMissingReadBindings:
    """Workload identities without read access."""

    def _request(self, bindings):
        return ProvisioningRequest(
            secret_specs=[
                SecretSpec(name="db-pass", source=GenerateSource()),
                SecretSpec(name="api-key", source=GenerateSource()),
            ],
            bindings=bindings,
            workloads=[workload()],
        )

    def test_vault_wide_binding_covers_all(self):
        request = self._request([BindingRequest(identity="web-id", resource="vaultseed")])

        assert missing_read_bindings(request, "vaultseed") == []

    def test_secret_scoped_binding(self):
        request = self._request([BindingRequest(identity="web-id", resource="secret:db-pass")])

        assert missing_read_bindings(request, "vaultseed") == ["web:web-id:api-key"]

    def test_other_identity_does_not_count(self):
        request = self._request([BindingRequest(identity="someone", resource="vaultseed")])

        assert missing_read_bindings(request, "vaultseed") == [
            "web:web-id:api-key",
            "web:web-id:db-pass",
        ]


def mock_orchestrator() -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.cancelled = False
    orchestrator.wait_cancelled = AsyncMock(return_value=False)
    return orchestrator


def _failed(retryable: bool) -> ProvisioningRun:
    return ProvisioningRun(
        state=RunState.FAILED,
        failure=FailureReason(kind="BindingTimeout", message="slow", retryable=retryable),
    )


class TestRunWithRetries:
    """Whole-run resubmission."""

    @pytest.mark.asyncio
    async def test_ready_first_time(self):
        orchestrator = mock_orchestrator()
        orchestrator.run = AsyncMock(return_value=ProvisioningRun(state=RunState.READY))

        run = await run_with_retries(orchestrator, ProvisioningRequest(), retries=3)

        assert run.is_ready
        assert orchestrator.run.await_count == 1

    @pytest.mark.asyncio
    async def test_retryable_failure_resubmitted(self):
        orchestrator = mock_orchestrator()
        orchestrator.run = AsyncMock(
            side_effect=[_failed(True), ProvisioningRun(state=RunState.READY)]
        )

        run = await run_with_retries(
            orchestrator, ProvisioningRequest(), retries=2, backoff_seconds=0.01
        )

        assert run.is_ready
        assert orchestrator.run.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_not_resubmitted(self):
        orchestrator = mock_orchestrator()
        orchestrator.run = AsyncMock(return_value=_failed(False))

        run = await run_with_retries(orchestrator, ProvisioningRequest(), retries=3)

        assert run.state is RunState.FAILED
        assert orchestrator.run.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_run(self):
        orchestrator = mock_orchestrator()
        orchestrator.run = AsyncMock(return_value=_failed(True))

        run = await run_with_retries(
            orchestrator, ProvisioningRequest(), retries=2, backoff_seconds=0.01
        )

        assert run.failure.retryable
        assert orchestrator.run.await_count == 3
