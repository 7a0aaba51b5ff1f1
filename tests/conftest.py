"""
Pytest Configuration and Shared Fixtures.

This module provides common fixtures for all tests:

- directory: In-memory identities/resources with an operator admin grant
- store: InMemorySecretStore over the directory
- binder: InMemoryAccessBinder with fast fixed polling
- materializer: CredentialMaterializer with the default vault minimum
- make_orchestrator: Factory for orchestrators over the fixtures above
"""

import pytest

from vaultseed.access.binder import AccessDirectory, InMemoryAccessBinder
from vaultseed.models.schemas import Capability
from vaultseed.orchestration.orchestrator import ProvisioningOrchestrator
from vaultseed.secrets.materializer import CredentialMaterializer
from vaultseed.secrets.store import CallerContext, InMemorySecretStore, NetworkPolicy

VAULT = "test-vault"
OPERATOR = "operator"


@pytest.fixture
def operator() -> CallerContext:
    """Caller the orchestrator writes as."""
    return CallerContext(identity=OPERATOR)


@pytest.fixture
def directory() -> AccessDirectory:
    """Directory with the operator holding admin on the vault and one app identity."""
    directory = AccessDirectory(identities=[OPERATOR, "app-id"], resources=[VAULT])
    directory.record_grant(OPERATOR, VAULT, Capability.ADMIN)
    return directory


@pytest.fixture
def store(directory) -> InMemorySecretStore:
    return InMemorySecretStore(name=VAULT, directory=directory, network_policy=NetworkPolicy())


@pytest.fixture
def binder(directory) -> InMemoryAccessBinder:
    return InMemoryAccessBinder(directory, poll_backoff="fixed", max_poll_interval=0.05)


@pytest.fixture
def materializer() -> CredentialMaterializer:
    return CredentialMaterializer(min_length=8)


@pytest.fixture
def make_orchestrator(store, binder, materializer, operator):
    """Build an orchestrator with short timeouts; keyword overrides apply."""

    def _make(**overrides) -> ProvisioningOrchestrator:
        options = {
            "store": store,
            "binder": binder,
            "materializer": materializer,
            "caller": operator,
            "confirm_timeout": 1.0,
            "poll_interval": 0.02,
            "store_timeout": 1.0,
            "grant_timeout": 1.0,
            "max_concurrency": 4,
        }
        options.update(overrides)
        return ProvisioningOrchestrator(**options)

    return _make
