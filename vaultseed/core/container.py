"""
Dependency Injection Container for vaultseed.

Wires the secret store, access binder, materializer and orchestrator for
the configured backend. Services are created lazily on first access and
cached, so a `validate` run never touches AWS.

Usage:
    container = BackendContainer(settings)
    container.register_request(request)   # in-memory backend only
    run = await container.orchestrator.run(request)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from vaultseed.config.settings import Settings, get_settings
from vaultseed.core.exceptions import ConfigurationError
from vaultseed.models.schemas import Capability, GenerationPolicy, ProvisioningRequest
from vaultseed.secrets.materializer import CredentialMaterializer
from vaultseed.secrets.store import CallerContext, NetworkPolicy

if TYPE_CHECKING:
    from vaultseed.access.binder import AccessBinder, AccessDirectory
    from vaultseed.orchestration.orchestrator import ProvisioningOrchestrator
    from vaultseed.secrets.store import SecretStore

logger = structlog.get_logger(__name__)


class BackendContainer:
    """
    Central container for provisioning dependencies.

    Example:
        container = BackendContainer()
        store = container.store
        binder = container.binder
        orchestrator = container.orchestrator
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the container.

        Args:
            settings: Application settings. Defaults to get_settings().
        """
        self._settings = settings or get_settings()
        self._session: Any = None
        self._directory: AccessDirectory | None = None
        self._store: SecretStore | None = None
        self._binder: AccessBinder | None = None
        self._materializer: CredentialMaterializer | None = None
        self._orchestrator: ProvisioningOrchestrator | None = None

        logger.info("backend_container_created", backend=self._settings.backend)

    @property
    def settings(self) -> Settings:
        """Get application settings."""
        return self._settings

    @property
    def caller(self) -> CallerContext:
        return CallerContext(
            identity=self._settings.operator_identity,
            origin=self._settings.operator_origin,
            trusted_platform=self._settings.operator_trusted_platform,
        )

    @property
    def network_policy(self) -> NetworkPolicy:
        return NetworkPolicy(
            bypass_trusted_platform=self._settings.vault_bypass_trusted_platform,
            default_action=self._settings.vault_default_action,
            allowed_origins=tuple(self._settings.vault_allowed_origins),
        )

    @property
    def directory(self) -> "AccessDirectory":
        """
        In-memory identities, resources and grants.

        The operator identity holds an effective admin grant on the vault,
        standing in for the deployer role assignment made before secrets
        are written.

        Raises:
            ConfigurationError: If the backend is not "memory".
        """
        if self._settings.backend != "memory":
            raise ConfigurationError(
                "The access directory only exists for the memory backend",
                config_key="backend",
            )
        if self._directory is None:
            from vaultseed.access.binder import AccessDirectory

            self._directory = AccessDirectory(identities=[self._settings.operator_identity])
            self._directory.add_resource(self._settings.vault_name)
            self._directory.record_grant(
                self._settings.operator_identity,
                self._settings.vault_name,
                Capability.ADMIN,
            )
        return self._directory

    @property
    def session(self) -> Any:
        """boto3 session (lazy, AWS backend only)."""
        if self._session is None:
            import boto3
            from botocore.exceptions import BotoCoreError

            try:
                self._session = boto3.Session(region_name=self._settings.aws_region)
            except BotoCoreError as e:
                raise ConfigurationError(
                    f"Cannot create an AWS session: {e}", config_key="backend"
                ) from e
            logger.info("aws_session_created", region=self._settings.aws_region)
        return self._session

    @property
    def store(self) -> "SecretStore":
        """Get the secret store (lazy initialization)."""
        if self._store is None:
            if self._settings.backend == "memory":
                from vaultseed.secrets.store import InMemorySecretStore

                self._store = InMemorySecretStore(
                    name=self._settings.vault_name,
                    directory=self.directory,
                    network_policy=self.network_policy,
                )
            else:
                from vaultseed.secrets.aws import SecretsManagerStore

                self._store = SecretsManagerStore(
                    self.session.client("secretsmanager"),
                    name=self._settings.vault_name,
                    prefix=self._settings.aws_secret_prefix,
                )
            logger.info("secret_store_created", backend=self._settings.backend)
        return self._store

    @property
    def binder(self) -> "AccessBinder":
        """Get the access binder (lazy initialization)."""
        if self._binder is None:
            if self._settings.backend == "memory":
                from vaultseed.access.binder import InMemoryAccessBinder

                self._binder = InMemoryAccessBinder(
                    self.directory,
                    propagation_delay=self._settings.simulated_propagation_seconds,
                    poll_backoff=self._settings.poll_backoff,
                    max_poll_interval=self._settings.max_poll_interval_seconds,
                )
            else:
                from vaultseed.access.aws import IamAccessBinder

                account_id = self._aws_account_id()
                self._binder = IamAccessBinder(
                    self.session.client("iam"),
                    self.session.client("secretsmanager"),
                    vault_name=self._settings.vault_name,
                    region=self._settings.aws_region,
                    account_id=account_id,
                    prefix=self._settings.aws_secret_prefix,
                    poll_backoff=self._settings.poll_backoff,
                    max_poll_interval=self._settings.max_poll_interval_seconds,
                )
            logger.info("access_binder_created", backend=self._settings.backend)
        return self._binder

    def _aws_account_id(self) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            return self.session.client("sts").get_caller_identity()["Account"]
        except (BotoCoreError, ClientError) as e:
            raise ConfigurationError(
                f"Cannot reach AWS to resolve the account: {e}", config_key="backend"
            ) from e

    @property
    def materializer(self) -> CredentialMaterializer:
        if self._materializer is None:
            self._materializer = CredentialMaterializer(
                min_length=self._settings.min_secret_length,
                default_policy=GenerationPolicy(length=self._settings.default_secret_length),
            )
        return self._materializer

    @property
    def orchestrator(self) -> "ProvisioningOrchestrator":
        if self._orchestrator is None:
            from vaultseed.orchestration.orchestrator import ProvisioningOrchestrator

            self._orchestrator = ProvisioningOrchestrator(
                store=self.store,
                binder=self.binder,
                materializer=self.materializer,
                caller=self.caller,
                confirm_timeout=self._settings.confirm_timeout_seconds,
                poll_interval=self._settings.poll_interval_seconds,
                store_timeout=self._settings.store_timeout_seconds,
                grant_timeout=self._settings.grant_timeout_seconds,
                max_concurrency=self._settings.max_concurrency,
            )
        return self._orchestrator

    def register_request(self, request: ProvisioningRequest) -> None:
        """
        Register the identities and resources a request names.

        The in-memory backend has no real directory, so a dry run treats
        everything the request binds as existing. No-op for AWS.
        """
        if self._settings.backend != "memory":
            return
        for binding in request.bindings:
            self.directory.add_identity(binding.identity)
            if binding.secret_name is None:
                self.directory.add_resource(binding.resource)
        for workload in request.workloads:
            self.directory.add_identity(workload.identity)
        logger.debug(
            "simulation_directory_registered",
            identities=len(self.directory.identities),
            resources=len(self.directory.resources),
        )
