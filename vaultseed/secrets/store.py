"""Secret store interface and in-memory implementation.

Provides a consistent interface for versioned secret storage with an
in-memory backend for simulation and tests, and a Secrets Manager backend
in vaultseed.secrets.aws.

Usage:
    store = InMemorySecretStore("vaultseed", directory, NetworkPolicy())
    ref = await store.put("db-pass", value, caller)
    latest = await store.reference("db-pass")
"""

import asyncio
import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Protocol
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from vaultseed.access.binder import AccessDirectory
from vaultseed.core.exceptions import AccessDenied, NetworkUnreachable, SecretNotFound
from vaultseed.models.schemas import Capability, SecretReference

logger = structlog.get_logger(__name__)


class CallerContext(BaseModel):
    """Who is calling the store, and from where."""

    model_config = ConfigDict(frozen=True)

    identity: str
    origin: Optional[str] = Field(default=None, description="Caller IP address")
    trusted_platform: bool = Field(
        default=False,
        description="Caller is a platform service eligible for the bypass rule",
    )


class NetworkPolicy(BaseModel):
    """Vault reachability rules. Set once per store and never changed."""

    model_config = ConfigDict(frozen=True)

    bypass_trusted_platform: bool = True
    default_action: Literal["allow", "deny"] = "allow"
    allowed_origins: tuple[str, ...] = ()

    @field_validator("allowed_origins")
    @classmethod
    def validate_origins(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for cidr in value:
            ipaddress.ip_network(cidr, strict=False)
        return value

    def permits(self, caller: CallerContext) -> bool:
        if caller.trusted_platform and self.bypass_trusted_platform:
            return True
        if caller.origin and self.allowed_origins:
            try:
                address = ipaddress.ip_address(caller.origin)
            except ValueError:
                return False
            if any(
                address in ipaddress.ip_network(cidr, strict=False)
                for cidr in self.allowed_origins
            ):
                return True
        return self.default_action == "allow"


class SecretStore(Protocol):
    """Protocol for secret store implementations."""

    name: str

    async def put(
        self, name: str, value: SecretStr, caller: CallerContext
    ) -> SecretReference: ...

    async def reference(self, name: str) -> SecretReference: ...

    async def exists(self, name: str) -> bool: ...

    async def resolve(
        self, reference: SecretReference, caller: CallerContext
    ) -> SecretStr: ...


@dataclass
class _Version:
    version: str
    value: SecretStr
    created_at: datetime


@dataclass
class InMemorySecretStore:
    """
    In-memory versioned vault.

    WARNING: Does not persist across restarts. Writes are serialized per
    store (last writer wins); every write appends a new version.
    """

    name: str
    directory: AccessDirectory
    network_policy: NetworkPolicy = field(default_factory=NetworkPolicy)
    _entries: dict[str, list[_Version]] = field(default_factory=dict, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self.directory.add_resource(self.name)

    @property
    def base_uri(self) -> str:
        return f"https://{self.name}.vault.local"

    def location_uri(self, name: str) -> str:
        return f"{self.base_uri}/secrets/{name}"

    async def put(
        self, name: str, value: SecretStr, caller: CallerContext
    ) -> SecretReference:
        """Create or append a version of a secret."""
        location = self.location_uri(name)
        self._check_caller(caller, Capability.WRITE, location, secret=name)

        async with self._lock:
            version = _Version(
                version=uuid4().hex,
                value=value,
                created_at=datetime.now(timezone.utc),
            )
            self._entries.setdefault(name, []).append(version)
            self.directory.add_resource(location)

        logger.info(
            "secret_stored",
            store=self.name,
            secret=name,
            version=version.version,
            versions=len(self._entries[name]),
        )
        return SecretReference(name=name, location_uri=location, version=version.version)

    async def reference(self, name: str) -> SecretReference:
        """Reference to the latest version."""
        versions = self._entries.get(name)
        if not versions:
            raise SecretNotFound(self.name, f"Secret not found: {name}", {"secret": name})
        return SecretReference(
            name=name,
            location_uri=self.location_uri(name),
            version=versions[-1].version,
        )

    async def exists(self, name: str) -> bool:
        return bool(self._entries.get(name))

    async def resolve(
        self, reference: SecretReference, caller: CallerContext
    ) -> SecretStr:
        """Read the value a reference points at, as a consumer would."""
        self._check_caller(caller, Capability.READ, reference.location_uri, secret=reference.name)
        for version in self._entries.get(reference.name, []):
            if version.version == reference.version:
                return version.value
        raise SecretNotFound(
            self.name,
            f"Secret version not found: {reference.name}/{reference.version}",
            {"secret": reference.name, "version": reference.version},
        )

    def version_count(self, name: str) -> int:
        return len(self._entries.get(name, []))

    def _check_caller(
        self,
        caller: CallerContext,
        capability: Capability,
        location: str,
        secret: str,
    ) -> None:
        if not self.network_policy.permits(caller):
            raise NetworkUnreachable(
                self.name,
                f"Origin {caller.origin or 'unknown'} rejected by network policy",
                {"secret": secret, "identity": caller.identity},
            )
        if not self.directory.is_authorized(caller.identity, (self.name, location), capability):
            raise AccessDenied(
                self.name,
                f"{caller.identity} lacks {capability.value} on {secret}",
                {"secret": secret, "identity": caller.identity},
            )
