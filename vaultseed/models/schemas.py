"""Pydantic models for vaultseed provisioning runs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

SECRET_NAME_PATTERN = r"^[A-Za-z0-9-]{1,127}$"
SECRET_RESOURCE_PREFIX = "secret:"
DEFAULT_SPECIAL_CHARS = "!#$%&*()-_=+[]{}<>:?"


class Capability(str, Enum):
    """Capabilities an identity can be granted on a resource."""
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    def implies(self, other: "Capability") -> bool:
        order = [Capability.READ, Capability.WRITE, Capability.ADMIN]
        return order.index(self) >= order.index(other)


class BindingState(str, Enum):
    """Lifecycle of a single access binding."""
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


class RunState(str, Enum):
    """Provisioning run state machine."""
    INIT = "init"
    MATERIALIZING = "materializing"
    STORING = "storing"
    BINDING = "binding"
    CONFIRMING = "confirming"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.READY, RunState.FAILED)


# =============================================================================
# Secret Specs
# =============================================================================


class GenerationPolicy(BaseModel):
    """Rules for generating a secret value.

    Construction is permissive; the materializer rejects inconsistent
    policies with PolicyViolation so a bad policy fails the run instead of
    the config parser.
    """

    model_config = ConfigDict(frozen=True)

    length: int = Field(default=16, description="Exact length of generated values")
    allowed_special_chars: str = Field(
        default=DEFAULT_SPECIAL_CHARS,
        description="Special characters generation may draw from",
    )
    require_special: bool = Field(default=True)
    require_upper: bool = Field(default=True)
    require_lower: bool = Field(default=True)
    require_digit: bool = Field(default=True)


class RawSource(BaseModel):
    """Operator-supplied value, inline or read from an environment variable.

    An empty value falls back to generation. A from_env variable that is not
    set at all is a configuration error.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["raw"] = "raw"
    value: SecretStr = Field(default=SecretStr(""))
    from_env: Optional[str] = Field(
        default=None,
        description="Environment variable read at materialize time",
    )
    policy: Optional[GenerationPolicy] = Field(
        default=None,
        description="Policy used when the resolved value is empty",
    )


class GenerateSource(BaseModel):
    """Value generated by the materializer."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["generate"] = "generate"
    policy: GenerationPolicy = Field(default_factory=GenerationPolicy)


SecretSource = Annotated[Union[RawSource, GenerateSource], Field(discriminator="kind")]


class SecretSpec(BaseModel):
    """A named secret and where its value comes from."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=SECRET_NAME_PATTERN)
    source: SecretSource

    @property
    def generates(self) -> bool:
        return isinstance(self.source, GenerateSource)


class SecretReference(BaseModel):
    """Pointer to a stored secret version. Never carries the value."""

    model_config = ConfigDict(frozen=True)

    name: str
    location_uri: str = Field(..., min_length=1)
    version: str


# =============================================================================
# Bindings
# =============================================================================


class BindingRequest(BaseModel):
    """A desired grant of a capability to an identity over a resource."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., min_length=1)
    resource: str = Field(..., min_length=1)
    capability: Capability = Capability.READ

    @property
    def secret_name(self) -> Optional[str]:
        """Name of the run secret this binding targets, if any."""
        if self.resource.startswith(SECRET_RESOURCE_PREFIX):
            return self.resource[len(SECRET_RESOURCE_PREFIX):]
        return None

    def describe(self) -> str:
        return f"{self.identity}:{self.capability.value}:{self.resource}"


class Binding(BaseModel):
    """A requested grant and its observed propagation state."""

    model_config = ConfigDict(frozen=True)

    identity_id: str
    resource_id: str
    capability: Capability
    state: BindingState = BindingState.PENDING
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def with_state(self, state: BindingState) -> "Binding":
        return self.model_copy(update={"state": state})

    def describe(self) -> str:
        return f"{self.identity_id}:{self.capability.value}:{self.resource_id}"


# =============================================================================
# Workloads & Preconditions
# =============================================================================


class WorkloadSpec(BaseModel):
    """A compute workload whose runtime config needs secret references."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    identity: str = Field(..., min_length=1, description="Identity that resolves the references")
    env: dict[str, str] = Field(default_factory=dict)
    secret_env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variable name -> secret name",
    )


class ExternalPrecondition(BaseModel):
    """A step outside the orchestrator that must be done before Ready."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    satisfied: bool = False


# =============================================================================
# Requests & Runs
# =============================================================================


class ProvisioningRequest(BaseModel):
    """Flat run configuration supplied up front by the operator."""

    model_config = ConfigDict(frozen=True)

    secret_specs: list[SecretSpec] = Field(default_factory=list)
    bindings: list[BindingRequest] = Field(default_factory=list)
    workloads: list[WorkloadSpec] = Field(default_factory=list)
    preconditions: list[ExternalPrecondition] = Field(default_factory=list)
    confirm_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_names(self) -> "ProvisioningRequest":
        """Secret names are unique and workloads only reference declared secrets."""
        seen: set[str] = set()
        duplicates: list[str] = []
        for spec in self.secret_specs:
            if spec.name in seen:
                duplicates.append(spec.name)
            seen.add(spec.name)
        if duplicates:
            raise ValueError(f"Duplicate secret names: {', '.join(sorted(set(duplicates)))}")

        for binding in self.bindings:
            if binding.secret_name is not None and binding.secret_name not in seen:
                raise ValueError(
                    f"Binding {binding.describe()} targets an undeclared secret"
                )

        for workload in self.workloads:
            unknown = sorted(set(workload.secret_env.values()) - seen)
            if unknown:
                raise ValueError(
                    f"Workload {workload.name} references undeclared secrets: {', '.join(unknown)}"
                )
        return self

    @property
    def secret_names(self) -> list[str]:
        return [spec.name for spec in self.secret_specs]


class FailureReason(BaseModel):
    """Why a run stopped short of Ready."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    secret_name: Optional[str] = None
    binding: Optional[str] = None
    retryable: bool = False

    def describe(self) -> str:
        target = ""
        if self.secret_name:
            target = f" secret={self.secret_name}"
        elif self.binding:
            target = f" binding={self.binding}"
        return f"{self.kind}{target}: {self.message}"


class ProvisioningRun(BaseModel):
    """State of one run. Owned by the orchestrator and discarded afterwards."""

    run_id: str = Field(default_factory=lambda: uuid4().hex)
    state: RunState = RunState.INIT
    history: list[RunState] = Field(default_factory=lambda: [RunState.INIT])
    references: dict[str, SecretReference] = Field(default_factory=dict)
    bindings: list[Binding] = Field(default_factory=list)
    failure: Optional[FailureReason] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def is_ready(self) -> bool:
        return self.state == RunState.READY

    @property
    def reference_map(self) -> Mapping[str, SecretReference]:
        """Read-only view of published references; empty until Ready."""
        if not self.is_ready:
            return MappingProxyType({})
        return MappingProxyType(dict(self.references))

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "references": {
                name: ref.model_dump(mode="json") for name, ref in self.reference_map.items()
            },
            "bindings": [b.model_dump(mode="json") for b in self.bindings],
            "failure": self.failure.model_dump(mode="json") if self.failure else None,
        }
