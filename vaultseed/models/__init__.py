"""Data models for provisioning requests, references, bindings and runs."""

from vaultseed.models.schemas import (
    Binding,
    BindingRequest,
    BindingState,
    Capability,
    ExternalPrecondition,
    FailureReason,
    GenerateSource,
    GenerationPolicy,
    ProvisioningRequest,
    ProvisioningRun,
    RawSource,
    RunState,
    SecretReference,
    SecretSpec,
    WorkloadSpec,
)

__all__ = [
    "Binding",
    "BindingRequest",
    "BindingState",
    "Capability",
    "ExternalPrecondition",
    "FailureReason",
    "GenerateSource",
    "GenerationPolicy",
    "ProvisioningRequest",
    "ProvisioningRun",
    "RawSource",
    "RunState",
    "SecretReference",
    "SecretSpec",
    "WorkloadSpec",
]
