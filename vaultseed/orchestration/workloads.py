"""Workload runtime configuration from secret references.

Secret-bearing entries carry a reference and the identity the platform uses
to resolve it when the workload starts. Values are never looked up here.
"""

from __future__ import annotations

from typing import Any, Mapping

from vaultseed.models.schemas import (
    SECRET_RESOURCE_PREFIX,
    BindingRequest,
    Capability,
    ProvisioningRequest,
    SecretReference,
    WorkloadSpec,
)


def render_workload_env(
    workload: WorkloadSpec,
    references: Mapping[str, SecretReference],
) -> list[dict[str, Any]]:
    """
    Build the env list for one workload.

    Plain entries come out as {"name", "value"}; secret entries as
    {"name", "secret_ref", "version", "identity"}.

    Raises:
        KeyError: If a secret the workload needs has no reference.
    """
    entries: list[dict[str, Any]] = [
        {"name": key, "value": value} for key, value in sorted(workload.env.items())
    ]
    for key, secret_name in sorted(workload.secret_env.items()):
        reference = references[secret_name]
        entries.append({
            "name": key,
            "secret_ref": reference.location_uri,
            "version": reference.version,
            "identity": workload.identity,
        })
    return entries


def render_workloads(
    workloads: list[WorkloadSpec],
    references: Mapping[str, SecretReference],
) -> dict[str, list[dict[str, Any]]]:
    return {w.name: render_workload_env(w, references) for w in workloads}


def _covers(binding: BindingRequest, identity: str, secret_name: str, vault_name: str) -> bool:
    if binding.identity != identity or not binding.capability.implies(Capability.READ):
        return False
    return binding.resource in (vault_name, f"{SECRET_RESOURCE_PREFIX}{secret_name}")


def missing_read_bindings(request: ProvisioningRequest, vault_name: str) -> list[str]:
    """Workload secrets whose identity has no read binding in the request.

    Such a workload would deploy but fail to resolve its references.
    """
    missing = []
    for workload in request.workloads:
        for secret_name in sorted(set(workload.secret_env.values())):
            if not any(
                _covers(b, workload.identity, secret_name, vault_name)
                for b in request.bindings
            ):
                missing.append(f"{workload.name}:{workload.identity}:{secret_name}")
    return missing
