"""
Provisioning orchestration.

- orchestrator: Run state machine (materialize, store, bind, confirm)
- retry: Resubmission of transiently failed runs
- workloads: Render workload env from secret references
"""

from vaultseed.orchestration.orchestrator import ProvisioningOrchestrator
from vaultseed.orchestration.retry import run_with_retries
from vaultseed.orchestration.workloads import (
    missing_read_bindings,
    render_workload_env,
    render_workloads,
)

__all__ = [
    "ProvisioningOrchestrator",
    "run_with_retries",
    "missing_read_bindings",
    "render_workload_env",
    "render_workloads",
]
