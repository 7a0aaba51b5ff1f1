"""
vaultseed - secret provisioning orchestrator.

Seeds a vault with generated or operator-supplied credentials, grants
workload identities access, waits for the grants to propagate, and hands
out secret references (never values) for workload configuration:
- secrets: credential materializer and secret store backends
- access: access binders and propagation confirmation
- orchestration: run state machine, retries and workload wiring
- config: Pydantic settings and run configuration loading
- models: request, reference, binding and run models
- core: exceptions and the backend container
"""

__version__ = "0.1.0"
