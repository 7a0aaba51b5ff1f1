"""
vaultseed Test Suite.

- unit/: Materializer, stores, binders, orchestrator, config and CLI
- integration/: Complete runs through BackendContainer on the memory backend
- conftest.py: Shared fixtures (directory, store, binder, orchestrator factory)

Run tests with: pytest
Run one layer: pytest tests/unit
"""
