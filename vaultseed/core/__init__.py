"""
Core infrastructure modules for vaultseed.

Provides common utilities used across the application:
- exceptions: Standardized exception hierarchy
- container: Backend wiring for store, binder and orchestrator
  (import from vaultseed.core.container)
"""

from vaultseed.core.exceptions import (
    VaultSeedError,
    RetryableError,
    PermanentError,
    PolicyViolation,
    SecretStoreError,
    AccessDenied,
    NetworkUnreachable,
    StoreUnavailable,
    StoreWriteTimeout,
    SecretNotFound,
    AccessBindingError,
    IdentityNotFound,
    ResourceNotFound,
    BindingTimeout,
    PreconditionUnmet,
    RunCancelled,
    ConfigurationError,
)
__all__ = [
    # Exceptions
    "VaultSeedError",
    "RetryableError",
    "PermanentError",
    "PolicyViolation",
    "SecretStoreError",
    "AccessDenied",
    "NetworkUnreachable",
    "StoreUnavailable",
    "StoreWriteTimeout",
    "SecretNotFound",
    "AccessBindingError",
    "IdentityNotFound",
    "ResourceNotFound",
    "BindingTimeout",
    "PreconditionUnmet",
    "RunCancelled",
    "ConfigurationError",
]
