"""
Core exception hierarchy for vaultseed.

Provides standardized exception types with categorization for retry logic.
A run that fails with a RetryableError may be resubmitted as a whole; a
PermanentError needs the operator to fix configuration first.
"""

from typing import Any, Optional


# =============================================================================
# Base Exceptions
# =============================================================================


class VaultSeedError(Exception):
    """Base exception for all vaultseed errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    @property
    def retryable(self) -> bool:
        return isinstance(self, RetryableError)


class RetryableError(VaultSeedError):
    """
    Transient errors where resubmitting the whole run is safe.

    Examples: vault unreachable, write timeouts, slow permission propagation.
    """

    pass


class PermanentError(VaultSeedError):
    """
    Errors that won't be fixed by retrying.

    Examples: bad generation policy, unknown identity, missing write access.
    """

    pass


# =============================================================================
# Materializer Errors
# =============================================================================


class PolicyViolation(PermanentError):
    """Raised when a generation policy is internally inconsistent."""

    def __init__(self, message: str, secret_name: Optional[str] = None):
        self.secret_name = secret_name
        details = {"secret": secret_name} if secret_name else None
        super().__init__(message, details)


# =============================================================================
# Store Errors
# =============================================================================


class SecretStoreError(VaultSeedError):
    """Base exception for secret store errors."""

    def __init__(
        self,
        store: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.store = store
        super().__init__(f"[{store}] {message}", details)


class AccessDenied(SecretStoreError, PermanentError):
    """Raised when the caller lacks the capability for a store operation."""

    pass


class NetworkUnreachable(SecretStoreError, RetryableError):
    """Raised when the store's reachability policy rejects the caller."""

    pass


class StoreUnavailable(SecretStoreError, RetryableError):
    """Raised when the store throttles the caller or reports a server-side fault."""

    pass


class StoreWriteTimeout(SecretStoreError, RetryableError):
    """Raised when a write is not acknowledged within its timeout."""

    pass


class SecretNotFound(SecretStoreError, PermanentError):
    """Raised when a secret name has no stored version."""

    pass


# =============================================================================
# Access Control Errors
# =============================================================================


class AccessBindingError(VaultSeedError):
    """Base exception for access binding errors."""

    pass


class IdentityNotFound(AccessBindingError, PermanentError):
    """Raised when a grant names an identity the directory does not know."""

    def __init__(self, identity_id: str, details: Optional[dict[str, Any]] = None):
        self.identity_id = identity_id
        super().__init__(f"Identity not found: {identity_id}", details)


class ResourceNotFound(AccessBindingError, PermanentError):
    """Raised when a grant names a resource that does not exist."""

    def __init__(self, resource_id: str, details: Optional[dict[str, Any]] = None):
        self.resource_id = resource_id
        super().__init__(f"Resource not found: {resource_id}", details)


class BindingTimeout(AccessBindingError, RetryableError):
    """Raised when a grant did not become effective within the wait budget."""

    pass


# =============================================================================
# Run Errors
# =============================================================================


class PreconditionUnmet(PermanentError):
    """Raised when an external precondition has not been satisfied."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        super().__init__(
            f"External precondition not satisfied: {name}",
            {"precondition": name, "description": description} if description else {"precondition": name},
        )


class RunCancelled(VaultSeedError):
    """Raised when a provisioning run is cancelled before reaching Ready."""

    pass


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PermanentError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        details = {"config_key": config_key} if config_key else None
        super().__init__(message, details)
