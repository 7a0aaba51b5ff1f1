"""
Secret materialization and storage.

- materializer: Resolve or generate plaintext values
- store: SecretStore protocol, network policy and in-memory vault
- aws: AWS Secrets Manager store
"""

from vaultseed.secrets.materializer import CredentialMaterializer
from vaultseed.secrets.store import (
    CallerContext,
    InMemorySecretStore,
    NetworkPolicy,
    SecretStore,
)

__all__ = [
    "CredentialMaterializer",
    "CallerContext",
    "InMemorySecretStore",
    "NetworkPolicy",
    "SecretStore",
]
