"""
Access bindings.

- binder: AccessBinder base with bounded confirmation polling, in-memory
  directory and binder
- aws: IAM role policy binder
"""

from vaultseed.access.binder import AccessBinder, AccessDirectory, InMemoryAccessBinder

__all__ = [
    "AccessBinder",
    "AccessDirectory",
    "InMemoryAccessBinder",
]
