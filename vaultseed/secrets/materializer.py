"""Credential materializer.

Turns a SecretSpec into a plaintext value: operator-supplied values pass
through untouched, everything else is generated from the OS CSPRNG.
The returned value is a SecretStr so it is masked wherever it is printed.
"""

from __future__ import annotations

import os
import secrets
import string
from typing import Optional

import structlog
from pydantic import SecretStr

from vaultseed.core.exceptions import ConfigurationError, PolicyViolation
from vaultseed.models.schemas import GenerationPolicy, RawSource, SecretSpec

logger = structlog.get_logger(__name__)


class CredentialMaterializer:
    """
    Resolves secret values for a provisioning run.

    Usage:
        materializer = CredentialMaterializer(min_length=8)
        materializer.validate(spec)        # policy checks only
        value = materializer.materialize(spec)
    """

    def __init__(
        self,
        min_length: int = 8,
        default_policy: Optional[GenerationPolicy] = None,
    ) -> None:
        self.min_length = min_length
        self.default_policy = default_policy or GenerationPolicy()
        self._random = secrets.SystemRandom()

    def policy_for(self, spec: SecretSpec) -> GenerationPolicy:
        """Policy that applies if this spec ends up being generated."""
        source = spec.source
        if isinstance(source, RawSource):
            return source.policy or self.default_policy
        return source.policy

    def needs_generation(self, spec: SecretSpec) -> bool:
        """True if materialize() would generate rather than pass a value through."""
        source = spec.source
        if isinstance(source, RawSource):
            return not self._resolve_raw(spec.name, source)
        return True

    def validate(self, spec: SecretSpec) -> None:
        """Check the spec's generation policy without producing a value.

        Raw values that resolve non-empty pass through untouched, so no
        policy applies to them. An explicit empty value falls back to
        generation and is checked like a generated spec.

        Raises:
            PolicyViolation: If the policy cannot be satisfied.
            ConfigurationError: If from_env names an unset variable.
        """
        if not self.needs_generation(spec):
            return

        policy = self.policy_for(spec)

        if policy.length <= 0:
            raise PolicyViolation(
                f"length must be positive, got {policy.length}", spec.name
            )
        if policy.length < self.min_length:
            raise PolicyViolation(
                f"length {policy.length} is below the vault minimum of {self.min_length}",
                spec.name,
            )
        if policy.require_special and not policy.allowed_special_chars:
            raise PolicyViolation(
                "require_special is set but no special characters are allowed",
                spec.name,
            )
        if any(ch.isspace() for ch in policy.allowed_special_chars):
            raise PolicyViolation("whitespace is not a valid special character", spec.name)
        if len(self._required_classes(policy)) > policy.length:
            raise PolicyViolation(
                f"length {policy.length} cannot hold one character of each required class",
                spec.name,
            )

    def materialize(self, spec: SecretSpec) -> SecretStr:
        """Return the plaintext value for a spec.

        Raises:
            PolicyViolation: If generation is needed and the policy is invalid.
            ConfigurationError: If from_env names an unset variable.
        """
        source = spec.source
        if isinstance(source, RawSource):
            supplied = self._resolve_raw(spec.name, source)
            if supplied:
                logger.debug("secret_value_supplied", secret=spec.name)
                return SecretStr(supplied)

        policy = self.policy_for(spec)
        self.validate(spec)
        value = self.generate(policy)
        logger.debug("secret_value_generated", secret=spec.name, length=policy.length)
        return value

    def generate(self, policy: GenerationPolicy) -> SecretStr:
        """Generate a value of exactly policy.length characters."""
        chars = [self._random.choice(pool) for pool in self._required_classes(policy)]
        alphabet = self._alphabet(policy)
        chars.extend(self._random.choice(alphabet) for _ in range(policy.length - len(chars)))
        self._random.shuffle(chars)
        return SecretStr("".join(chars))

    # -- internals --

    @staticmethod
    def _resolve_raw(name: str, source: RawSource) -> str:
        if source.from_env:
            value = os.environ.get(source.from_env)
            if value is None:
                raise ConfigurationError(
                    f"Secret {name} reads {source.from_env}, which is not set",
                    config_key=source.from_env,
                )
            return value
        return source.value.get_secret_value()

    @staticmethod
    def _required_classes(policy: GenerationPolicy) -> list[str]:
        pools = []
        if policy.require_lower:
            pools.append(string.ascii_lowercase)
        if policy.require_upper:
            pools.append(string.ascii_uppercase)
        if policy.require_digit:
            pools.append(string.digits)
        if policy.require_special:
            pools.append(policy.allowed_special_chars)
        return pools

    @staticmethod
    def _alphabet(policy: GenerationPolicy) -> str:
        alphabet = string.ascii_letters + string.digits
        if policy.require_special:
            alphabet += "".join(sorted(set(policy.allowed_special_chars)))
        return alphabet
