"""Unit tests for the credential materializer."""

import string

import pytest
from pydantic import SecretStr

from vaultseed.core.exceptions import ConfigurationError, PolicyViolation
from vaultseed.models.schemas import GenerateSource, GenerationPolicy, RawSource, SecretSpec
from vaultseed.secrets.materializer import CredentialMaterializer


def generate_spec(name: str = "db-pass", **policy) -> SecretSpec:
    return SecretSpec(name=name, source=GenerateSource(policy=GenerationPolicy(**policy)))


class TestPassThrough:
    """Operator-supplied values."""

    def test_raw_value_returned_unchanged(self, materializer):
        """Non-empty raw values pass through untouched."""
        spec = SecretSpec(name="api-key", source=RawSource(value=SecretStr("sk-abc 123")))

        value = materializer.materialize(spec)

        assert value.get_secret_value() == "sk-abc 123"
        assert materializer.needs_generation(spec) is False

    def test_raw_value_from_env(self, materializer, monkeypatch):
        """from_env is read at materialize time."""
        monkeypatch.setenv("VAULTSEED_TEST_KEY", "from-the-env")
        spec = SecretSpec(name="api-key", source=RawSource(from_env="VAULTSEED_TEST_KEY"))

        assert materializer.materialize(spec).get_secret_value() == "from-the-env"

    def test_unset_env_is_configuration_error(self, materializer, monkeypatch):
        """A missing input is never replaced by a generated value."""
        monkeypatch.delenv("VAULTSEED_MISSING", raising=False)
        spec = SecretSpec(name="api-key", source=RawSource(from_env="VAULTSEED_MISSING"))

        with pytest.raises(ConfigurationError) as exc_info:
            materializer.validate(spec)
        with pytest.raises(ConfigurationError):
            materializer.materialize(spec)

        assert exc_info.value.config_key == "VAULTSEED_MISSING"
        assert exc_info.value.retryable is False

    def test_empty_env_falls_back_to_generation(self, materializer, monkeypatch):
        """An env var set to the empty string is an explicit empty value."""
        monkeypatch.setenv("VAULTSEED_EMPTY", "")
        spec = SecretSpec(
            name="api-key",
            source=RawSource(from_env="VAULTSEED_EMPTY", policy=GenerationPolicy(length=20)),
        )

        assert materializer.needs_generation(spec) is True
        assert len(materializer.materialize(spec).get_secret_value()) == 20

    def test_supplied_value_ignores_policy(self):
        """Non-empty raw values are not held to the generation policy."""
        materializer = CredentialMaterializer(
            min_length=20, default_policy=GenerationPolicy(length=16)
        )
        spec = SecretSpec(name="api-key", source=RawSource(value=SecretStr("sk-live-provided-key")))

        materializer.validate(spec)

        assert materializer.materialize(spec).get_secret_value() == "sk-live-provided-key"

    def test_empty_raw_uses_default_policy(self):
        """Empty raw without a policy uses the materializer default."""
        materializer = CredentialMaterializer(default_policy=GenerationPolicy(length=24))
        spec = SecretSpec(name="k", source=RawSource())

        assert len(materializer.materialize(spec).get_secret_value()) == 24

    def test_value_is_masked(self, materializer):
        """Materialized values do not leak through repr."""
        value = materializer.materialize(generate_spec())

        assert value.get_secret_value() not in repr(value)
        assert value.get_secret_value() not in str(value)


class TestGeneration:
    """Generated values."""

    @pytest.mark.parametrize("length", [8, 9, 16, 32, 64, 128])
    def test_generated_length_matches_policy(self, materializer, length):
        """Generated values are exactly policy.length long."""
        for _ in range(20):
            value = materializer.materialize(generate_spec(length=length))
            assert len(value.get_secret_value()) == length

    def test_generated_value_has_every_required_class(self, materializer):
        """Each required class appears at least once, every time."""
        specials = "!#$%"
        for _ in range(200):
            value = materializer.materialize(
                generate_spec(length=8, allowed_special_chars=specials)
            ).get_secret_value()

            assert any(c in string.ascii_lowercase for c in value)
            assert any(c in string.ascii_uppercase for c in value)
            assert any(c in string.digits for c in value)
            assert any(c in specials for c in value)

    def test_specials_limited_to_allowed_set(self, materializer):
        """Only allowed special characters are used."""
        allowed = set(string.ascii_letters + string.digits + "-_")
        for _ in range(50):
            value = materializer.materialize(
                generate_spec(length=40, allowed_special_chars="-_")
            ).get_secret_value()
            assert set(value) <= allowed

    def test_no_specials_when_not_required(self, materializer):
        """Without require_special the value is alphanumeric."""
        for _ in range(50):
            value = materializer.materialize(
                generate_spec(length=32, require_special=False)
            ).get_secret_value()
            assert value.isalnum()

    def test_generated_values_differ(self, materializer):
        """Generation draws fresh randomness each call."""
        values = {materializer.materialize(generate_spec(length=32)).get_secret_value() for _ in range(10)}

        assert len(values) == 10


class TestPolicyViolation:
    """Inconsistent policies."""

    def test_zero_length(self, materializer):
        with pytest.raises(PolicyViolation) as exc_info:
            materializer.materialize(generate_spec(length=0))

        assert exc_info.value.secret_name == "db-pass"

    def test_empty_raw_with_zero_length_policy(self, materializer):
        """Raw("") falls back to generation and hits the policy check."""
        spec = SecretSpec(name="k", source=RawSource(policy=GenerationPolicy(length=0)))

        with pytest.raises(PolicyViolation):
            materializer.validate(spec)
        with pytest.raises(PolicyViolation):
            materializer.materialize(spec)

    def test_below_vault_minimum(self):
        materializer = CredentialMaterializer(min_length=12)

        with pytest.raises(PolicyViolation, match="below the vault minimum"):
            materializer.validate(generate_spec(length=10))

    def test_require_special_without_specials(self, materializer):
        with pytest.raises(PolicyViolation, match="no special characters"):
            materializer.validate(generate_spec(allowed_special_chars=""))

    def test_whitespace_special(self, materializer):
        with pytest.raises(PolicyViolation, match="whitespace"):
            materializer.validate(generate_spec(allowed_special_chars="! "))

    def test_more_classes_than_length(self):
        materializer = CredentialMaterializer(min_length=1)

        with pytest.raises(PolicyViolation, match="each required class"):
            materializer.validate(generate_spec(length=3))

    def test_policy_violation_is_permanent(self, materializer):
        with pytest.raises(PolicyViolation) as exc_info:
            materializer.validate(generate_spec(length=-1))

        assert exc_info.value.retryable is False
