"""Unit tests for settings and run configuration loading."""

import json

import pytest
from pydantic import ValidationError

from vaultseed.config import Settings, get_settings, load_request, parse_request
from vaultseed.core.exceptions import ConfigurationError
from vaultseed.models.schemas import GenerateSource, RawSource


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.backend == "memory"
        assert settings.confirm_timeout_seconds == 60.0
        assert settings.poll_interval_seconds == 2.0
        assert settings.poll_backoff == "exponential"
        assert settings.min_secret_length == 8
        assert settings.is_production is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CONFIRM_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("VAULT_ALLOWED_ORIGINS", '["10.0.0.0/8"]')

        settings = Settings(_env_file=None)

        assert settings.confirm_timeout_seconds == 5.0
        assert settings.vault_allowed_origins == ["10.0.0.0/8"]

    def test_max_poll_must_cover_poll(self):
        with pytest.raises(ValidationError, match="max_poll_interval_seconds"):
            Settings(_env_file=None, poll_interval_seconds=5, max_poll_interval_seconds=1)

    def test_default_length_must_meet_minimum(self, monkeypatch):
        monkeypatch.setenv("MIN_SECRET_LENGTH", "20")

        with pytest.raises(ValidationError, match="default_secret_length"):
            Settings(_env_file=None)

        assert Settings(_env_file=None, default_secret_length=24).min_secret_length == 20

    def test_production_rejects_memory_backend(self):
        with pytest.raises(ValidationError, match="backend cannot be 'memory'"):
            Settings(_env_file=None, app_env="production", vault_default_action="deny")

    def test_production_requires_default_deny(self):
        with pytest.raises(ValidationError, match="must be 'deny'"):
            Settings(_env_file=None, app_env="production", backend="aws")

    def test_production_valid(self):
        settings = Settings(
            _env_file=None,
            app_env="production",
            backend="aws",
            vault_default_action="deny",
        )

        assert settings.is_production

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestParseRequest:
    """Config dict validation."""

    def test_parses_sources(self):
        request = parse_request({
            "secret_specs": [
                {"name": "db-pass", "source": {"kind": "generate", "policy": {"length": 24}}},
                {"name": "api-key", "source": {"kind": "raw", "from_env": "API_KEY"}},
            ],
            "bindings": [{"identity": "app-id", "resource": "secret:db-pass"}],
        })

        assert isinstance(request.secret_specs[0].source, GenerateSource)
        assert request.secret_specs[0].source.policy.length == 24
        assert isinstance(request.secret_specs[1].source, RawSource)
        assert request.bindings[0].secret_name == "db-pass"

    def test_overrides_replace_values(self):
        request = parse_request(
            {"confirm_timeout_seconds": 60},
            {"confirm_timeout_seconds": 5, "poll_interval_seconds": None},
        )

        assert request.confirm_timeout_seconds == 5
        assert request.poll_interval_seconds is None

    def test_duplicate_names(self):
        spec = {"name": "dup", "source": {"kind": "generate"}}

        with pytest.raises(ConfigurationError, match="Duplicate secret names: dup"):
            parse_request({"secret_specs": [spec, spec]})

    def test_binding_to_undeclared_secret(self):
        with pytest.raises(ConfigurationError, match="undeclared secret"):
            parse_request({"bindings": [{"identity": "app-id", "resource": "secret:nope"}]})

    def test_workload_with_undeclared_secret(self):
        with pytest.raises(ConfigurationError, match="undeclared secrets: nope"):
            parse_request({
                "workloads": [
                    {"name": "web", "identity": "app-id", "secret_env": {"KEY": "nope"}}
                ]
            })

    def test_invalid_secret_name_reports_location(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_request({"secret_specs": [{"name": "bad name!", "source": {"kind": "generate"}}]})

        assert exc_info.value.config_key == "secret_specs.0.name"

    def test_unknown_source_kind(self):
        with pytest.raises(ConfigurationError):
            parse_request({"secret_specs": [{"name": "x", "source": {"kind": "magic"}}]})

    def test_non_object(self):
        with pytest.raises(ConfigurationError, match="JSON object"):
            parse_request(["not", "a", "dict"])


class TestLoadRequest:
    """Config file loading."""

    def test_loads_file(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text(json.dumps({"secret_specs": [{"name": "k", "source": {"kind": "generate"}}]}))

        request = load_request(path)

        assert request.secret_names == ["k"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_request(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_request(path)
