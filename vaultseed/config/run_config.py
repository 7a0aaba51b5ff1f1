"""
Run Configuration Loader.

Loads a ProvisioningRequest from a JSON file. The file holds secret specs,
bindings, workloads and preconditions; raw API keys should be given as
`from_env` so they never land in the file.

Example file:
    {
      "secret_specs": [
        {"name": "db-pass", "source": {"kind": "generate", "policy": {"length": 16}}},
        {"name": "openai-api-key", "source": {"kind": "raw", "from_env": "OPENAI_API_KEY"}}
      ],
      "bindings": [{"identity": "app-id", "resource": "vaultseed", "capability": "read"}],
      "confirm_timeout_seconds": 60
    }
"""

import json
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from vaultseed.core.exceptions import ConfigurationError
from vaultseed.models.schemas import ProvisioningRequest

logger = structlog.get_logger(__name__)


def parse_request(data: dict[str, Any], overrides: Optional[dict[str, Any]] = None) -> ProvisioningRequest:
    """
    Validate raw config data into a request.

    Args:
        data: Decoded JSON object.
        overrides: Top-level keys to replace (e.g. CLI timeouts); None values are ignored.

    Raises:
        ConfigurationError: If the data does not describe a valid request.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Run configuration must be a JSON object")

    merged = dict(data)
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    try:
        return ProvisioningRequest.model_validate(merged)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid run configuration: {first.get('msg')}" + (f" at {location}" if location else ""),
            config_key=location or None,
        ) from e


def load_request(path: Path, overrides: Optional[dict[str, Any]] = None) -> ProvisioningRequest:
    """
    Load a request from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    if not path.exists():
        raise ConfigurationError(f"Run configuration not found: {path}", config_key="config")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Run configuration is not valid JSON: {e}", config_key="config") from e

    request = parse_request(data, overrides)
    logger.info(
        "run_config_loaded",
        path=str(path),
        secrets=len(request.secret_specs),
        bindings=len(request.bindings),
        workloads=len(request.workloads),
    )
    return request
