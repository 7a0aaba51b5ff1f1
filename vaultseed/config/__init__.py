"""
Configuration Management.

- settings: Main Settings class with environment variable loading
- run_config: Load and validate provisioning run configuration files

Configuration sources (in order of precedence):
1. Environment variables
2. .env file
3. Default values

Example:
    from vaultseed.config import get_settings, load_request

    settings = get_settings()
    request = load_request(Path("provisioning.json"))
"""

from vaultseed.config.settings import Settings, get_settings
from vaultseed.config.run_config import load_request, parse_request

__all__ = [
    "Settings",
    "get_settings",
    "load_request",
    "parse_request",
]
