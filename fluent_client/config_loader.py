"""Config Loader - Loads runtime configuration and credential defaults.

Reads YAML target files with ${ENV_VAR} substitution, and reads the
credential fallback variables from the environment exactly once so that the
Authenticator never touches os.environ itself.

Example file:

    log_level: info
    targets:
      mock:
        host: localhost:3000
        protocol: http
      soap:
        base_url: https://www.dataaccess.com
        soap_content_type: "text/xml; charset=utf-8"
      secured:
        host: api.example.com
        token: ${API_TOKEN}
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from fluent_client.models import ClientOptions, CredentialDefaults, RuntimeConfig


class ConfigError(Exception):
    """Raised when configuration loading fails."""


_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def load_credential_defaults(
    environ: Mapping[str, str] | None = None,
    username_var: str = "API_USERNAME",
    password_var: str = "API_PASSWORD",
    token_var: str = "API_TOKEN",
) -> CredentialDefaults:
    """Read credential fallbacks from the environment (os.environ if None).

    Unset variables become empty strings, which the Authenticator treats as
    absent.
    """
    env = os.environ if environ is None else environ
    return CredentialDefaults(
        username=env.get(username_var, ""),
        password=env.get(password_var, ""),
        token=env.get(token_var, ""),
    )


def load_runtime_config(
    config_path: Path,
    environ: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """Load runtime configuration from YAML with ${ENV_VAR} substitution."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config, os.environ if environ is None else environ)

    try:
        return RuntimeConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def get_target(config: RuntimeConfig, name: str) -> ClientOptions:
    """Return the options of one named target."""
    if name not in config.targets:
        available = ", ".join(config.targets.keys()) or "(none)"
        raise ConfigError(f"Target '{name}' not found in config. Available: {available}")
    return config.targets[name]


def _substitute_env_vars(data: Any, environ: Mapping[str, str]) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data, environ)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v, environ) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item, environ) for item in data]
    return data


def _substitute_string(s: str, environ: Mapping[str, str]) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
