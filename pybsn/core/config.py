"""Configuration for the BSN.cloud client.

Values are layered, later layers winning:

1. Defaults declared on :class:`Config`
2. The YAML config file (``PYBSN_CONFIG``, ``~/.pybsn`` or the XDG location)
3. Environment variables (``BS_CLIENT_ID``, ``BS_SECRET``, ``BS_NETWORK``)
4. Keyword options passed by the caller
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError

# Default config locations
CONFIG_ENV_VAR = "PYBSN_CONFIG"
DEFAULT_CONFIG_NAME = ".pybsn"
XDG_CONFIG_NAME = "pybsn/config.yaml"

# File permissions (owner read/write only)
CONFIG_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600

# Environment variable -> config field
ENV_VARS = {
    "BS_CLIENT_ID": "client_id",
    "BS_SECRET": "client_secret",
    "BS_NETWORK": "network_name",
}

DEFAULT_TOKEN_ENDPOINT = (
    "https://auth.bsn.cloud/realms/bsncloud/protocol/openid-connect/token"
)


def _get_default_config_path() -> Path:
    """Determine the default configuration file path.

    Checks in order:
    1. PYBSN_CONFIG environment variable
    2. ~/.pybsn (home directory)
    3. ~/.config/pybsn/config.yaml (XDG config)

    Returns:
        Path to the configuration file.
    """
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        return Path(env_config).expanduser()

    home_config = Path.home() / DEFAULT_CONFIG_NAME
    if home_config.exists():
        return home_config

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        xdg_config = Path(xdg_config_home) / XDG_CONFIG_NAME
    else:
        xdg_config = Path.home() / ".config" / XDG_CONFIG_NAME

    if xdg_config.exists():
        return xdg_config

    return home_config


class Config(BaseModel):
    """Client configuration.

    The client secret is held as a ``SecretStr`` so it never shows up in
    ``repr()``, logs or ``model_dump()`` output.
    """

    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    network_name: str = ""
    api_version: str = "2022/06/REST"

    base_url: str = "https://api.bsn.cloud"
    provision_base_url: str = "https://provision.bsn.cloud"
    token_endpoint: str = DEFAULT_TOKEN_ENDPOINT
    upload_base_path: str = "/Upload/2019/03/REST"

    timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    max_attempts: int = Field(default=3, description="Attempts for retryable failures")
    debug: bool = Field(default=False, description="Trace HTTP traffic to the log")

    chunk_size: int = Field(default=5 * 1024 * 1024, description="Upload chunk size")
    poll_interval: float = Field(default=2.0, description="Upload status poll interval")
    max_poll_wait: float = Field(default=300.0, description="Upload processing wait limit")

    model_config = {"validate_assignment": True}

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        *,
        env: bool = True,
        **options: Any,
    ) -> Config:
        """Build a config from file, environment and explicit options.

        Args:
            config_path: YAML file to read. If None, uses the default location
                when it exists.
            env: Whether to apply the ``BS_*`` environment variables.
            **options: Field overrides applied last.

        Returns:
            The merged configuration.

        Raises:
            ConfigurationError: If the file cannot be parsed or a value is invalid.
        """
        values: dict[str, Any] = {}

        path = (
            _get_default_config_path()
            if config_path is None
            else Path(config_path).expanduser()
        )
        values.update(read_config_file(path))

        if env:
            values.update(env_overrides())

        values.update({k: v for k, v in options.items() if v is not None})

        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "config"
            raise ConfigurationError(field, first["msg"]) from e

    def with_options(self, **options: Any) -> Config:
        """Return a copy with the given fields replaced.

        ``None`` values are ignored so unset options keep their current value.
        """
        updates = {k: v for k, v in options.items() if v is not None}
        unknown = set(updates) - set(type(self).model_fields)
        if unknown:
            raise ConfigurationError(", ".join(sorted(unknown)), "unknown option")
        merged = self.model_dump()
        merged["client_secret"] = self.client_secret.get_secret_value()
        merged.update(updates)
        try:
            return type(self).model_validate(merged)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "config"
            raise ConfigurationError(field, first["msg"]) from e

    def with_oidc_url(self, oidc_url: str) -> Config:
        """Derive the token endpoint from an OIDC realm URL."""
        if not oidc_url:
            raise ConfigurationError("oidc_url", "cannot be empty")
        return self.with_options(
            token_endpoint=oidc_url.rstrip("/") + "/protocol/openid-connect/token"
        )

    def validate_required(self) -> None:
        """Check that the fields needed to talk to the API are present.

        Raises:
            ConfigurationError: Naming the first missing or invalid field.
        """
        if not self.client_id.strip():
            raise ConfigurationError(
                "client_id", "field is required", "set BS_CLIENT_ID environment variable"
            )
        if not self.client_secret.get_secret_value().strip():
            raise ConfigurationError(
                "client_secret", "field is required", "set BS_SECRET environment variable"
            )
        if not self.base_url:
            raise ConfigurationError("base_url", "field is required")
        if not self.token_endpoint:
            raise ConfigurationError("token_endpoint", "field is required")
        if self.timeout <= 0:
            raise ConfigurationError("timeout", "must be positive")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts", "must be at least 1")
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size", "must be positive")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval", "must be positive")

    @property
    def api_root(self) -> str:
        """REST root for versioned endpoints, e.g. ``https://api.bsn.cloud/2022/06/REST``."""
        return f"{self.base_url.rstrip('/')}/{self.api_version.strip('/')}"

    @property
    def upload_root(self) -> str:
        """Root URL of the upload session API."""
        return self.base_url.rstrip("/") + "/" + self.upload_base_path.strip("/")

    def save(self, config_path: str | Path) -> None:
        """Write the config as YAML with owner-only permissions.

        Raises:
            ConfigurationError: If the file cannot be written.
        """
        path = Path(config_path).expanduser()
        data = self.model_dump(exclude_defaults=True)
        if "client_secret" in data:
            data["client_secret"] = self.client_secret.get_secret_value()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(yaml.safe_dump(data, default_flow_style=False))
            path.chmod(CONFIG_FILE_MODE)
        except OSError as e:
            raise ConfigurationError("config_path", f"failed to save config: {e}") from e


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file, returning an empty dict when it does not exist.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed.
    """
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigurationError("config_path", f"failed to parse config file: {e}") from e
    except OSError as e:
        raise ConfigurationError("config_path", f"failed to read config file: {e}") from e

    if not data:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("config_path", "config file must contain a mapping")
    return data


def env_overrides() -> dict[str, str]:
    """Collect config values from the ``BS_*`` environment variables."""
    return {
        field: value
        for var, field in ENV_VARS.items()
        if (value := os.environ.get(var))
    }
