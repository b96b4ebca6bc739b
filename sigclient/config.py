# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the signed API client.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/sigclient/sigclient.yaml``
    (typically ``~/.config/sigclient/sigclient.yaml``)

``!env`` tags resolve values from environment variables.  The region
falls back to the process environment (``AWS_REGION``, then
``AWS_DEFAULT_REGION``) when the file does not set it.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from sigclient.dotenv_loader import load_dotenv_once


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "sigclient"

#: Environment variables consulted for the region, in order.
REGION_ENV_VARS = ("AWS_REGION", "AWS_DEFAULT_REGION")

DEFAULT_SERVICE = "execute-api"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 3


def get_config_path() -> Path:
    """Return the default config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/sigclient/sigclient.yaml``.

    Returns:
        Path to the config file.
    """
    return user_config_path(_APP_NAME) / "sigclient.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` file path inside the XDG config directory.

    Returns:
        Path to the ``.env`` file.
    """
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()

T = TypeVar("T")


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(value: object, coerce: type[T], *, required: str) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str`` or ``int``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent or empty.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None or (required and resolved == ""):
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def region_from_environment() -> str | None:
    """Return the AWS region from the process environment, if set."""
    for name in REGION_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    """Signed API client settings.

    Attributes:
        base_url: Base URL that relative request URLs resolve against.
        identity_pool_id: Cognito identity pool ID.
        region: AWS region for the identity pool and request signing.
        service: Signing service name.
        timeout_ms: Per-attempt timeout in milliseconds.
        max_retries: Retries after the first attempt.
    """

    base_url: str
    identity_pool_id: str
    region: str
    service: str = DEFAULT_SERVICE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if not self.base_url:
            raise ConfigError("base_url must not be empty")
        if not self.identity_pool_id:
            raise ConfigError("identity_pool_id must not be empty")
        if not self.region:
            raise ConfigError(
                "region must be set in config or via "
                + " / ".join(REGION_ENV_VARS)
            )
        if not self.service:
            raise ConfigError("service must not be empty")
        if self.timeout_ms < 1:
            raise ConfigError(f"timeout_ms must be >= 1: {self.timeout_ms}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0: {self.max_retries}")

    @property
    def timeout_seconds(self) -> float:
        """Per-attempt timeout in seconds."""
        return self.timeout_ms / 1000

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ClientConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/sigclient/sigclient.yaml`` (XDG).

        Returns:
            ClientConfig instance.

        Raises:
            ConfigError: If the file is missing or required values are absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "ClientConfig":
        """Build config from a parsed (but unresolved) YAML mapping."""
        region = _resolve(raw.get("region"), str) or region_from_environment()
        config = cls(
            base_url=_resolve(raw.get("base_url"), str, required="base_url"),
            identity_pool_id=_resolve(
                raw.get("identity_pool_id"), str, required="identity_pool_id"
            ),
            region=region or "",
            service=_resolve(raw.get("service"), str, default=DEFAULT_SERVICE),
            timeout_ms=_resolve(
                raw.get("timeout_ms"), int, default=DEFAULT_TIMEOUT_MS
            ),
            max_retries=_resolve(
                raw.get("max_retries"), int, default=DEFAULT_MAX_RETRIES
            ),
        )
        logger.debug(
            "Client config loaded: base_url=%s region=%s service=%s",
            config.base_url,
            config.region,
            config.service,
        )
        return config
