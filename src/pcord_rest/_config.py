"""
Global configuration for the pcord_rest client.

Users can optionally call PCORD.configure() at application startup to customize
defaults. If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Overrides passed to the RESTClient constructor
2. Values set via PCORD.configure()
3. Environment variables (PCORD_REST_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from pcord_rest import PCORD
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> version = PCORD.config.api_version
    >>>
    >>> # Custom configuration
    >>> PCORD.configure(token="my-bot-token", timeout=15.0)
"""

from __future__ import annotations

import logging
import os
import threading
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from typing import Any, Self

from pcord_rest._errors import RestErrorCode, RestWarning

logger = logging.getLogger(__name__)


class TokenType(StrEnum):
    """Token categories; the value is the Authorization header prefix."""

    BOT = "Bot"
    BEARER = "Bearer"

    @classmethod
    def parse(cls, value: str) -> TokenType:
        """Parse a token type by name or prefix, case-insensitively."""
        normalized = value.strip().lower()
        for member in cls:
            if normalized in (member.name.lower(), member.value.lower()):
                return member
        raise ValueError(f"Unknown token type: {value!r}")


class RequestDestination(StrEnum):
    """Where a request is sent to."""

    API = "api"
    CDN = "cdn"


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


def _parse_number(raw: str) -> int | float:
    number = float(raw)
    return int(number) if number.is_integer() else number


def read_env_var(var_name: str, converter: Callable[[str], Any] = str) -> Any:
    """
    Read and convert an environment variable. Unset or empty values read as None.

    Raises:
        ConfigEnvVarError: If the value cannot be converted.
    """
    raw_value = os.environ.get(var_name)
    if not raw_value:
        return None
    try:
        return converter(raw_value)
    except (ValueError, TypeError) as e:
        raise ConfigEnvVarError(
            env_var=var_name,
            value=raw_value,
            expected_type=getattr(converter, "__name__", "value"),
            cause=e,
        ) from e


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass(frozen=True)
class RestConfig:
    """
    Configuration for RESTClient instances.

    Attributes:
        token: Token used to build the Authorization header.
            Env var: PCORD_REST_TOKEN

        token_type: Whether the token is a bot token or an OAuth2 bearer token.
            Env var: PCORD_REST_TOKEN_TYPE ("bot" or "bearer")

        api: Host of the REST API.
            Env var: PCORD_REST_API

        cdn: Host of the CDN.
            Env var: PCORD_REST_CDN

        port: Port to connect to. None uses the scheme's default port.
            Env var: PCORD_REST_PORT

        scheme: "https" or "http".
            Env var: PCORD_REST_SCHEME

        api_version: API version used in the path prefix (/api/v{n}).
            Invalid values only produce a RestWarning.
            Env var: PCORD_REST_API_VERSION

        user_agent_suffix: Text appended to the base User-Agent.
            Env var: PCORD_REST_USER_AGENT_SUFFIX

        timeout: Default per-request timeout budget in seconds. None = unbounded.
            Env var: PCORD_REST_TIMEOUT

    Example:
        >>> config = RestConfig(token="abc")
        >>> custom = config.with_overrides({"timeout": 10.0})
        >>> custom.timeout
        10.0
    """

    token: str | None = field(default=None, metadata={"env": "PCORD_REST_TOKEN"}, repr=False)
    token_type: TokenType = field(
        default=TokenType.BOT,
        metadata={"env": "PCORD_REST_TOKEN_TYPE", "converter": TokenType.parse},
    )
    api: str = field(default="discord.com", metadata={"env": "PCORD_REST_API"})
    cdn: str = field(default="cdn.discordapp.com", metadata={"env": "PCORD_REST_CDN"})
    port: int | None = field(default=None, metadata={"env": "PCORD_REST_PORT", "converter": int})
    scheme: str = field(default="https", metadata={"env": "PCORD_REST_SCHEME"})
    api_version: int | float = field(
        default=9,
        metadata={"env": "PCORD_REST_API_VERSION", "converter": _parse_number},
    )
    user_agent_suffix: str | None = field(default=None, metadata={"env": "PCORD_REST_USER_AGENT_SUFFIX"})
    timeout: float | None = field(default=None, metadata={"env": "PCORD_REST_TIMEOUT", "converter": float})

    def with_overrides(
        self,
        overrides: dict[str, Any],
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Return a new instance with specified fields overridden.

        Args:
            overrides: Dict of field names to new values.
                       Only existing fields are allowed.
            allow_none_fields: Set of field names that accept None as a valid value.
                       By default, None values are filtered out.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        allow_none = allow_none_fields or set()
        filtered = {k: v for k, v in overrides.items() if v is not None or k in allow_none}
        if "token_type" in filtered and isinstance(filtered["token_type"], str):
            filtered["token_type"] = TokenType.parse(filtered["token_type"])
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = read_env_var(env_var, f.metadata.get("converter", str))
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)

    def validate(self) -> Self:
        """
        Validate configuration fields.

        The API version is deliberately not validated here; an unusual
        version only triggers a one-time advisory (see `check_api_version`).
        """
        if self.token is not None and self.token == "":
            raise ConfigValidationError("token", self.token, "Must not be empty string.")
        if not isinstance(self.token_type, TokenType):
            raise ConfigValidationError("token_type", self.token_type, "Must be a TokenType.")
        if not self.api:
            raise ConfigValidationError("api", self.api, "Must not be empty.")
        if not self.cdn:
            raise ConfigValidationError("cdn", self.cdn, "Must not be empty.")
        if self.port is not None and not (0 < self.port < 65536):
            raise ConfigValidationError("port", self.port, "Must be between 1 and 65535.")
        if self.scheme not in ("http", "https"):
            raise ConfigValidationError("scheme", self.scheme, "Must be 'http' or 'https'.")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigValidationError("timeout", self.timeout, "Must be > 0 or None.")
        return self


# =============================================================================
# API version advisory
# =============================================================================


_warned_api_versions: set[object] = set()
_warned_api_versions_lock = threading.Lock()


def is_valid_api_version(api_version: object) -> bool:
    """Return True if `api_version` is a whole number greater than 0."""
    if isinstance(api_version, bool):
        return False
    if isinstance(api_version, float):
        return api_version.is_integer() and api_version > 0
    return isinstance(api_version, int) and api_version > 0


def check_api_version(api_version: object) -> bool:
    """
    Emit a RestWarning for an invalid API version, once per distinct value.

    Returns:
        True if the version is valid.
    """
    if is_valid_api_version(api_version):
        return True

    key = (type(api_version).__name__, repr(api_version))
    with _warned_api_versions_lock:
        if key in _warned_api_versions:
            return False
        _warned_api_versions.add(key)

    logger.warning(f"Invalid API version {api_version!r}; expected a whole number greater than 0")
    warnings.warn(
        RestWarning(RestErrorCode.INVALID_API_VERSION, api_version),
        stacklevel=3,
    )
    return False


# =============================================================================
# Global Singleton
# =============================================================================


class _PCORD:
    """
    Singleton for client configuration.

    Example:
        >>> from pcord_rest import PCORD
        >>> PCORD.configure(token="...", token_type="bearer")
        >>> print(PCORD.config.token_type)
    """

    def __init__(self) -> None:
        self._config: RestConfig = RestConfig().with_env_vars()

    def configure(self, *, allow_env_override: bool = True, **overrides: Any) -> RestConfig:
        """
        Configure client defaults.

        Args:
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.
            **overrides: RestConfig field overrides.

        Returns:
            The configured RestConfig instance.

        Raises:
            ValueError: If overrides contain unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = RestConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_overrides(overrides)
        return self.validate()

    @property
    def config(self) -> RestConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> RestConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = RestConfig().with_env_vars()
        return self.validate()

    def validate(self) -> RestConfig:
        """Validate current configuration."""
        return self._config.validate()

    def __repr__(self) -> str:
        return f"PCORD(config={self._config!r})"


# Global singleton instance - always reflects current configuration
PCORD: _PCORD = _PCORD()
PCORD.validate()
