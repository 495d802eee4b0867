"""Provider configuration loading and merging.

Configuration for a provider comes from three layers, in priority order:

1. Explicit config passed when the handler is defined
2. Environment variables (``AUTH_OAUTH_<PROVIDER>_<FIELD>``)
3. Provider defaults

Layers are deep-merged: nested mappings are merged key by key, while lists
and scalars from a higher layer replace lower ones. ``None`` never overrides.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "AUTH_OAUTH"

# Pending authorization lifetime in seconds
DEFAULT_STATE_TTL = 600

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "auth-utils" / ".env",
]

# Config field -> environment variable suffix
ENV_FIELDS: dict[str, str] = {
    "client_id": "CLIENT_ID",
    "client_secret": "CLIENT_SECRET",
    "domain": "DOMAIN",
    "authorization_server": "AUTH_SERVER_ID",
    "realm": "REALM",
    "audience": "AUDIENCE",
    "scope": "SCOPE",
    "email_required": "EMAIL_REQUIRED",
    "max_age": "MAX_AGE",
    "connection": "CONNECTION",
    "authorization_params": "AUTHORIZATION_PARAMS",
    "redirect_url": "REDIRECT_URL",
    "pkce": "PKCE",
    "verify_state": "VERIFY_STATE",
    "state_ttl": "STATE_TTL",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class ProviderConfig:
    """Resolved configuration for one OAuth provider.

    Attributes:
        client_id: OAuth client ID
        client_secret: OAuth client secret
        domain: Provider domain or issuer (e.g. ``dev-123.okta.com``)
        authorization_server: Okta custom authorization server ID
        realm: Keycloak realm
        audience: Requested audience (Okta, Auth0)
        scope: Requested scopes; ``None`` means the provider default
        email_required: Add the provider's email scope if missing
        max_age: Maximum authentication age in seconds
        connection: Named login connection (Okta, Auth0)
        authorization_params: Extra authorization URL parameters; these
            override computed defaults
        redirect_url: Callback URL override; defaults to the request URL
        pkce: Use PKCE; ``None`` means the provider default
        verify_state: Reject callbacks whose state was not issued here
        state_ttl: Seconds a pending authorization stays valid
    """

    client_id: str | None = None
    client_secret: str | None = None
    domain: str | None = None
    authorization_server: str | None = None
    realm: str | None = None
    audience: str | None = None
    scope: list[str] | None = None
    email_required: bool = False
    max_age: int | None = None
    connection: str | None = None
    authorization_params: dict[str, str] = field(default_factory=dict)
    redirect_url: str | None = None
    pkce: bool | None = None
    verify_state: bool = False
    state_ttl: int = DEFAULT_STATE_TTL

    def missing(self, required: tuple[str, ...] | list[str]) -> list[str]:
        """Return the required fields that are unset or empty."""
        return [name for name in required if not getattr(self, name)]

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        """Serialize to a dictionary, hiding the client secret by default."""
        data = asdict(self)
        if redact and data.get("client_secret"):
            data["client_secret"] = "***"
        return data

    def overrides(self) -> dict[str, Any]:
        """Fields that differ from their defaults, for use as a merge layer."""
        defaults = asdict(type(self)())
        return {k: v for k, v in asdict(self).items() if v != defaults[k]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown provider config keys: {sorted(unknown)}")
        values = {k: v for k, v in data.items() if k in known and v is not None}
        if "scope" in values:
            scope = values["scope"]
            values["scope"] = _parse_scope(scope) if isinstance(scope, str) else list(scope)
        if "authorization_params" in values:
            values["authorization_params"] = {
                str(k): str(v) for k, v in dict(values["authorization_params"]).items()
            }
        return cls(**values)


def env_var_name(provider: str, field_name: str) -> str:
    """Get the environment variable that configures a provider field.

    >>> env_var_name("okta", "client_id")
    'AUTH_OAUTH_OKTA_CLIENT_ID'
    """
    suffix = ENV_FIELDS.get(field_name, field_name.upper())
    return f"{ENV_PREFIX}_{provider.upper()}_{suffix}"


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _parse_scope(value: str) -> list[str]:
    return [s for s in value.replace(",", " ").split() if s]


def _parse_params(name: str, value: str) -> dict[str, str]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{name} must be a JSON object: {e}") from e
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"{name} must be a JSON object, got {type(parsed).__name__}")
    return {str(k): str(v) for k, v in parsed.items()}


def config_from_env(provider: str, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read a provider's configuration from environment variables.

    Args:
        provider: Provider name (e.g. "okta")
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Dictionary containing only the fields that are set

    Raises:
        ConfigurationError: If a variable holds a value of the wrong type
    """
    env = os.environ if environ is None else environ
    result: dict[str, Any] = {}

    for field_name in ENV_FIELDS:
        name = env_var_name(provider, field_name)
        if name not in env:
            continue
        value = env[name]

        if field_name in ("email_required", "pkce", "verify_state"):
            result[field_name] = _parse_bool(name, value)
        elif field_name in ("max_age", "state_ttl"):
            if value.strip():
                result[field_name] = _parse_int(name, value)
        elif field_name == "scope":
            result[field_name] = _parse_scope(value)
        elif field_name == "authorization_params":
            if value.strip():
                result[field_name] = _parse_params(name, value)
        elif value:
            result[field_name] = value

    return result


def deep_merge(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge mappings with earlier layers taking precedence.

    Nested mappings are merged recursively; any other value from an earlier
    layer replaces the later one. ``None`` values are skipped so an unset
    explicit option never hides an environment value.
    """
    merged: dict[str, Any] = {}
    for layer in reversed([layer for layer in layers if layer]):
        for key, value in layer.items():
            if value is None:
                continue
            current = merged.get(key)
            if isinstance(value, Mapping) and isinstance(current, Mapping):
                merged[key] = deep_merge(value, current)
            elif isinstance(value, Mapping):
                merged[key] = dict(value)
            else:
                merged[key] = value
    return merged


def resolve_provider_config(
    provider: str,
    explicit: Mapping[str, Any] | None = None,
    defaults: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Resolve the effective configuration for a provider.

    Args:
        provider: Provider name used for environment variable lookup
        explicit: Call-site configuration (highest priority)
        defaults: Provider defaults (lowest priority)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        ProviderConfig with all layers merged
    """
    merged = deep_merge(
        explicit,
        config_from_env(provider, environ),
        defaults,
        {"authorization_params": {}},
    )
    return ProviderConfig.from_dict(merged)


def missing_configuration_error(provider: str, missing: list[str]) -> ConfigurationError:
    """Build the error raised when required fields are absent.

    The message lists the environment variables that would satisfy it.
    """
    variables = [env_var_name(provider, name) for name in missing]
    noun = "variables" if len(variables) > 1 else "variable"
    return ConfigurationError(
        f"Missing {' or '.join(variables)} env {noun}.",
        provider=provider,
        missing=missing,
        data={"missing": missing},
    )


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the first env file in the search paths."""
    if explicit_path:
        return explicit_path if explicit_path.exists() else None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def load_env(env_path: Path | None = None) -> Path | None:
    """Load environment variables from a ``.env`` file.

    Variables already present in the environment are not overridden.

    Args:
        env_path: Explicit env file path; otherwise the search paths are used

    Returns:
        The file that was loaded, or None
    """
    found = find_env_file(env_path)
    if found:
        load_dotenv(found, override=False)
        logger.debug(f"Loaded environment from {found}")
    return found
