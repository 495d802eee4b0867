"""CLI entry point for auth-utils."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import click

from . import __version__
from .config import ProviderConfig, env_var_name, load_env, missing_configuration_error, resolve_provider_config
from .errors import AuthError, ConfigurationError
from .oauth.discovery import DiscoveryCache, ProviderMetadata
from .oauth.flow import build_authorization_params, build_authorization_url
from .oauth.pkce import generate_pkce_pair
from .oauth.providers import OAuthProvider, get_provider, list_providers
from .output import OutputHandler
from .state import generate_state

logger = logging.getLogger("auth_utils")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, verbose: bool) -> None:
    """auth-utils - Inspect OAuth provider configuration for login handlers."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    load_env(Path(env_path) if env_path else None)


def _provider(output: OutputHandler, name: str) -> OAuthProvider:
    try:
        return get_provider(name)
    except ConfigurationError as e:
        output.error(e, help_text="Run 'auth-utils providers' to list known providers.")


def _config(output: OutputHandler, provider: OAuthProvider) -> ProviderConfig:
    """Resolve a provider's config from the environment, exiting on errors."""
    try:
        config = resolve_provider_config(provider.name)
        missing = config.missing(provider.required)
        if missing:
            raise missing_configuration_error(provider.name, missing)
    except ConfigurationError as e:
        variables = [env_var_name(provider.name, field) for field in e.missing]
        help_text = "Set these variables in the environment or a .env file:\n" + "\n".join(
            f"  {name}" for name in variables
        ) if variables else None
        output.error(e, help_text=help_text)
    return config


def _metadata(output: OutputHandler, provider: OAuthProvider, config: ProviderConfig) -> ProviderMetadata:
    try:
        return asyncio.run(provider.resolve_metadata(config, DiscoveryCache()))
    except AuthError as e:
        output.error(e, help_text="Check the provider domain and network access.")


def _endpoint_mode(provider: OAuthProvider) -> str:
    return "discovery" if provider.uses_discovery() else "static"


@main.command()
@click.pass_context
def providers(ctx: click.Context) -> None:
    """List the supported OAuth providers."""
    output: OutputHandler = ctx.obj["output"]
    rows = [
        [
            provider.name,
            provider.display_name,
            ", ".join(provider.required),
            _endpoint_mode(provider),
            " ".join(provider.default_scope) or "-",
        ]
        for provider in list_providers()
    ]
    output.table(["name", "display_name", "required", "endpoints", "default_scope"], rows)


@main.command()
@click.argument("provider")
@click.pass_context
def check(ctx: click.Context, provider: str) -> None:
    """Check a provider's configuration and endpoints."""
    output: OutputHandler = ctx.obj["output"]
    record = _provider(output, provider)
    config = _config(output, record)
    metadata = _metadata(output, record, config)

    data: dict[str, Any] = {
        "provider": record.name,
        "endpoints": _endpoint_mode(record),
        "config": config.to_dict(),
        "scope": record.scopes(config),
        "authorization_endpoint": metadata.authorization_endpoint,
        "token_endpoint": metadata.token_endpoint,
        "userinfo_endpoint": metadata.userinfo_endpoint,
        "pkce": record.use_pkce(config),
    }
    if record.use_pkce(config) and not metadata.supports_pkce():
        data["warning"] = "PKCE is enabled but the provider does not advertise S256"

    lines = [
        click.style(f"{record.display_name} configuration OK", fg="green"),
        f"  Endpoints:     {data['endpoints']}",
        f"  Authorization: {metadata.authorization_endpoint}",
        f"  Token:         {metadata.token_endpoint}",
        f"  User info:     {metadata.userinfo_endpoint}",
        f"  Scope:         {' '.join(data['scope']) or '-'}",
        f"  PKCE:          {'on' if data['pkce'] else 'off'}",
    ]
    if "warning" in data:
        lines.append(click.style(f"  Warning: {data['warning']}", fg="yellow"))
    output.success(data, "\n".join(lines))


@main.command("authorize-url")
@click.argument("provider")
@click.option("--redirect-url", "-r", required=True, help="Callback URL registered with the provider")
@click.pass_context
def authorize_url(ctx: click.Context, provider: str, redirect_url: str) -> None:
    """Print the authorization URL a login handler would redirect to."""
    output: OutputHandler = ctx.obj["output"]
    record = _provider(output, provider)
    config = _config(output, record)
    metadata = _metadata(output, record, config)

    state = generate_state()
    data: dict[str, Any] = {"provider": record.name, "state": state}
    code_challenge = None
    if record.use_pkce(config):
        pair = generate_pkce_pair()
        code_challenge = pair.challenge
        data["code_verifier"] = pair.verifier

    params = build_authorization_params(record, config, redirect_url, state, code_challenge)
    data["url"] = build_authorization_url(metadata.authorization_endpoint, params)
    output.success(data, data["url"])


if __name__ == "__main__":
    main()
