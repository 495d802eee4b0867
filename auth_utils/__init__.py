"""auth-utils - OAuth and WebAuthn login handlers for FastAPI/Starlette apps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("auth-utils")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Errors
    "AuthError",
    "install_error_handler",
    # Config
    "ProviderConfig",
    "load_env",
    # State
    "MemoryStateStore",
    "StateStore",
    # OAuth
    "define_oauth_event_handler",
    "define_oauth_okta_event_handler",
    "define_oauth_auth0_event_handler",
    "define_oauth_keycloak_event_handler",
    "define_oauth_google_event_handler",
    "define_oauth_github_event_handler",
    # WebAuthn
    "define_webauthn_authenticate_event_handler",
    "define_webauthn_register_event_handler",
]


# Lazy imports for faster CLI startup
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("AuthError", "install_error_handler"):
        from . import errors
        return getattr(errors, name)
    elif name in ("ProviderConfig", "load_env"):
        from . import config
        return getattr(config, name)
    elif name in ("MemoryStateStore", "StateStore"):
        from . import state
        return getattr(state, name)
    elif name.startswith("define_oauth_"):
        from .oauth import handler
        return getattr(handler, name)
    elif name.startswith("define_webauthn_"):
        from .webauthn import handlers
        return getattr(handlers, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
