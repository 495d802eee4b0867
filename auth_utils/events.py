"""Callback plumbing shared by the OAuth and WebAuthn handlers."""

import inspect
import logging
from typing import Any, Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from .errors import AuthError

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Request, AuthError], Any]


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, so callbacks may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


async def call(callback: Callable[..., Any | Awaitable[Any]], *args: Any) -> Any:
    return await maybe_await(callback(*args))


def to_response(value: Any, default: Callable[[], Response] | None = None) -> Response:
    """Turn a callback's return value into a response.

    A ``Response`` is used as is. ``None`` falls back to ``default`` (or an
    empty 204). Anything else is rendered as JSON.
    """
    if isinstance(value, Response):
        return value
    if value is None:
        return default() if default else Response(status_code=204)
    return JSONResponse(value)


async def route_error(
    request: Request,
    error: AuthError,
    on_error: ErrorCallback | None,
) -> Response:
    """Send a handler failure to ``on_error``, or raise it.

    Raises:
        AuthError: When no ``on_error`` callback was given
    """
    logger.warning(
        f"{type(error).__name__} ({error.status_code})"
        f"{f' for {error.provider}' if error.provider else ''}: {error.message}"
    )
    if on_error is None:
        raise error
    result = await call(on_error, request, error)
    return to_response(
        result,
        default=lambda: JSONResponse(error.to_dict(), status_code=error.status_code),
    )
