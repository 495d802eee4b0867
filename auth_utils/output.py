"""Output formatters for the auth-utils command line."""

import json
import sys
from typing import Any, NoReturn

import click

from .errors import AuthError


def format_json(data: Any, success: bool = True) -> str:
    """Format data as JSON output."""
    if success:
        output = {"success": True, "data": data}
    else:
        output = data
    return json.dumps(output, indent=2, default=str)


def error_dict(error: Exception, help_text: str | None = None) -> dict[str, Any]:
    """Describe an error for JSON output.

    ``AuthError`` details (status code, provider, data) are included.
    """
    detail: dict[str, Any] = {
        "type": type(error).__name__,
        "message": error.message if isinstance(error, AuthError) else str(error),
        "help": help_text or "",
    }
    if isinstance(error, AuthError):
        detail["status_code"] = error.status_code
        detail["provider"] = error.provider
        detail["data"] = error.data
    return {"success": False, "error": detail}


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            click.echo(format_json(data))
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def error(self, error: Exception, help_text: str | None = None) -> NoReturn:
        """Output error response and exit with status 1."""
        if self.json_mode:
            click.echo(format_json(error_dict(error, help_text), success=False))
        else:
            message = error.message if isinstance(error, AuthError) else str(error)
            click.secho(f"Error: {message}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Output a table (human mode only, JSON mode outputs raw data)."""
        if self.json_mode:
            click.echo(format_json([dict(zip(headers, row)) for row in rows]))
            return

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))
        for row in rows:
            click.echo("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)))
