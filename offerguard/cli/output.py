"""
offerguard/cli/output.py

Shared terminal helpers for the offerguard commands.

Exit codes, used by every command:
    0  accepted / clean
    1  rejected / violations found
    2  error (missing file, unparseable input, malformed payload)
"""

import json
import sys

import click

EXIT_OK       = 0
EXIT_REJECTED = 1
EXIT_ERROR    = 2


class Color:
    """
    Minimal ANSI color wrapper.
    Auto-disables when stdout is not a TTY or --no-color is passed.
    """
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def green(cls, s: str) -> str:
        return f"\033[32m{s}\033[0m" if cls._on else s

    @classmethod
    def red(cls, s: str) -> str:
        return f"\033[31m{s}\033[0m" if cls._on else s

    @classmethod
    def yellow(cls, s: str) -> str:
        return f"\033[33m{s}\033[0m" if cls._on else s

    @classmethod
    def bold(cls, s: str) -> str:
        return f"\033[1m{s}\033[0m" if cls._on else s

    @classmethod
    def dim(cls, s: str) -> str:
        return f"\033[2m{s}\033[0m" if cls._on else s


def row(label: str, value: str) -> str:
    return f"  {Color.dim(f'{label:<16}')}  {value}"


def emit_error(command: str, msg: str, fmt: str) -> None:
    """Emit an error in the requested format. Never raises."""
    if fmt == "json":
        click.echo(json.dumps({f"offerguard_{command}": {"error": msg}}))
    else:
        click.echo(Color.red(f"\n  ERROR: {msg}\n"), err=True)
