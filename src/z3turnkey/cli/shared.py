# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Shared utilities for CLI commands (logging, errors, option parsing)."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Final

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from ..core.logging import fail as core_fail
from ..core.logging import info as core_info
from ..core.logging import ok as core_ok
from ..core.logging import section as core_section
from ..core.logging import warn as core_warn
from ..errors import IncompletePackageError, TurnkeyError

PACKAGE_LOGGER: Final[str] = "z3turnkey"


class CLIError(RuntimeError):
    """Error raised when a CLI command fails and should exit with a status code."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@dataclass(slots=True)
class CLILogger:
    """Adapter around the console helpers honouring emoji, colour and debug flags."""

    console: Console
    use_emoji: bool
    use_color: bool = True
    debug_enabled: bool = False
    _key_value_re: re.Pattern[str] = re.compile(r"([\w-]+)=(\".*?\"|\S+)")

    def fail(self, message: str) -> None:
        core_fail(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def warn(self, message: str) -> None:
        core_warn(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def ok(self, message: str) -> None:
        core_ok(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def info(self, message: str) -> None:
        core_info(message, use_emoji=self.use_emoji, use_color=self.use_color)

    def section(self, title: str) -> None:
        core_section(title, use_color=self.use_color)

    def echo(self, message: str) -> None:
        """Write ``message`` to stdout using Typer's echo helper."""

        typer.echo(message)

    def debug(self, message: str) -> None:
        """Emit a debug message with ``key=value`` highlighting when enabled."""

        if not self.debug_enabled:
            return
        text = Text("[debug] ", style="bold cyan")
        cursor = 0
        for match in self._key_value_re.finditer(message):
            start, end = match.span()
            if start > cursor:
                text.append(message[cursor:start], style="dim")
            text.append(match.group(1), style="bold magenta")
            text.append("=", style="dim")
            text.append(match.group(2), style="bold green")
            cursor = end
        if cursor < len(message):
            text.append(message[cursor:], style="dim")
        self.console.print(text)

    def report_error(self, error: BaseException) -> None:
        """Print ``error``; incomplete packages list every failed platform."""

        if isinstance(error, IncompletePackageError):
            self.fail("Incomplete package:")
            for label, cause in sorted(error.failures.items()):
                self.fail(f"  {label}: {type(cause).__name__}: {cause}")
            return
        self.fail(f"{type(error).__name__}: {error}")


def build_cli_logger(*, emoji: bool, debug: bool = False, no_color: bool = False) -> CLILogger:
    """Return a ``CLILogger`` and route package logs to the console when debugging.

    Args:
        emoji: Whether output may include emoji glyphs.
        debug: Whether debug output and ``logging`` records are shown.
        no_color: Whether terminal colour output is disabled.

    Returns:
        CLILogger: Logger bound to a dedicated Rich console.
    """

    console = Console(no_color=no_color, highlight=False, stderr=True)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)
    if debug:
        handler = RichHandler(console=console, show_path=False, markup=False)
        package_logger.addHandler(handler)
        package_logger.setLevel(logging.DEBUG)
    else:
        package_logger.setLevel(logging.WARNING)
    return CLILogger(console=console, use_emoji=emoji, use_color=not no_color, debug_enabled=debug)


def parse_pairs(values: Iterable[str], *, option: str) -> dict[str, str]:
    """Parse repeated ``old=new`` option values into a mapping.

    Raises:
        typer.BadParameter: If a value lacks ``=`` or has an empty side.
    """

    pairs: dict[str, str] = {}
    for value in values:
        old, sep, new = value.partition("=")
        if not sep or not old or not new:
            raise typer.BadParameter(f"expected OLD=NEW, got '{value}'", param_hint=option)
        pairs[old] = new
    return pairs


def exit_with_errors(logger: CLILogger, errors: Sequence[BaseException]) -> None:
    """Report every error and exit with status 1 when any occurred."""

    for error in errors:
        logger.report_error(error)
    if errors:
        raise typer.Exit(code=1)


@contextmanager
def report_failures(logger: CLILogger, action: str) -> Iterator[None]:
    """Turn package errors raised inside the block into a reported exit status.

    Args:
        logger: CLI logger used to print the failure.
        action: Short description of the operation, e.g. ``"rewrite"``.

    Raises:
        typer.Exit: With ``1`` (or the ``CLIError`` exit code) on failure.
    """

    try:
        yield
    except CLIError as exc:
        logger.fail(f"{action} failed: {exc}")
        raise typer.Exit(code=exc.exit_code) from exc
    except (TurnkeyError, OSError) as exc:
        logger.fail(f"{action} failed")
        logger.report_error(exc)
        raise typer.Exit(code=1) from exc


__all__ = [
    "CLIError",
    "CLILogger",
    "build_cli_logger",
    "exit_with_errors",
    "parse_pairs",
    "report_failures",
]
