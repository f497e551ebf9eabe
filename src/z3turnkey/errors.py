# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Error taxonomy shared by every packaging stage."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path


class TurnkeyError(RuntimeError):
    """Base class for all packaging failures."""


class ConfigError(TurnkeyError):
    """Raised when configuration input is invalid."""


class DownloadError(TurnkeyError):
    """Raised when a remote archive cannot be retrieved."""

    def __init__(self, url: str, *, status: int | None = None, reason: str | None = None) -> None:
        """Initialise the error with the failing URL and transport details.

        Args:
            url: URL that could not be fetched.
            status: HTTP status code when the server answered.
            reason: Short description such as ``"timeout"``.
        """

        detail = f"HTTP {status}" if status is not None else (reason or "unreachable")
        if status is not None and reason:
            detail = f"{detail} ({reason})"
        super().__init__(f"Download of {url} failed: {detail}")
        self.url = url
        self.status = status
        self.reason = reason


class ExtractionError(TurnkeyError):
    """Raised when an archive is unreadable or yields no matching entries."""


class UnsupportedFormatError(TurnkeyError):
    """Raised when a binary's container format is not one we can handle."""


class MalformedBinaryError(TurnkeyError):
    """Raised when a recognised container cannot be parsed."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class LinkEditError(TurnkeyError):
    """Raised when a link-table rewrite cannot be performed safely."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"Cannot rewrite {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class ToolNotFoundError(TurnkeyError):
    """Raised when an external link-editing tool cannot be located."""

    def __init__(self, tool: str, candidates: tuple[str, ...]) -> None:
        tried = ", ".join(candidates) if candidates else "<none>"
        super().__init__(
            f"No {tool} defined or found on the search path (tried: {tried}); "
            "configure an explicit tool location",
        )
        self.tool = tool
        self.candidates = candidates


class ParseError(TurnkeyError):
    """Raised when a source file cannot be parsed."""


class AmbiguousTargetError(TurnkeyError):
    """Raised when a rewrite locator matches zero or several constructs."""

    def __init__(self, description: str, matches: int) -> None:
        super().__init__(f"Expected exactly one {description}, found {matches}")
        self.description = description
        self.matches = matches


class GeneratorError(TurnkeyError):
    """Raised when an external source generator script fails."""


class PackagingError(TurnkeyError):
    """Raised when a platform pipeline stops on an error outside the taxonomy."""

    def __init__(self, label: str, cause: BaseException) -> None:
        super().__init__(f"{label}: unexpected {type(cause).__name__}: {cause}")
        self.label = label
        self.cause = cause


class IncompletePackageError(TurnkeyError):
    """Raised when one or more platforms failed to produce output."""

    def __init__(self, failures: Mapping[str, BaseException]) -> None:
        """Initialise the error with every failed platform and its cause.

        Args:
            failures: Mapping of platform label to the error that stopped it.
        """

        lines = [f"{label}: {error}" for label, error in sorted(failures.items())]
        super().__init__("Incomplete package; missing platform(s):\n  " + "\n  ".join(lines))
        self.failures = dict(failures)


__all__ = [
    "AmbiguousTargetError",
    "ConfigError",
    "DownloadError",
    "ExtractionError",
    "GeneratorError",
    "IncompletePackageError",
    "LinkEditError",
    "MalformedBinaryError",
    "PackagingError",
    "ParseError",
    "ToolNotFoundError",
    "TurnkeyError",
    "UnsupportedFormatError",
]
