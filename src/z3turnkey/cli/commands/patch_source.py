# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""``patch-source`` command: replace a class's static initializer."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from ...source import patch_source_file
from ..shared import build_cli_logger, report_failures


def patch_source_command(
    source: Annotated[Path, typer.Argument(help="Java file to patch.", exists=True, dir_okay=False)],
    output: Annotated[Path, typer.Argument(help="Destination of the patched file.", dir_okay=False)],
    class_name: Annotated[str, typer.Option("--class-name", help="Class owning the static initializer.")] = "Native",
    loader_call: Annotated[
        str,
        typer.Option("--loader-call", help="Qualified method invoked by the new initializer."),
    ] = "Z3Loader.loadZ3",
    arguments: Annotated[
        list[str] | None,
        typer.Option("--arg", help="Java expression passed to the loader call; repeatable."),
    ] = None,
    no_emoji: Annotated[bool, typer.Option("--no-emoji", help="Disable emoji output.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Show debug logging.")] = False,
) -> None:
    """Rewrite SOURCE so its static initializer only calls the loader."""

    logger = build_cli_logger(emoji=not no_emoji, debug=debug)
    with report_failures(logger, "patch-source"):
        written = patch_source_file(
            source,
            output,
            class_name=class_name,
            loader_call=loader_call,
            arguments=tuple(arguments or ()),
        )
    logger.ok(f"Patched {class_name} into {written}")


def register(app: typer.Typer) -> None:
    """Register the patch-source command on ``app``."""

    app.command("patch-source")(patch_source_command)


__all__ = ["patch_source_command", "register"]
