# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""``inspect`` command: print a library's dynamic-link table."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer

from ...binary import LibraryArtifact, inspect_library
from ..shared import build_cli_logger, report_failures


def artifact_payload(artifact: LibraryArtifact) -> dict[str, object]:
    """Return a JSON-serialisable summary of ``artifact``."""

    return {
        "path": str(artifact.path),
        "format": artifact.format.value,
        "machine": artifact.machine,
        "install_name": artifact.install_name,
        "dependencies": list(artifact.dependencies),
        "rpaths": list(artifact.rpaths),
    }


def inspect_command(
    library: Annotated[Path, typer.Argument(help="Shared library to inspect.", exists=True, dir_okay=False)],
    fat_slice: Annotated[
        str | None,
        typer.Option("--fat-slice", help="Architecture to read from a universal Mach-O binary."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON instead of text.")] = False,
    no_emoji: Annotated[bool, typer.Option("--no-emoji", help="Disable emoji output.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Show debug logging.")] = False,
) -> None:
    """Report the format, dependencies, install name and RPATHs of LIBRARY."""

    logger = build_cli_logger(emoji=not no_emoji, debug=debug)
    with report_failures(logger, "inspect"):
        artifact = inspect_library(library, fat_slice=fat_slice)

    payload = artifact_payload(artifact)
    if as_json:
        logger.echo(json.dumps(payload, indent=2))
        return
    logger.echo(f"{artifact.name}: {artifact.format.value} ({artifact.machine})")
    if artifact.install_name is not None:
        logger.echo(f"  id: {artifact.install_name}")
    for name in artifact.dependencies:
        logger.echo(f"  needs: {name}")
    for entry in artifact.rpaths:
        logger.echo(f"  rpath: {entry}")


def register(app: typer.Typer) -> None:
    """Register the inspect command on ``app``."""

    app.command("inspect")(inspect_command)


__all__ = ["artifact_payload", "inspect_command", "register"]
