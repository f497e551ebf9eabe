# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""``rewrite`` command: edit one library's link table."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from ...binary import LinkEditPlan, inspect_library, rewrite_library, rewrite_with_install_name_tool
from ...config.models import LinkEditorStrategy
from ..shared import build_cli_logger, parse_pairs, report_failures


def rewrite_command(
    library: Annotated[Path, typer.Argument(help="Library to rewrite.", exists=True, dir_okay=False)],
    output: Annotated[Path, typer.Argument(help="Destination of the rewritten library.", dir_okay=False)],
    changes: Annotated[
        list[str] | None,
        typer.Option("--change", help="Dependency rename OLD=NEW; repeatable."),
    ] = None,
    new_id: Annotated[str | None, typer.Option("--id", help="New install name (Mach-O only).")] = None,
    add_rpaths: Annotated[list[str] | None, typer.Option("--add-rpath", help="RPATH entry to add.")] = None,
    delete_rpaths: Annotated[list[str] | None, typer.Option("--delete-rpath", help="RPATH entry to remove.")] = None,
    rpath_changes: Annotated[
        list[str] | None,
        typer.Option("--rpath", help="RPATH replacement OLD=NEW; repeatable."),
    ] = None,
    fat_slice: Annotated[
        str | None,
        typer.Option("--fat-slice", help="Architecture to edit inside a universal Mach-O binary."),
    ] = None,
    strategy: Annotated[
        LinkEditorStrategy,
        typer.Option("--strategy", help="Rewrite engine for Mach-O images.", case_sensitive=False),
    ] = LinkEditorStrategy.BUILTIN,
    tool: Annotated[str | None, typer.Option("--tool", help="Explicit install_name_tool executable.")] = None,
    no_emoji: Annotated[bool, typer.Option("--no-emoji", help="Disable emoji output.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Show debug logging.")] = False,
) -> None:
    """Rewrite LIBRARY's dependency names, install name and RPATHs into OUTPUT."""

    logger = build_cli_logger(emoji=not no_emoji, debug=debug)
    plan = LinkEditPlan(
        dependency_changes=parse_pairs(changes or (), option="--change"),
        id_change=new_id,
        rpath_changes=parse_pairs(rpath_changes or (), option="--rpath"),
        rpath_additions=tuple(add_rpaths or ()),
        rpath_removals=tuple(delete_rpaths or ()),
    )
    if plan.is_empty:
        logger.warn("No edits requested; copying the library unchanged")

    with report_failures(logger, "rewrite"):
        artifact = inspect_library(library, fat_slice=fat_slice)
        if strategy is LinkEditorStrategy.INSTALL_NAME_TOOL:
            result = rewrite_with_install_name_tool(artifact, plan, output, tool=tool, fat_slice=fat_slice)
        else:
            result = rewrite_library(artifact, plan, output, fat_slice=fat_slice)

    logger.ok(f"Wrote {result.path}")
    for name in result.dependencies:
        logger.debug(f"needs={name}")
    for entry in result.rpaths:
        logger.debug(f"rpath={entry}")


def register(app: typer.Typer) -> None:
    """Register the rewrite command on ``app``."""

    app.command("rewrite")(rewrite_command)


__all__ = ["register", "rewrite_command"]
