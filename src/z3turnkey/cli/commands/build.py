# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""``build`` command: package every configured distribution plus the sources."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from ...build import BuildReport, BuildRunner
from ...config.loader import load_config
from ...config.models import LinkEditorStrategy
from ...core.console import get_console_manager
from ..shared import CLIError, CLILogger, build_cli_logger, exit_with_errors, report_failures


def build_command(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration file (defaults to <root>/z3turnkey.toml).", dir_okay=False),
    ] = None,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Project root used for discovery and relative paths.", file_okay=False),
    ] = Path("."),
    platforms: Annotated[
        list[str] | None,
        typer.Option("--platform", "-p", help="Distribution name or os/arch label; repeatable."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Override the output directory.", file_okay=False),
    ] = None,
    jobs: Annotated[int | None, typer.Option("--jobs", "-j", min=1, help="Parallel platform pipelines.")] = None,
    overwrite: Annotated[bool, typer.Option("--overwrite", help="Download archives even when cached.")] = False,
    strategy: Annotated[
        LinkEditorStrategy | None,
        typer.Option("--strategy", help="How Mach-O link tables are rewritten.", case_sensitive=False),
    ] = None,
    tool: Annotated[str | None, typer.Option("--tool", help="Explicit install_name_tool executable.")] = None,
    skip_sources: Annotated[bool, typer.Option("--no-sources", help="Skip the Java source set.")] = False,
    skip_binaries: Annotated[bool, typer.Option("--no-binaries", help="Skip the native libraries.")] = False,
    no_emoji: Annotated[bool, typer.Option("--no-emoji", help="Disable emoji output.")] = False,
    no_color: Annotated[bool, typer.Option("--no-color", help="Disable ANSI colour output.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Show debug logging.")] = False,
) -> None:
    """Fetch, rewrite and package the native libraries and Java sources."""

    logger = build_cli_logger(emoji=not no_emoji, debug=debug, no_color=no_color)
    with report_failures(logger, "build"):
        if skip_sources and skip_binaries:
            raise CLIError("--no-sources and --no-binaries leave nothing to build", exit_code=2)
        config = load_config(config_path, root=root)
        if output is not None:
            config.output.directory = output.resolve()
        if jobs is not None:
            config.output.jobs = jobs
        if overwrite:
            config.fetch.overwrite = True
        if strategy is not None:
            config.link_editor.strategy = strategy
        if tool is not None:
            config.link_editor.tool = tool
        logger.debug(f"output={config.output.directory} jobs={config.output.jobs}")
        logger.section(f"z3-turnkey {config.project.version}")

        runner = BuildRunner(config)
        report = runner.run(
            platforms=tuple(platforms or ()),
            include_binaries=not skip_binaries,
            include_sources=not skip_sources,
        )

    _render_report(report, logger)
    errors = report.errors
    if errors:
        logger.fail(f"{len(errors)} failure(s); package is incomplete")
        exit_with_errors(logger, [error for _, error in errors])
    if report.sources is not None:
        logger.info(f"Java sources in {config.output.sources_dir}")
    logger.ok(f"Packaged into {config.output.directory}")


def _render_report(report: BuildReport, logger: CLILogger) -> None:
    console = get_console_manager().get(color=logger.use_color, emoji=logger.use_emoji)
    table = Table(title="z3-turnkey build", show_lines=False)
    table.add_column("Scope")
    table.add_column("State")
    table.add_column("Files", justify="right")
    table.add_column("Detail")
    for outcome in report.platforms:
        detail = ""
        if outcome.error is not None:
            stage = outcome.failed_stage.value if outcome.failed_stage is not None else "?"
            detail = f"after {stage}: {type(outcome.error).__name__}"
        table.add_row(outcome.label, outcome.state.value, str(len(outcome.files)), detail)
    if report.sources is not None:
        state = "packaged" if report.sources.ok else "failed"
        detail = "" if report.sources.error is None else type(report.sources.error).__name__
        table.add_row("sources", state, str(len(report.sources.files)), detail)
    console.print(table)
    logger.debug(f"log_entries={len(report.log)} resources={report.layout.resources_root}")


def register(app: typer.Typer) -> None:
    """Register the build command on ``app``."""

    app.command("build")(build_command)


__all__ = ["build_command", "register"]
