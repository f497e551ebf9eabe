# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""External ``install_name_tool`` strategy for Mach-O link tables."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Final

from ..core.filesystem import atomic_path
from ..core.process import CommandOptions, run_command
from ..errors import LinkEditError, ToolNotFoundError
from .inspector import inspect_library, read_image
from .model import ContainerFormat, LibraryArtifact, LinkEditPlan
from .rewriter import verify_rewrite

LOGGER = logging.getLogger(__name__)

TOOL_NAME: Final[str] = "install_name_tool"
INSTALL_NAME_TOOL_CANDIDATES: Final[tuple[str, ...]] = (
    "install_name_tool",
    "x86_64-apple-darwin-install_name_tool",
    "llvm-install-name-tool",
)
DEFAULT_TIMEOUT: Final[float] = 120.0


def find_install_name_tool(explicit: str | None = None) -> str:
    """Return the executable used to edit Mach-O load commands.

    Args:
        explicit: Configured tool name or path that takes precedence over the
            candidate table.

    Returns:
        str: Absolute path of the tool.

    Raises:
        ToolNotFoundError: If neither ``explicit`` nor any candidate resolves.
    """

    candidates = (explicit,) if explicit else INSTALL_NAME_TOOL_CANDIDATES
    for candidate in candidates:
        candidate_path = Path(candidate)
        if candidate_path.is_absolute() and candidate_path.is_file():
            return str(candidate_path)
        resolved = shutil.which(candidate)
        if resolved is not None:
            LOGGER.debug("using %s at %s", TOOL_NAME, resolved)
            return resolved
    raise ToolNotFoundError(TOOL_NAME, tuple(candidates))


def build_command(tool: str, plan: LinkEditPlan, target: Path, current_rpaths: tuple[str, ...] = ()) -> list[str]:
    """Translate ``plan`` into one ``install_name_tool`` invocation."""

    args = [tool]
    if plan.id_change is not None:
        args += ["-id", plan.id_change]
    for old, new in plan.dependency_changes.items():
        if old != new:
            args += ["-change", old, new]
    for old, new in plan.rpath_changes.items():
        if old != new and old in current_rpaths:
            args += ["-rpath", old, new]
    for value in plan.rpath_removals:
        if value in current_rpaths:
            args += ["-delete_rpath", value]
    for value in plan.rpath_additions:
        if value not in current_rpaths and value not in plan.rpath_changes.values():
            args += ["-add_rpath", value]
    args.append(str(target))
    return args


def rewrite_with_install_name_tool(
    artifact: LibraryArtifact,
    plan: LinkEditPlan,
    destination: Path | None = None,
    *,
    tool: str | None = None,
    fat_slice: str | None = None,
) -> LibraryArtifact:
    """Rewrite a Mach-O library by running ``install_name_tool`` on a copy.

    Raises:
        LinkEditError: If the artifact is not Mach-O or the tool exits non-zero.
        ToolNotFoundError: If no tool can be located.
    """

    if artifact.format is not ContainerFormat.MACHO:
        raise LinkEditError(artifact.path, f"{TOOL_NAME} only edits Mach-O images, not {artifact.format.value}")
    executable = find_install_name_tool(tool)
    target = destination or artifact.path
    before = read_image(artifact.path, fat_slice=fat_slice)
    with atomic_path(target) as temporary:
        shutil.copy2(artifact.path, temporary)
        command = build_command(executable, plan, temporary, before.table.rpath_values)
        if len(command) > 2:
            completed = run_command(command, options=CommandOptions(check=False, timeout=DEFAULT_TIMEOUT))
            for line in (completed.stdout or "").splitlines() + (completed.stderr or "").splitlines():
                LOGGER.info("%s: %s", TOOL_NAME, line)
            if completed.returncode != 0:
                raise LinkEditError(artifact.path, f"{TOOL_NAME} exited with status {completed.returncode}")
        verify_rewrite(before, read_image(temporary, fat_slice=fat_slice), plan, path=artifact.path)
    return inspect_library(target, fat_slice=fat_slice)


__all__ = [
    "INSTALL_NAME_TOOL_CANDIDATES",
    "build_command",
    "find_install_name_tool",
    "rewrite_with_install_name_tool",
]
