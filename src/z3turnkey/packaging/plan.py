# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Derive link-edit plans that make sibling libraries load each other."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath, PureWindowsPath
from typing import Final

from ..binary.model import ContainerFormat, LibraryArtifact, LinkEditPlan
from ..config.models import DistributionDescriptor

LOGGER = logging.getLogger(__name__)

MACHO_RPATH_PREFIX: Final[str] = "@rpath/"
MACHO_LOADER_RPATH: Final[str] = "@loader_path"
ELF_LOADER_RPATH: Final[str] = "$ORIGIN"


def _basename(reference: str, fmt: ContainerFormat) -> str:
    if fmt is ContainerFormat.PE:
        return PureWindowsPath(reference).name
    return PurePosixPath(reference).name


def sibling_reference(packaged_name: str, fmt: ContainerFormat) -> str:
    """Return how a library should name a sibling shipped next to it."""

    if fmt is ContainerFormat.MACHO:
        return f"{MACHO_RPATH_PREFIX}{packaged_name}"
    return packaged_name


def build_link_edit_plan(
    descriptor: DistributionDescriptor,
    artifacts: Sequence[LibraryArtifact],
    renames: Mapping[str, str] | None = None,
) -> dict[str, LinkEditPlan]:
    """Build one plan per artifact of a platform.

    Every dependency whose base name (or whose target's install name) belongs
    to a sibling is redirected to the sibling's packaged name. Mach-O images
    also get an ``@rpath`` install name and an ``@loader_path`` search path;
    ELF images get ``$ORIGIN``.

    Args:
        descriptor: Platform the artifacts belong to.
        artifacts: Inspected libraries of that platform, already at their
            packaged file names.
        renames: Original file name mapped to packaged file name, for
            dependencies that still use the upstream name.

    Returns:
        dict[str, LinkEditPlan]: Plans keyed by artifact file name.
    """

    aliases: dict[str, str] = {}
    for original, packaged in (renames or {}).items():
        aliases[original] = packaged
    for artifact in artifacts:
        aliases.setdefault(artifact.name, artifact.name)
        if artifact.install_name:
            aliases.setdefault(_basename(artifact.install_name, artifact.format), artifact.name)

    plans: dict[str, LinkEditPlan] = {}
    for artifact in artifacts:
        fmt = artifact.format
        changes: dict[str, str] = {}
        for dependency in artifact.dependencies:
            packaged = aliases.get(_basename(dependency, fmt))
            if packaged is None or packaged == artifact.name:
                continue
            replacement = sibling_reference(packaged, fmt)
            if replacement != dependency:
                changes[dependency] = replacement
        if fmt is ContainerFormat.MACHO:
            plans[artifact.name] = LinkEditPlan(
                dependency_changes=changes,
                id_change=sibling_reference(artifact.name, fmt) if artifact.install_name is not None else None,
                rpath_additions=(MACHO_LOADER_RPATH,),
            )
        elif fmt is ContainerFormat.ELF:
            plans[artifact.name] = LinkEditPlan(dependency_changes=changes, rpath_additions=(ELF_LOADER_RPATH,))
        else:
            plans[artifact.name] = LinkEditPlan(dependency_changes=changes)
    for name, plan in plans.items():
        LOGGER.debug("%s: plan for %s: %s", descriptor.label, name, dict(plan.dependency_changes))
    return plans


__all__ = [
    "ELF_LOADER_RPATH",
    "MACHO_LOADER_RPATH",
    "MACHO_RPATH_PREFIX",
    "build_link_edit_plan",
    "sibling_reference",
]
