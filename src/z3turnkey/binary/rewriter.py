# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Apply a :class:`LinkEditPlan` to a shared library.

The rewriter is written once against :class:`DynamicLinkTable`; each container
back end turns the resolved :class:`LinkEdits` into bytes. Results are written
next to the destination and renamed into place only after the rewritten file
has been re-inspected and matched against the expected table.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..core.filesystem import atomic_path
from ..errors import LinkEditError
from .inspector import open_image, read_image
from .model import (
    ContainerImage,
    DynamicLinkTable,
    LibraryArtifact,
    LinkEditPlan,
    LinkEdits,
    SlotEdit,
)

LOGGER = logging.getLogger(__name__)

INCONSISTENT_REASON = "offset table inconsistent after edit"


def resolve_edits(image: ContainerImage, plan: LinkEditPlan, *, path: Path) -> LinkEdits:
    """Resolve ``plan`` against the concrete table of ``image``.

    Names already equal to their target produce no edit, so resolving a plan
    against a previously rewritten image yields an empty edit set.

    Args:
        image: Parsed container.
        plan: Requested changes.
        path: Library path used in diagnostics.

    Returns:
        LinkEdits: Slot-level edits for the back end.

    Raises:
        LinkEditError: If an install name is requested for a Mach-O image that
            has none.
    """

    table = image.table
    dependencies = tuple(
        SlotEdit(slot=slot, value=plan.dependency_changes[slot.value])
        for slot in table.dependencies
        if slot.value in plan.dependency_changes and plan.dependency_changes[slot.value] != slot.value
    )

    install_name: str | None = None
    if plan.id_change is not None:
        if not image.supports_install_name:
            LOGGER.info("%s: %s has no install name; ignoring id change", path, image.format.value)
        elif table.install_name is None:
            raise LinkEditError(path, "image has no install name to change")
        elif table.install_name.value != plan.id_change:
            install_name = plan.id_change

    rpaths: tuple[SlotEdit, ...] = ()
    additions: tuple[str, ...] = ()
    if plan.touches_rpaths:
        if not image.supports_rpath:
            LOGGER.info("%s: %s has no runtime search path; ignoring rpath changes", path, image.format.value)
        else:
            rpaths, additions = _resolve_rpaths(table, plan)
    return LinkEdits(dependencies=dependencies, install_name=install_name, rpaths=rpaths, rpath_additions=additions)


def _resolve_rpaths(table: DynamicLinkTable, plan: LinkEditPlan) -> tuple[tuple[SlotEdit, ...], tuple[str, ...]]:
    edits: list[SlotEdit] = []
    final: list[str] = []
    for slot in table.rpaths:
        if slot.value in plan.rpath_removals:
            edits.append(SlotEdit(slot=slot, value=None))
            continue
        target = plan.rpath_changes.get(slot.value, slot.value)
        if target in final:
            edits.append(SlotEdit(slot=slot, value=None))
            continue
        if target != slot.value:
            edits.append(SlotEdit(slot=slot, value=target))
        final.append(target)
    additions = tuple(
        value for value in plan.rpath_additions if value not in final and value not in plan.rpath_removals
    )
    return tuple(edits), additions


def expected_rpaths(current: tuple[str, ...], plan: LinkEditPlan) -> tuple[str, ...]:
    """Return the RPATH list ``plan`` should produce from ``current``.

    Entries that collapse onto an earlier one are dropped, keeping first-seen order.
    """

    result: list[str] = []
    for value in current:
        if value in plan.rpath_removals:
            continue
        target = plan.rpath_changes.get(value, value)
        if target not in result:
            result.append(target)
    result.extend(value for value in plan.rpath_additions if value not in result and value not in plan.rpath_removals)
    return tuple(result)


def verify_rewrite(before: ContainerImage, after: ContainerImage, plan: LinkEditPlan, *, path: Path) -> None:
    """Compare a rewritten image with the table ``plan`` should have produced.

    Raises:
        LinkEditError: With the ``offset table inconsistent after edit`` reason
            on any mismatch.
    """

    problems: list[str] = []
    expected_deps = plan.expected_dependencies(before.table.dependency_names)
    if after.table.dependency_names != expected_deps:
        problems.append(f"dependencies {list(after.table.dependency_names)} != {list(expected_deps)}")
    if before.supports_install_name and plan.id_change is not None:
        actual = after.table.install_name.value if after.table.install_name else None
        if actual != plan.id_change:
            problems.append(f"install name {actual!r} != {plan.id_change!r}")
    if before.supports_rpath and plan.touches_rpaths:
        wanted = expected_rpaths(before.table.rpath_values, plan)
        if after.table.rpath_values != wanted:
            problems.append(f"rpaths {list(after.table.rpath_values)} != {list(wanted)}")
    if problems:
        LOGGER.error("%s: rewrite verification failed: %s", path, "; ".join(problems))
        raise LinkEditError(path, f"{INCONSISTENT_REASON} ({'; '.join(problems)})")


def rewrite_library(
    artifact: LibraryArtifact,
    plan: LinkEditPlan,
    destination: Path | None = None,
    *,
    fat_slice: str | None = None,
) -> LibraryArtifact:
    """Rewrite ``artifact`` according to ``plan``.

    Args:
        artifact: Library to edit; its file is read afresh.
        plan: Requested link-table changes.
        destination: Output path. Defaults to rewriting ``artifact.path``.
        fat_slice: Slice to edit inside a universal Mach-O binary.

    Returns:
        LibraryArtifact: The re-inspected result at ``destination``.

    Raises:
        LinkEditError: If the edit does not fit or fails verification.
        MalformedBinaryError: If the input cannot be parsed.
        UnsupportedFormatError: If the input is not a supported container.
    """

    source = artifact.path
    target = destination or source
    image = read_image(source, fat_slice=fat_slice)
    edits = resolve_edits(image, plan, path=source)
    if edits.is_empty:
        LOGGER.debug("%s: link table already matches the plan", source)
        if target != source:
            with atomic_path(target) as temporary:
                shutil.copy2(source, temporary)
        return LibraryArtifact(path=target, format=image.format, table=image.table, machine=image.machine)

    payload = image.apply(edits)
    rewritten = open_image(target, payload, fat_slice=fat_slice)
    verify_rewrite(image, rewritten, plan, path=source)
    with atomic_path(target) as temporary:
        temporary.write_bytes(payload)
        shutil.copymode(source, temporary)
    LOGGER.debug(
        "%s -> %s: %d dependency, %s id, %d rpath edit(s), %d rpath addition(s)",
        source,
        target,
        len(edits.dependencies),
        "1" if edits.install_name is not None else "0",
        len(edits.rpaths),
        len(edits.rpath_additions),
    )
    return LibraryArtifact(path=target, format=rewritten.format, table=rewritten.table, machine=rewritten.machine)


__all__ = ["INCONSISTENT_REASON", "expected_rpaths", "resolve_edits", "rewrite_library", "verify_rewrite"]
