# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Format-independent view of a shared library's dynamic-link table.

Every container back end (ELF, Mach-O, PE-COFF) reports its linkage as a
:class:`DynamicLinkTable`: ordered string slots that remember where their bytes
live in the file and how much room a replacement may use. The rewriter works
against this abstraction; back ends only supply the write primitives.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Protocol


class ContainerFormat(str, Enum):
    """Binary container formats the inspector recognises."""

    ELF = "elf"
    MACHO = "mach-o"
    PE = "pe-coff"


class SlotKind(str, Enum):
    """Role of a string slot inside the dynamic-link table."""

    DEPENDENCY = "dependency"
    ID = "id"
    RPATH = "rpath"


@dataclass(frozen=True, slots=True)
class LinkSlot:
    """One string stored in a dynamic-link table.

    Attributes:
        kind: Role of the string.
        value: Decoded string as stored in the binary.
        offset: Absolute file offset of the first string byte.
        capacity: Bytes a replacement may occupy in place, terminator excluded.
    """

    kind: SlotKind
    value: str
    offset: int
    capacity: int


@dataclass(frozen=True, slots=True)
class DynamicLinkTable:
    """Ordered dependency slots plus the optional install name and RPATH slots."""

    format: ContainerFormat
    dependencies: tuple[LinkSlot, ...] = ()
    install_name: LinkSlot | None = None
    rpaths: tuple[LinkSlot, ...] = ()

    @property
    def dependency_names(self) -> tuple[str, ...]:
        return tuple(slot.value for slot in self.dependencies)

    @property
    def rpath_values(self) -> tuple[str, ...]:
        return tuple(slot.value for slot in self.rpaths)


@dataclass(frozen=True, slots=True)
class LibraryArtifact:
    """A shared library on disk together with its parsed link table."""

    path: Path
    format: ContainerFormat
    table: DynamicLinkTable
    machine: str

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def dependencies(self) -> tuple[str, ...]:
        return self.table.dependency_names

    @property
    def install_name(self) -> str | None:
        slot = self.table.install_name
        return slot.value if slot is not None else None

    @property
    def rpaths(self) -> tuple[str, ...]:
        return self.table.rpath_values


def _frozen_mapping(value: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class LinkEditPlan:
    """Requested changes to a library's dynamic-link table.

    Attributes:
        dependency_changes: Old dependency name mapped to its replacement.
        id_change: New install name (Mach-O only).
        rpath_changes: Old RPATH entry mapped to its replacement.
        rpath_additions: RPATH entries appended when absent.
        rpath_removals: RPATH entries deleted when present.
    """

    dependency_changes: Mapping[str, str] = field(default_factory=dict)
    id_change: str | None = None
    rpath_changes: Mapping[str, str] = field(default_factory=dict)
    rpath_additions: tuple[str, ...] = ()
    rpath_removals: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "dependency_changes", _frozen_mapping(self.dependency_changes))
        object.__setattr__(self, "rpath_changes", _frozen_mapping(self.rpath_changes))
        object.__setattr__(self, "rpath_additions", tuple(dict.fromkeys(self.rpath_additions)))
        object.__setattr__(self, "rpath_removals", tuple(dict.fromkeys(self.rpath_removals)))

    @property
    def touches_rpaths(self) -> bool:
        return bool(self.rpath_changes or self.rpath_additions or self.rpath_removals)

    @property
    def is_empty(self) -> bool:
        return not self.dependency_changes and self.id_change is None and not self.touches_rpaths

    def expected_dependencies(self, names: tuple[str, ...]) -> tuple[str, ...]:
        """Return ``names`` with every planned dependency change applied."""

        return tuple(self.dependency_changes.get(name, name) for name in names)


@dataclass(frozen=True, slots=True)
class SlotEdit:
    """Replacement value for one slot; ``None`` deletes an RPATH slot."""

    slot: LinkSlot
    value: str | None


@dataclass(frozen=True, slots=True)
class LinkEdits:
    """Plan resolved against one concrete table, ready for a back end."""

    dependencies: tuple[SlotEdit, ...] = ()
    install_name: str | None = None
    rpaths: tuple[SlotEdit, ...] = ()
    rpath_additions: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.dependencies or self.install_name is not None or self.rpaths or self.rpath_additions)


class ContainerImage(Protocol):
    """Format back end: parsed view of one binary plus its write primitive."""

    format: ContainerFormat
    supports_install_name: bool
    supports_rpath: bool

    @property
    def table(self) -> DynamicLinkTable: ...

    @property
    def machine(self) -> str: ...

    def apply(self, edits: LinkEdits) -> bytes: ...


__all__ = [
    "ContainerFormat",
    "ContainerImage",
    "DynamicLinkTable",
    "LibraryArtifact",
    "LinkEditPlan",
    "LinkEdits",
    "LinkSlot",
    "SlotEdit",
    "SlotKind",
]
