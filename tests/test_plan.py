# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

from __future__ import annotations

from pathlib import Path

from z3turnkey.binary import ContainerFormat, DynamicLinkTable, LibraryArtifact, LinkSlot, SlotKind
from z3turnkey.config import DistributionDescriptor
from z3turnkey.packaging import build_link_edit_plan, sibling_reference

OSX = DistributionDescriptor(name="x64-osx-10.14.6", os="osx", arch="amd64", extension="dylib", post_link_patch=True)
LINUX = DistributionDescriptor(name="x64-ubuntu-16.04", os="linux", arch="amd64", extension="so")
WINDOWS = DistributionDescriptor(name="x64-win", os="windows", arch="amd64", extension="dll", has_lib_prefix=False)


def _artifact(
    name: str,
    fmt: ContainerFormat,
    dependencies: tuple[str, ...],
    install_name: str | None = None,
) -> LibraryArtifact:
    def _slot(kind: SlotKind, value: str) -> LinkSlot:
        return LinkSlot(kind=kind, value=value, offset=0, capacity=len(value))

    table = DynamicLinkTable(
        format=fmt,
        dependencies=tuple(_slot(SlotKind.DEPENDENCY, value) for value in dependencies),
        install_name=_slot(SlotKind.ID, install_name) if install_name is not None else None,
    )
    return LibraryArtifact(path=Path("/staging") / name, format=fmt, table=table, machine="x86_64")


def test_macho_siblings_are_loaded_through_rpath() -> None:
    z3java = _artifact(
        "libz3java.dylib",
        ContainerFormat.MACHO,
        ("libz3.dylib", "/usr/lib/libSystem.B.dylib"),
        install_name="/usr/local/lib/libz3java.dylib",
    )
    z3 = _artifact("libz3.dylib", ContainerFormat.MACHO, ("/usr/lib/libSystem.B.dylib",), install_name="libz3.dylib")

    plans = build_link_edit_plan(OSX, [z3, z3java])

    assert dict(plans["libz3java.dylib"].dependency_changes) == {"libz3.dylib": "@rpath/libz3.dylib"}
    assert plans["libz3java.dylib"].id_change == "@rpath/libz3java.dylib"
    assert plans["libz3java.dylib"].rpath_additions == ("@loader_path",)
    assert dict(plans["libz3.dylib"].dependency_changes) == {}
    assert plans["libz3.dylib"].id_change == "@rpath/libz3.dylib"


def test_dependencies_resolve_through_install_names() -> None:
    z3java = _artifact("libz3java.dylib", ContainerFormat.MACHO, ("/opt/z3/lib/libz3.4.8.dylib",))
    z3 = _artifact("libz3.dylib", ContainerFormat.MACHO, (), install_name="/opt/z3/lib/libz3.4.8.dylib")

    plans = build_link_edit_plan(OSX, [z3java, z3])

    assert dict(plans["libz3java.dylib"].dependency_changes) == {
        "/opt/z3/lib/libz3.4.8.dylib": "@rpath/libz3.dylib",
    }
    assert plans["libz3java.dylib"].id_change is None


def test_elf_libraries_gain_origin_runpath() -> None:
    z3java = _artifact("libz3java.so", ContainerFormat.ELF, ("libz3.so", "libc.so.6"), install_name="libz3java.so")
    z3 = _artifact("libz3.so", ContainerFormat.ELF, ("libc.so.6",))

    plans = build_link_edit_plan(LINUX, [z3java, z3])

    assert dict(plans["libz3java.so"].dependency_changes) == {}
    assert plans["libz3java.so"].rpath_additions == ("$ORIGIN",)
    assert plans["libz3java.so"].id_change is None


def test_pe_imports_follow_renamed_siblings() -> None:
    z3java = _artifact("z3java.dll", ContainerFormat.PE, ("libz3.dll", "KERNEL32.dll"))
    z3 = _artifact("z3.dll", ContainerFormat.PE, ("KERNEL32.dll",))

    plans = build_link_edit_plan(WINDOWS, [z3java, z3], {"libz3.dll": "z3.dll", "libz3java.dll": "z3java.dll"})

    assert dict(plans["z3java.dll"].dependency_changes) == {"libz3.dll": "z3.dll"}
    assert not plans["z3java.dll"].touches_rpaths
    assert plans["z3.dll"].is_empty


def test_sibling_reference_per_format() -> None:
    assert sibling_reference("libz3.dylib", ContainerFormat.MACHO) == "@rpath/libz3.dylib"
    assert sibling_reference("libz3.so", ContainerFormat.ELF) == "libz3.so"
    assert sibling_reference("z3.dll", ContainerFormat.PE) == "z3.dll"


def test_already_redirected_dependencies_produce_no_changes() -> None:
    z3java = _artifact(
        "libz3java.dylib",
        ContainerFormat.MACHO,
        ("@rpath/libz3.dylib",),
        install_name="@rpath/libz3java.dylib",
    )
    z3 = _artifact("libz3.dylib", ContainerFormat.MACHO, (), install_name="@rpath/libz3.dylib")

    plans = build_link_edit_plan(OSX, [z3java, z3])

    assert dict(plans["libz3java.dylib"].dependency_changes) == {}
    assert plans["libz3java.dylib"].id_change == "@rpath/libz3java.dylib"
