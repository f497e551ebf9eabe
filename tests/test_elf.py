# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

from __future__ import annotations

from pathlib import Path

import pytest
from helpers.binaries import (
    DT_NEEDED,
    DT_NULL,
    DT_RUNPATH,
    DT_STRSZ,
    DT_STRTAB,
    EM_386,
    build_elf,
    elf_dynamic_tags,
    elf_dynstr,
    elf_symbol_names,
    elf_verneed_files,
)

from z3turnkey.binary import LinkEditPlan, inspect_library, rewrite_library
from z3turnkey.binary.elf import ElfImage, build_string_table
from z3turnkey.errors import LinkEditError, MalformedBinaryError


def _rewrite(path: Path, plan: LinkEditPlan) -> bytes:
    rewrite_library(inspect_library(path), plan)
    return path.read_bytes()


def test_build_string_table_shares_suffixes() -> None:
    table, offsets = build_string_table([b"libz3.so", b"z3.so", b"libc.so.6", b""])

    assert table.startswith(b"\0")
    assert offsets[b"z3.so"] == offsets[b"libz3.so"] + 3
    assert offsets[b""] == 0
    for value, offset in offsets.items():
        assert table[offset : offset + len(value) + 1] == value + b"\0"
    assert len(table) == 1 + len(b"libz3.so\0") + len(b"libc.so.6\0")


def test_parses_32_bit_objects() -> None:
    image = ElfImage(Path("lib32.so"), build_elf(is64=False, machine=EM_386, needed=("libz3.so", "libm.so.6")))

    assert image.machine == "i386"
    assert image.table.dependency_names == ("libz3.so", "libm.so.6")


def test_runpath_components_become_separate_slots() -> None:
    image = ElfImage(Path("lib.so"), build_elf(runpath="/opt/z3/lib:/usr/lib"))

    assert image.table.rpath_values == ("/opt/z3/lib", "/usr/lib")
    first, second = image.table.rpaths
    assert second.offset == first.offset + len("/opt/z3/lib") + 1


def test_rpath_is_reported_when_runpath_is_absent() -> None:
    image = ElfImage(Path("lib.so"), build_elf(rpath="/legacy"))

    assert image.table.rpath_values == ("/legacy",)


def test_dynamic_section_without_terminator_is_malformed() -> None:
    data = bytearray(build_elf(spare_nulls=0))
    tags = elf_dynamic_tags(bytes(data))
    assert tags[-1] == DT_NULL
    # Overwrite the only DT_NULL with a harmless tag.
    terminator = bytes(data).rfind(b"\0" * 16)
    data[terminator : terminator + 8] = (0x7FFFFFF0).to_bytes(8, "little")

    with pytest.raises(MalformedBinaryError, match="DT_NULL"):
        ElfImage(Path("lib.so"), bytes(data))


def test_shorter_dependency_is_written_in_place(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so", "libc.so.6")))
    before = path.read_bytes()

    after = _rewrite(path, LinkEditPlan(dependency_changes={"libz3.so": "liba.so"}))

    assert inspect_library(path).dependencies == ("liba.so", "libc.so.6")
    assert len(after) == len(before)
    assert elf_dynstr(after).startswith(b"\0liba.so\0")


def test_longer_dependency_compacts_into_slack(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so",), slack=24))

    after = _rewrite(path, LinkEditPlan(dependency_changes={"libz3.so": "libz3-turnkey.so"}))

    assert inspect_library(path).dependencies == ("libz3-turnkey.so",)
    assert len(elf_dynstr(after)) == len(b"\0libz3.so\0") + 24


def test_longer_dependency_without_slack_fails(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so",)))
    original = path.read_bytes()

    with pytest.raises(LinkEditError, match="name too long for available slack"):
        rewrite_library(inspect_library(path), LinkEditPlan(dependency_changes={"libz3.so": "libz3-turnkey.so"}))

    assert path.read_bytes() == original


def test_shared_suffix_keeps_symbol_names(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so",), symbols=("z3.so", "Z3_mk_context"), slack=8))

    after = _rewrite(path, LinkEditPlan(dependency_changes={"libz3.so": "liba.so"}))

    assert inspect_library(path).dependencies == ("liba.so",)
    assert elf_symbol_names(after) == ["z3.so", "Z3_mk_context"]


def test_symbols_found_through_section_headers(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so",), symbols=("z3.so",), slack=8, sections=True))

    rewrite_library(inspect_library(path), LinkEditPlan(dependency_changes={"libz3.so": "liba.so"}))

    image = ElfImage(path, path.read_bytes())
    refs, complete = image._string_references()
    assert complete
    names = {image._string(ref.value, ref.origin) for ref in refs if ref.origin == "symbol"}
    assert names == {"", "z3.so"}


def test_version_needs_follow_renamed_dependency(write_binary) -> None:
    path = write_binary(
        "libz3java.so",
        build_elf(needed=("libz3.so", "libc.so.6"), verneed=(("libz3.so", ("Z3_4.8",)),), slack=32),
    )

    after = _rewrite(path, LinkEditPlan(dependency_changes={"libz3.so": "libz3-renamed.so"}))

    assert inspect_library(path).dependencies == ("libz3-renamed.so", "libc.so.6")
    assert elf_verneed_files(after) == ["libz3-renamed.so"]


def test_new_runpath_uses_spare_dynamic_slot(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so",), slack=16))

    after = _rewrite(path, LinkEditPlan(rpath_additions=("$ORIGIN",)))

    assert inspect_library(path).rpaths == ("$ORIGIN",)
    assert elf_dynamic_tags(after) == [DT_NEEDED, DT_STRTAB, DT_STRSZ, DT_RUNPATH, DT_NULL]


def test_new_runpath_without_spare_slot_fails(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so",), slack=16, spare_nulls=0))

    with pytest.raises(LinkEditError, match="spare DT_NULL"):
        rewrite_library(inspect_library(path), LinkEditPlan(rpath_additions=("$ORIGIN",)))


def test_runpath_entries_are_replaced_and_removed(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(runpath="/opt/z3/lib:/usr/lib:/tmp/build"))

    rewrite_library(
        inspect_library(path),
        LinkEditPlan(rpath_changes={"/opt/z3/lib": "$ORIGIN"}, rpath_removals=("/tmp/build",)),
    )

    assert inspect_library(path).rpaths == ("$ORIGIN", "/usr/lib")


def test_runpath_renamed_onto_existing_entry_collapses(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(runpath="/opt/z3/lib:$ORIGIN"))

    result = rewrite_library(inspect_library(path), LinkEditPlan(rpath_changes={"/opt/z3/lib": "$ORIGIN"}))

    assert result.rpaths == ("$ORIGIN",)
    assert inspect_library(path).rpaths == ("$ORIGIN",)
