# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

from __future__ import annotations

from pathlib import Path

import pytest
from helpers.binaries import build_elf, build_macho, build_pe

from z3turnkey.binary import LinkEditPlan, inspect_library, open_image, rewrite_library
from z3turnkey.binary.rewriter import INCONSISTENT_REASON, expected_rpaths, resolve_edits, verify_rewrite
from z3turnkey.errors import LinkEditError

LIBRARIES = {
    "elf": ("libz3java.so", build_elf(needed=("libz3.so", "libc.so.6")), "libz3.so", "liba.so"),
    "macho": ("libz3java.dylib", build_macho(), "libz3.dylib", "@rpath/libz3.dylib"),
    "pe": ("z3java.dll", build_pe(), "libz3.dll", "z3.dll"),
}


@pytest.mark.parametrize("kind", sorted(LIBRARIES))
def test_rewrite_round_trip(kind: str, write_binary) -> None:
    name, payload, old, new = LIBRARIES[kind]
    path = write_binary(name, payload)
    before = inspect_library(path)
    plan = LinkEditPlan(dependency_changes={old: new})

    result = rewrite_library(before, plan)

    assert result.dependencies == plan.expected_dependencies(before.dependencies)
    assert inspect_library(path).dependencies == result.dependencies


@pytest.mark.parametrize("kind", sorted(LIBRARIES))
def test_rewrite_is_idempotent(kind: str, write_binary) -> None:
    name, payload, old, new = LIBRARIES[kind]
    path = write_binary(name, payload)
    plan = LinkEditPlan(dependency_changes={old: new})

    rewrite_library(inspect_library(path), plan)
    once = path.read_bytes()
    rewrite_library(inspect_library(path), plan)

    assert path.read_bytes() == once
    assert resolve_edits(open_image(path, once), plan, path=path).is_empty


def test_libz3_is_renamed_and_other_dependencies_kept(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so", "libstdc++.so.6", "libc.so.6")))

    result = rewrite_library(inspect_library(path), LinkEditPlan(dependency_changes={"libz3.so": "liba.so"}))

    assert result.dependencies == ("liba.so", "libstdc++.so.6", "libc.so.6")


def test_destination_leaves_source_untouched(write_binary, tmp_path: Path) -> None:
    source = write_binary("in/libz3java.so", build_elf())
    original = source.read_bytes()
    destination = tmp_path / "out" / "libz3java.so"

    result = rewrite_library(inspect_library(source), LinkEditPlan(dependency_changes={"libz3.so": "liba.so"}), destination)

    assert result.path == destination
    assert source.read_bytes() == original
    assert inspect_library(destination).dependencies == ("liba.so",)


def test_empty_plan_copies_to_destination(write_binary, tmp_path: Path) -> None:
    source = write_binary("libz3java.so", build_elf())
    destination = tmp_path / "copy" / "libz3java.so"

    result = rewrite_library(inspect_library(source), LinkEditPlan(), destination)

    assert destination.read_bytes() == source.read_bytes()
    assert result.dependencies == ("libz3.so",)


def test_install_name_change_is_ignored_for_elf(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf())
    original = path.read_bytes()

    rewrite_library(inspect_library(path), LinkEditPlan(id_change="libz3java.so"))

    assert path.read_bytes() == original


def test_verify_rewrite_reports_inconsistent_table(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf())
    image = open_image(path, path.read_bytes())

    with pytest.raises(LinkEditError, match=INCONSISTENT_REASON):
        verify_rewrite(image, image, LinkEditPlan(dependency_changes={"libz3.so": "liba.so"}), path=path)


def test_expected_rpaths_apply_changes_then_additions() -> None:
    plan = LinkEditPlan(
        rpath_changes={"/opt": "$ORIGIN"},
        rpath_removals=("/tmp",),
        rpath_additions=("$ORIGIN", "/usr/lib"),
    )

    assert expected_rpaths(("/opt", "/tmp"), plan) == ("$ORIGIN", "/usr/lib")


def test_plan_is_frozen_and_deduplicated() -> None:
    plan = LinkEditPlan(dependency_changes={"a": "b"}, rpath_additions=("x", "x", "y"))

    assert plan.rpath_additions == ("x", "y")
    with pytest.raises(TypeError):
        plan.dependency_changes["c"] = "d"  # type: ignore[index]
    assert LinkEditPlan().is_empty


def test_expected_rpaths_collapse_duplicates_in_order() -> None:
    plan = LinkEditPlan(rpath_changes={"/a": "/b"})

    assert expected_rpaths(("/a", "/c", "/b"), plan) == ("/b", "/c")
