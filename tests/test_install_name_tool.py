# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest
from helpers.binaries import build_elf, build_macho

from z3turnkey.binary import LinkEditPlan, inspect_library, rewrite_library
from z3turnkey.binary import install_name_tool as tool_module
from z3turnkey.binary.install_name_tool import (
    INSTALL_NAME_TOOL_CANDIDATES,
    build_command,
    find_install_name_tool,
    rewrite_with_install_name_tool,
)
from z3turnkey.errors import LinkEditError, ToolNotFoundError


@pytest.fixture
def fake_tool(tmp_path: Path) -> Path:
    tool = tmp_path / "bin" / "install_name_tool"
    tool.parent.mkdir()
    tool.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    tool.chmod(0o755)
    return tool


def test_candidates_are_searched_in_order(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    def _which(name: str) -> str | None:
        seen.append(name)
        return "/usr/bin/llvm-install-name-tool" if name == "llvm-install-name-tool" else None

    monkeypatch.setattr(tool_module.shutil, "which", _which)

    assert find_install_name_tool() == "/usr/bin/llvm-install-name-tool"
    assert tuple(seen) == INSTALL_NAME_TOOL_CANDIDATES


def test_missing_tool_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tool_module.shutil, "which", lambda name: None)

    with pytest.raises(ToolNotFoundError, match="configure an explicit tool location"):
        find_install_name_tool()


def test_explicit_tool_path_wins(fake_tool: Path) -> None:
    assert find_install_name_tool(str(fake_tool)) == str(fake_tool)


def test_build_command_translates_plan() -> None:
    plan = LinkEditPlan(
        dependency_changes={"libz3.dylib": "@rpath/libz3.dylib"},
        id_change="@rpath/libz3java.dylib",
        rpath_changes={"/opt/lib": "@loader_path/../lib"},
        rpath_additions=("@loader_path",),
        rpath_removals=("/tmp/build",),
    )

    command = build_command("int", plan, Path("lib.dylib"), current_rpaths=("/opt/lib", "/tmp/build"))

    assert command == [
        "int",
        "-id",
        "@rpath/libz3java.dylib",
        "-change",
        "libz3.dylib",
        "@rpath/libz3.dylib",
        "-rpath",
        "/opt/lib",
        "@loader_path/../lib",
        "-delete_rpath",
        "/tmp/build",
        "-add_rpath",
        "@loader_path",
        "lib.dylib",
    ]


def test_rewrite_runs_tool_and_verifies(
    monkeypatch: pytest.MonkeyPatch, fake_tool: Path, write_binary
) -> None:
    path = write_binary("libz3java.dylib", build_macho())
    plan = LinkEditPlan(dependency_changes={"libz3.dylib": "@rpath/libz3.dylib"}, rpath_additions=("@loader_path",))
    commands: list[list[str]] = []

    def _run(args, *, options):
        commands.append(list(args))
        target = Path(args[-1])
        rewrite_library(inspect_library(target), plan)
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="warning: changes invalidate signature\n")

    monkeypatch.setattr(tool_module, "run_command", _run)

    result = rewrite_with_install_name_tool(inspect_library(path), plan, tool=str(fake_tool))

    assert commands and commands[0][0] == str(fake_tool)
    assert result.dependencies[0] == "@rpath/libz3.dylib"
    assert result.rpaths == ("@loader_path",)


def test_tool_failure_leaves_library_untouched(
    monkeypatch: pytest.MonkeyPatch, fake_tool: Path, write_binary
) -> None:
    path = write_binary("libz3java.dylib", build_macho())
    original = path.read_bytes()
    monkeypatch.setattr(
        tool_module,
        "run_command",
        lambda args, *, options: subprocess.CompletedProcess(args, 1, stdout="", stderr="larger updated load commands"),
    )

    with pytest.raises(LinkEditError, match="exited with status 1"):
        rewrite_with_install_name_tool(
            inspect_library(path),
            LinkEditPlan(dependency_changes={"libz3.dylib": "@rpath/libz3.dylib"}),
            tool=str(fake_tool),
        )
    assert path.read_bytes() == original


def test_tool_output_that_misses_an_edit_is_rejected(
    monkeypatch: pytest.MonkeyPatch, fake_tool: Path, write_binary
) -> None:
    path = write_binary("libz3java.dylib", build_macho())
    monkeypatch.setattr(
        tool_module,
        "run_command",
        lambda args, *, options: subprocess.CompletedProcess(args, 0, stdout="", stderr=""),
    )

    with pytest.raises(LinkEditError, match="offset table inconsistent after edit"):
        rewrite_with_install_name_tool(
            inspect_library(path),
            LinkEditPlan(dependency_changes={"libz3.dylib": "@rpath/libz3.dylib"}),
            tool=str(fake_tool),
        )


def test_non_macho_input_is_rejected(fake_tool: Path, write_binary) -> None:
    path = write_binary("libz3java.so", build_elf())

    with pytest.raises(LinkEditError, match="only edits Mach-O"):
        rewrite_with_install_name_tool(inspect_library(path), LinkEditPlan(), tool=str(fake_tool))
