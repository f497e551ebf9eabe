# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

from __future__ import annotations

from pathlib import Path

import pytest
from helpers.binaries import CPU_TYPE_ARM64, CPU_TYPE_X86_64, build_elf, build_fat_macho, build_macho, build_pe

from z3turnkey.binary import ContainerFormat, inspect_library, sniff_format
from z3turnkey.errors import MalformedBinaryError, UnsupportedFormatError


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        (build_elf(), ContainerFormat.ELF),
        (build_macho(), ContainerFormat.MACHO),
        (build_fat_macho([(CPU_TYPE_X86_64, build_macho())]), ContainerFormat.MACHO),
        (build_pe(), ContainerFormat.PE),
    ],
)
def test_sniff_format_recognises_containers(payload: bytes, expected: ContainerFormat) -> None:
    assert sniff_format(payload) is expected


def test_sniff_format_rejects_unknown_magic() -> None:
    with pytest.raises(UnsupportedFormatError, match="unrecognised binary container"):
        sniff_format(b"#!/bin/sh\n")


def test_java_class_file_is_not_a_universal_binary() -> None:
    # Same magic as a fat header, but the "arch count" is the class file version.
    class_file = b"\xca\xfe\xba\xbe\x00\x00\x00\x34"
    with pytest.raises(UnsupportedFormatError):
        sniff_format(class_file)


def test_inspect_library_reports_elf_table(write_binary) -> None:
    path = write_binary("libz3java.so", build_elf(needed=("libz3.so", "libc.so.6"), runpath="/opt/z3/lib"))

    artifact = inspect_library(path)

    assert artifact.format is ContainerFormat.ELF
    assert artifact.machine == "x86_64"
    assert artifact.dependencies == ("libz3.so", "libc.so.6")
    assert artifact.rpaths == ("/opt/z3/lib",)
    assert artifact.install_name is None


def test_inspect_library_reports_macho_table(write_binary) -> None:
    path = write_binary(
        "libz3java.dylib",
        build_macho(install_name="libz3java.dylib", dependencies=("libz3.dylib",), rpaths=("/opt/lib",)),
    )

    artifact = inspect_library(path)

    assert artifact.format is ContainerFormat.MACHO
    assert artifact.install_name == "libz3java.dylib"
    assert artifact.dependencies == ("libz3.dylib",)
    assert artifact.rpaths == ("/opt/lib",)


def test_inspect_library_reports_pe_imports(write_binary) -> None:
    path = write_binary("z3java.dll", build_pe(imports=("libz3.dll", "KERNEL32.dll"), delay_imports=("USER32.dll",)))

    artifact = inspect_library(path)

    assert artifact.format is ContainerFormat.PE
    assert artifact.machine == "x86_64"
    assert artifact.dependencies == ("libz3.dll", "KERNEL32.dll", "USER32.dll")
    assert artifact.rpaths == ()


def test_truncated_elf_is_malformed(write_binary) -> None:
    path = write_binary("libbroken.so", build_elf()[:100])

    with pytest.raises(MalformedBinaryError):
        inspect_library(path)


def test_missing_file_is_reported_as_malformed(tmp_path: Path) -> None:
    with pytest.raises(MalformedBinaryError, match="cannot read file"):
        inspect_library(tmp_path / "absent.so")


def test_fat_binary_requires_slice_selection(write_binary) -> None:
    fat = build_fat_macho(
        [
            (CPU_TYPE_X86_64, build_macho(cputype=CPU_TYPE_X86_64)),
            (CPU_TYPE_ARM64, build_macho(cputype=CPU_TYPE_ARM64, dependencies=("libarm.dylib",))),
        ]
    )
    path = write_binary("libz3java.dylib", fat)

    with pytest.raises(UnsupportedFormatError, match="select one"):
        inspect_library(path)

    arm = inspect_library(path, fat_slice="arm64")
    assert arm.machine == "arm64"
    assert arm.dependencies == ("libarm.dylib",)

    with pytest.raises(UnsupportedFormatError, match="no ppc slice"):
        inspect_library(path, fat_slice="ppc")


def test_bare_dos_executable_is_not_a_pe_image(write_binary) -> None:
    header = bytearray(b"MZ" + b"\0" * 0x7E)
    header[0x3C:0x40] = (0x40).to_bytes(4, "little")
    path = write_binary("legacy.exe", bytes(header))

    with pytest.raises(UnsupportedFormatError, match="unrecognised binary container"):
        inspect_library(path)


def test_short_mz_header_is_unsupported() -> None:
    with pytest.raises(UnsupportedFormatError):
        sniff_format(b"MZ\x90\x00")
