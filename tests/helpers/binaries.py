# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Builders for minimal ELF, Mach-O and PE images used across binary tests.

The images are not loadable; they only carry the structures the link-table
parsers read, laid out the way linkers lay them out.
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass, field

# -- ELF ---------------------------------------------------------------------------------

EM_X86_64 = 62
EM_386 = 3
PT_LOAD = 1
PT_DYNAMIC = 2
SHT_STRTAB = 3
SHT_DYNSYM = 11
DT_NULL = 0
DT_NEEDED = 1
DT_HASH = 4
DT_STRTAB = 5
DT_SYMTAB = 6
DT_STRSZ = 10
DT_SYMENT = 11
DT_SONAME = 14
DT_RPATH = 15
DT_RUNPATH = 29
DT_VERNEED = 0x6FFFFFFE
DT_VERNEEDNUM = 0x6FFFFFFF


def _align(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


class StringTable:
    """NUL-separated table that reuses any existing string or suffix."""

    def __init__(self) -> None:
        self.data = bytearray(b"\0")

    def add(self, value: str) -> int:
        encoded = value.encode() + b"\0"
        found = bytes(self.data).find(encoded)
        if found >= 0:
            return found
        offset = len(self.data)
        self.data += encoded
        return offset


@dataclass
class ElfSpec:
    """Inputs for :func:`build_elf`.

    ``verneed`` lists ``(file, (version, ...))`` pairs; the file string is
    shared with the matching ``DT_NEEDED`` entry as linkers do.
    """

    needed: Sequence[str] = ("libz3.so",)
    soname: str | None = None
    runpath: str | None = None
    rpath: str | None = None
    symbols: Sequence[str] = ()
    verneed: Sequence[tuple[str, Sequence[str]]] = ()
    slack: int = 0
    spare_nulls: int = 1
    sections: bool = False
    is64: bool = True
    machine: int = EM_X86_64
    strings_first: Sequence[str] = field(default_factory=tuple)


def build_elf(spec: ElfSpec | None = None, **overrides: object) -> bytes:
    """Return a little-endian ELF shared object described by ``spec``."""

    spec = spec or ElfSpec()
    for key, value in overrides.items():
        setattr(spec, key, value)
    is64 = spec.is64
    word = "Q" if is64 else "I"
    header_size = 64 if is64 else 52
    phentsize = 56 if is64 else 32
    shentsize = 64 if is64 else 40
    dyn_size = 16 if is64 else 8
    sym_size = 24 if is64 else 16

    strings = StringTable()
    for value in spec.strings_first:
        strings.add(value)
    needed = [strings.add(name) for name in spec.needed]
    soname = strings.add(spec.soname) if spec.soname is not None else None
    runpath = strings.add(spec.runpath) if spec.runpath is not None else None
    rpath = strings.add(spec.rpath) if spec.rpath is not None else None
    symbol_names = [strings.add(name) for name in spec.symbols]
    verneed = [(strings.add(file), [strings.add(v) for v in versions]) for file, versions in spec.verneed]
    strtab = bytes(strings.data) + b"\0" * spec.slack

    strtab_off = header_size + 2 * phentsize
    symtab_off = _align(strtab_off + len(strtab), 8)
    symbol_count = len(symbol_names) + 1 if (spec.symbols or spec.sections) else 0
    hash_off = _align(symtab_off + symbol_count * sym_size, 4)
    hash_words = 3 + symbol_count if symbol_count and not spec.sections else 0
    verneed_off = _align(hash_off + 4 * hash_words, 4)
    verneed_size = sum(16 + 16 * len(versions) for _, versions in verneed)
    dynamic_off = _align(verneed_off + verneed_size, 8)

    entries: list[tuple[int, int]] = [(DT_NEEDED, offset) for offset in needed]
    if soname is not None:
        entries.append((DT_SONAME, soname))
    if runpath is not None:
        entries.append((DT_RUNPATH, runpath))
    if rpath is not None:
        entries.append((DT_RPATH, rpath))
    entries += [(DT_STRTAB, strtab_off), (DT_STRSZ, len(strtab))]
    if symbol_count:
        entries += [(DT_SYMTAB, symtab_off), (DT_SYMENT, sym_size)]
    if hash_words:
        entries.append((DT_HASH, hash_off))
    if verneed:
        entries += [(DT_VERNEED, verneed_off), (DT_VERNEEDNUM, len(verneed))]
    entries += [(DT_NULL, 0)] * (1 + spec.spare_nulls)
    dynamic_size = len(entries) * dyn_size

    section_off = _align(dynamic_off + dynamic_size, 8) if spec.sections else 0
    section_count = 3 if spec.sections else 0
    total = (section_off + section_count * shentsize) if spec.sections else dynamic_off + dynamic_size

    image = bytearray(total)
    ident = b"\x7fELF" + bytes([2 if is64 else 1, 1, 1]) + b"\0" * 9
    header_fmt = "<16sHHIQQQIHHHHHH" if is64 else "<16sHHIIIIIHHHHHH"
    struct.pack_into(
        header_fmt,
        image,
        0,
        ident,
        3,
        spec.machine,
        1,
        0,
        header_size,
        section_off,
        0,
        header_size,
        phentsize,
        2,
        shentsize,
        section_count,
        0,
    )
    if is64:
        struct.pack_into("<IIQQQQQQ", image, header_size, PT_LOAD, 5, 0, 0, 0, total, total, 0x1000)
        struct.pack_into(
            "<IIQQQQQQ", image, header_size + phentsize, PT_DYNAMIC, 6, dynamic_off, dynamic_off, dynamic_off,
            dynamic_size, dynamic_size, 8,
        )
    else:
        struct.pack_into("<IIIIIIII", image, header_size, PT_LOAD, 0, 0, 0, total, total, 5, 0x1000)
        struct.pack_into(
            "<IIIIIIII", image, header_size + phentsize, PT_DYNAMIC, dynamic_off, dynamic_off, dynamic_off,
            dynamic_size, dynamic_size, 6, 4,
        )
    image[strtab_off : strtab_off + len(strtab)] = strtab

    for index, name in enumerate(symbol_names, start=1):
        offset = symtab_off + index * sym_size
        if is64:
            struct.pack_into("<IBBHQQ", image, offset, name, 0x12, 0, 1, 0x100 + index, 0)
        else:
            struct.pack_into("<IIIBBH", image, offset, name, 0x100 + index, 0, 0x12, 0, 1)
    if hash_words:
        struct.pack_into("<III", image, hash_off, 1, symbol_count, 0)

    cursor = verneed_off
    for position, (file, versions) in enumerate(verneed):
        record_size = 16 + 16 * len(versions)
        next_offset = record_size if position + 1 < len(verneed) else 0
        struct.pack_into("<HHIII", image, cursor, 1, len(versions), file, 16, next_offset)
        for aux_index, version in enumerate(versions):
            aux_next = 16 if aux_index + 1 < len(versions) else 0
            struct.pack_into("<IHHII", image, cursor + 16 + 16 * aux_index, 0x1234, 0, 2 + aux_index, version, aux_next)
        cursor += record_size

    for index, (tag, value) in enumerate(entries):
        struct.pack_into("<q" + word if is64 else "<i" + word, image, dynamic_off + index * dyn_size, tag, value)

    if spec.sections:
        section_fmt = "<IIQQQQIIQQ" if is64 else "<IIIIIIIIII"
        struct.pack_into(
            section_fmt, image, section_off + shentsize, 0, SHT_STRTAB, 2, strtab_off, strtab_off, len(strtab),
            0, 0, 1, 0,
        )
        struct.pack_into(
            section_fmt, image, section_off + 2 * shentsize, 0, SHT_DYNSYM, 2, symtab_off, symtab_off,
            symbol_count * sym_size, 1, 1, 8, sym_size,
        )
    return bytes(image)


def _elf_dynamic(data: bytes) -> tuple[list[tuple[int, int]], bool]:
    is64 = data[4] == 2
    phoff = 64 if is64 else 52
    phentsize = 56 if is64 else 32
    dynamic_off = struct.unpack_from("<Q" if is64 else "<I", data, phoff + phentsize + (8 if is64 else 4))[0]
    dyn_size = 16 if is64 else 8
    entries: list[tuple[int, int]] = []
    index = 0
    while True:
        tag, value = struct.unpack_from("<qQ" if is64 else "<iI", data, dynamic_off + index * dyn_size)
        entries.append((tag, value))
        if tag == DT_NULL:
            return entries, is64
        index += 1


def _elf_string(data: bytes, offset: int) -> str:
    entries, _ = _elf_dynamic(data)
    strtab = dict(entries)[DT_STRTAB]
    end = data.index(b"\0", strtab + offset)
    return data[strtab + offset : end].decode()


def elf_dynstr(data: bytes) -> bytes:
    """Return the raw dynamic string table of an image made by :func:`build_elf`."""

    entries, _ = _elf_dynamic(data)
    values = dict(entries)
    return data[values[DT_STRTAB] : values[DT_STRTAB] + values[DT_STRSZ]]


def elf_dynamic_tags(data: bytes) -> list[int]:
    """Return the dynamic tags up to and including the first ``DT_NULL``."""

    return [tag for tag, _ in _elf_dynamic(data)[0]]


def elf_symbol_names(data: bytes) -> list[str]:
    """Return the names of the dynamic symbols, skipping the null symbol."""

    entries, is64 = _elf_dynamic(data)
    values = dict(entries)
    count = struct.unpack_from("<I", data, values[DT_HASH] + 4)[0]
    size = 24 if is64 else 16
    return [
        _elf_string(data, struct.unpack_from("<I", data, values[DT_SYMTAB] + index * size)[0])
        for index in range(1, count)
    ]


def elf_verneed_files(data: bytes) -> list[str]:
    """Return the ``vn_file`` names of the version-needed records."""

    entries, _ = _elf_dynamic(data)
    values = dict(entries)
    cursor = values[DT_VERNEED]
    files: list[str] = []
    for _ in range(values[DT_VERNEEDNUM]):
        _, _, vn_file, _, vn_next = struct.unpack_from("<HHIII", data, cursor)
        files.append(_elf_string(data, vn_file))
        cursor += vn_next
    return files


# -- Mach-O ------------------------------------------------------------------------------

CPU_TYPE_X86_64 = 0x01000007
CPU_TYPE_ARM64 = 0x0100000C
LC_SEGMENT_64 = 0x19
LC_LOAD_DYLIB = 0xC
LC_ID_DYLIB = 0xD
LC_RPATH = 0x8000001C
LC_CODE_SIGNATURE = 0x1D


def _padded_command(cmd: int, fixed: bytes, name: str) -> bytes:
    payload = name.encode() + b"\0"
    size = _align(8 + len(fixed) + len(payload), 8)
    return (struct.pack("<II", cmd, size) + fixed + payload).ljust(size, b"\0")


def _dylib_command(cmd: int, name: str) -> bytes:
    return _padded_command(cmd, struct.pack("<IIII", 24, 2, 0x10000, 0x10000), name)


def _rpath_command(path: str) -> bytes:
    return _padded_command(LC_RPATH, struct.pack("<I", 12), path)


def build_macho(
    *,
    install_name: str | None = "/usr/local/lib/libz3java.dylib",
    dependencies: Sequence[str] = ("libz3.dylib", "/usr/lib/libSystem.B.dylib"),
    rpaths: Sequence[str] = (),
    padding: int = 256,
    cputype: int = CPU_TYPE_X86_64,
    code_signature: bool = False,
) -> bytes:
    """Return a thin little-endian 64-bit Mach-O dylib.

    ``padding`` is the gap between the load commands and the first section,
    the room available for growing names.
    """

    commands: list[bytes] = []
    if install_name is not None:
        commands.append(_dylib_command(LC_ID_DYLIB, install_name))
    commands += [_dylib_command(LC_LOAD_DYLIB, name) for name in dependencies]
    commands += [_rpath_command(path) for path in rpaths]
    if code_signature:
        commands.append(struct.pack("<IIII", LC_CODE_SIGNATURE, 16, 0, 0))
    segment_size = 72 + 80
    sizeofcmds = segment_size + sum(len(command) for command in commands)
    text_offset = 32 + sizeofcmds + padding
    text = b"\xc3" * 16
    total = text_offset + len(text)

    section = struct.pack(
        "<16s16sQQIIIIIIII", b"__text", b"__TEXT", 0x1000 + text_offset, len(text), text_offset, 4, 0, 0,
        0x80000400, 0, 0, 0,
    )
    segment = struct.pack(
        "<II16sQQQQiiII", LC_SEGMENT_64, segment_size, b"__TEXT", 0x1000, total, 0, total, 5, 5, 1, 0,
    ) + section
    header = struct.pack("<IiiIIIII", 0xFEEDFACF, cputype, 3, 6, len(commands) + 1, sizeofcmds, 0x100085, 0)
    image = bytearray(header + segment + b"".join(commands))
    image += b"\0" * (text_offset - len(image))
    image += text
    return bytes(image)


def build_fat_macho(slices: Sequence[tuple[int, bytes]], *, alignment: int = 4096) -> bytes:
    """Wrap ``(cputype, thin image)`` pairs in a 32-bit universal header."""

    data = bytearray(struct.pack(">II", 0xCAFEBABE, len(slices)))
    data += b"\0" * (20 * len(slices))
    for index, (cputype, image) in enumerate(slices):
        data += b"\0" * (_align(len(data), alignment) - len(data))
        struct.pack_into(">iiIII", data, 8 + 20 * index, cputype, 3, len(data), len(image), 12)
        data += image
    return bytes(data)


def fat_slice_bytes(data: bytes, index: int) -> bytes:
    """Return the raw bytes of slice ``index`` in a universal binary."""

    _, _, offset, size, _ = struct.unpack_from(">iiIII", data, 8 + 20 * index)
    return data[offset : offset + size]


# -- PE ----------------------------------------------------------------------------------

IMAGE_FILE_MACHINE_AMD64 = 0x8664
_E_LFANEW = 0x80
_SECTION_RVA = 0x1000
_SECTION_RAW = 0x200


def build_pe(
    imports: Sequence[str] = ("libz3.dll", "KERNEL32.dll"),
    *,
    delay_imports: Sequence[str] = (),
    checksum: int = 0,
    bound_imports: bool = False,
) -> bytes:
    """Return a PE32+ DLL with one ``.idata`` section holding the import tables."""

    descriptors_size = 20 * (len(imports) + 1)
    delay_off = descriptors_size
    delay_size = 32 * (len(delay_imports) + 1) if delay_imports else 0
    names_off = delay_off + delay_size
    names = bytearray()
    name_rvas: list[int] = []
    for name in (*imports, *delay_imports):
        name_rvas.append(_SECTION_RVA + names_off + len(names))
        names += name.encode() + b"\0"
    section = bytearray(names_off) + names
    section += b"\0" * (_align(len(section), 0x200) - len(section))
    for index, rva in enumerate(name_rvas[: len(imports)]):
        struct.pack_into("<IIIII", section, 20 * index, _SECTION_RVA + 0x800, 0, 0, rva, _SECTION_RVA + 0x900)
    for index, rva in enumerate(name_rvas[len(imports) :]):
        struct.pack_into("<IIIIIIII", section, delay_off + 32 * index, 1, rva, 0, 0, 0, 0, 0, 0)

    optional_size = 112 + 16 * 8
    headers = bytearray(_SECTION_RAW)
    headers[0:2] = b"MZ"
    struct.pack_into("<I", headers, 0x3C, _E_LFANEW)
    headers[_E_LFANEW : _E_LFANEW + 4] = b"PE\0\0"
    struct.pack_into("<HHIIIHH", headers, _E_LFANEW + 4, IMAGE_FILE_MACHINE_AMD64, 1, 0, 0, 0, optional_size, 0x2022)
    optional = _E_LFANEW + 24
    struct.pack_into("<H", headers, optional, 0x20B)
    struct.pack_into("<Q", headers, optional + 24, 0x180000000)
    struct.pack_into("<I", headers, optional + 64, checksum)
    struct.pack_into("<I", headers, optional + 108, 16)
    directories = optional + 112
    struct.pack_into("<II", headers, directories + 8 * 1, _SECTION_RVA, descriptors_size)
    if delay_imports:
        struct.pack_into("<II", headers, directories + 8 * 13, _SECTION_RVA + delay_off, delay_size)
    if bound_imports:
        struct.pack_into("<II", headers, directories + 8 * 11, 0x1F0, 0x10)
    section_header = optional + optional_size
    struct.pack_into(
        "<8sIIIIIIHHI", headers, section_header, b".idata", len(section), _SECTION_RVA, len(section), _SECTION_RAW,
        0, 0, 0, 0, 0xC0000040,
    )
    return bytes(headers + section)


def pe_stored_checksum(data: bytes) -> int:
    return struct.unpack_from("<I", data, _E_LFANEW + 24 + 64)[0]
