# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Mach-O back end: load-command parsing and re-layout.

Dylib names and RPATH entries live inside load commands. Edits rebuild the
command list and write it back into the space between the Mach-O header and
the first section's file data, so a longer name only fails when the header
padding is exhausted.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ..errors import LinkEditError, UnsupportedFormatError
from ._reader import BinaryReader, align, encode_name
from .model import ContainerFormat, DynamicLinkTable, LinkEdits, LinkSlot, SlotKind

LOGGER = logging.getLogger(__name__)

MH_MAGIC: Final[bytes] = b"\xfe\xed\xfa\xce"
MH_MAGIC_64: Final[bytes] = b"\xfe\xed\xfa\xcf"
MH_CIGAM: Final[bytes] = b"\xce\xfa\xed\xfe"
MH_CIGAM_64: Final[bytes] = b"\xcf\xfa\xed\xfe"
FAT_MAGIC: Final[bytes] = b"\xca\xfe\xba\xbe"
FAT_MAGIC_64: Final[bytes] = b"\xca\xfe\xba\xbf"
# Java class files share FAT_MAGIC; their version field is always above this.
MAX_FAT_ARCHES: Final[int] = 30

LC_SEGMENT: Final[int] = 0x1
LC_LOAD_DYLIB: Final[int] = 0xC
LC_ID_DYLIB: Final[int] = 0xD
LC_SEGMENT_64: Final[int] = 0x19
LC_CODE_SIGNATURE: Final[int] = 0x1D
LC_LAZY_LOAD_DYLIB: Final[int] = 0x20
LC_LOAD_WEAK_DYLIB: Final[int] = 0x80000018
LC_RPATH: Final[int] = 0x8000001C
LC_REEXPORT_DYLIB: Final[int] = 0x8000001F
LC_LOAD_UPWARD_DYLIB: Final[int] = 0x80000023

DEPENDENCY_COMMANDS: Final[frozenset[int]] = frozenset(
    {LC_LOAD_DYLIB, LC_LOAD_WEAK_DYLIB, LC_REEXPORT_DYLIB, LC_LAZY_LOAD_DYLIB, LC_LOAD_UPWARD_DYLIB}
)
_ZEROFILL_TYPES: Final[frozenset[int]] = frozenset({0x1, 0xC, 0x12})
_SECTION_TYPE_MASK: Final[int] = 0xFF

_CPU_TYPES: Final[dict[int, str]] = {
    7: "i386",
    0x01000007: "x86_64",
    12: "arm",
    0x0100000C: "arm64",
    18: "ppc",
    0x01000012: "ppc64",
}


def cpu_name(cputype: int) -> str:
    return _CPU_TYPES.get(cputype, f"cpu-{cputype:#x}")


def is_fat_header(header: bytes) -> bool:
    """Return whether ``header`` starts a universal binary rather than a Java class."""

    if header[:4] not in (FAT_MAGIC, FAT_MAGIC_64) or len(header) < 8:
        return False
    (count,) = struct.unpack_from(">I", header, 4)
    return 0 < count <= MAX_FAT_ARCHES


@dataclass(frozen=True, slots=True)
class FatSlice:
    """One architecture inside a universal binary."""

    arch: str
    offset: int
    size: int


@dataclass(frozen=True, slots=True)
class _Command:
    cmd: int
    offset: int
    size: int


def read_fat_slices(path: Path, data: bytes) -> tuple[FatSlice, ...]:
    """Return the architecture slices listed in a universal header."""

    reader = BinaryReader(path, data, ">")
    magic = bytes(data[:4])
    (count,) = reader.unpack("I", 4, "fat header")
    slices: list[FatSlice] = []
    for index in range(count):
        if magic == FAT_MAGIC_64:
            cputype, _, offset, size, _, _ = reader.unpack("iiQQII", 8 + index * 32, "fat_arch_64")
        else:
            cputype, _, offset, size, _ = reader.unpack("iiIII", 8 + index * 20, "fat_arch")
        if offset + size > len(data):
            raise reader.fail(f"fat slice {index} extends past end of file")
        slices.append(FatSlice(arch=cpu_name(cputype), offset=offset, size=size))
    return tuple(slices)


def select_fat_slice(path: Path, slices: tuple[FatSlice, ...], wanted: str | None) -> FatSlice:
    """Pick the slice to operate on.

    Args:
        path: Library path used in error messages.
        slices: Slices from :func:`read_fat_slices`.
        wanted: Architecture name requested by the caller, if any.

    Returns:
        FatSlice: The only slice, or the one named by ``wanted``.

    Raises:
        UnsupportedFormatError: If the choice is ambiguous or ``wanted`` is absent.
    """

    arches = ", ".join(item.arch for item in slices)
    if wanted is not None:
        for item in slices:
            if item.arch == wanted:
                return item
        raise UnsupportedFormatError(f"{path}: universal binary has no {wanted} slice (found {arches})")
    if len(slices) == 1:
        return slices[0]
    raise UnsupportedFormatError(f"{path}: universal binary with slices {arches}; select one with fat_slice")


class MachOImage:
    """Parsed Mach-O dylib, either thin or one slice of a universal binary."""

    format = ContainerFormat.MACHO
    supports_install_name = True
    supports_rpath = True

    def __init__(self, path: Path, data: bytes, *, fat_slice: str | None = None) -> None:
        self.path = path
        self.data = data
        self._base = 0
        self._size = len(data)
        self.slice_arch: str | None = None
        if is_fat_header(data[:8]):
            chosen = select_fat_slice(path, read_fat_slices(path, data), fat_slice)
            self._base, self._size, self.slice_arch = chosen.offset, chosen.size, chosen.arch
        elif fat_slice is not None:
            LOGGER.debug("%s: thin Mach-O; ignoring fat slice selection %s", path, fat_slice)
        self._image = bytes(data[self._base : self._base + self._size])
        magic = self._image[:4]
        if magic in (MH_MAGIC, MH_MAGIC_64):
            endian = ">"
        elif magic in (MH_CIGAM, MH_CIGAM_64):
            endian = "<"
        else:
            raise BinaryReader(path, self._image).fail("missing Mach-O magic")
        self._is64 = magic in (MH_MAGIC_64, MH_CIGAM_64)
        self._reader = BinaryReader(path, self._image, endian)
        self._header_size = 32 if self._is64 else 28
        _, cputype, _, _, ncmds, sizeofcmds, _ = self._reader.unpack("IiiIIII", 0, "Mach-O header")
        self._machine = cpu_name(cputype)
        self._sizeofcmds = sizeofcmds
        self._commands = self._read_commands(ncmds, sizeofcmds)
        self._limit = self._load_command_limit()
        self._table = self._build_table()

    @property
    def table(self) -> DynamicLinkTable:
        return self._table

    @property
    def machine(self) -> str:
        return self._machine

    @property
    def has_code_signature(self) -> bool:
        return any(command.cmd == LC_CODE_SIGNATURE for command in self._commands)

    @property
    def header_slack(self) -> int:
        """Bytes available for growing the load commands."""

        return self._limit - self._header_size - self._sizeofcmds

    def _read_commands(self, ncmds: int, sizeofcmds: int) -> tuple[_Command, ...]:
        end = self._header_size + sizeofcmds
        if end > len(self._image):
            raise self._reader.fail("load commands extend past end of image")
        commands: list[_Command] = []
        cursor = self._header_size
        for _ in range(ncmds):
            cmd, cmdsize = self._reader.unpack("II", cursor, "load command")
            if cmdsize < 8 or cursor + cmdsize > end:
                raise self._reader.fail(f"load command {cmd:#x} at {cursor:#x} has bad size {cmdsize}")
            commands.append(_Command(cmd=cmd, offset=cursor, size=cmdsize))
            cursor += cmdsize
        return tuple(commands)

    def _load_command_limit(self) -> int:
        """Return the first file offset occupied by section or segment data."""

        offsets: list[int] = []
        for command in self._commands:
            if command.cmd == LC_SEGMENT_64:
                offsets.extend(self._section_offsets(command, 72, 80, "QQQQ", 48))
            elif command.cmd == LC_SEGMENT:
                offsets.extend(self._section_offsets(command, 56, 68, "IIII", 40))
        if not offsets:
            return self._header_size + self._sizeofcmds
        return min(offsets)

    def _section_offsets(self, command: _Command, header: int, entry: int, fields: str, offset_at: int) -> list[int]:
        _, _, fileoff, filesize = self._reader.unpack(fields, command.offset + 24, "segment")
        nsects = self._reader.word("I", command.offset + header - 8, "segment section count")
        offsets: list[int] = []
        for index in range(nsects):
            start = command.offset + header + index * entry
            if start + entry > command.offset + command.size:
                raise self._reader.fail("section header outside its segment command")
            size_at = offset_at - (8 if self._is64 else 4)
            size = self._reader.word("Q" if self._is64 else "I", start + size_at, "section size")
            offset = self._reader.word("I", start + offset_at, "section offset")
            flags = self._reader.word("I", start + offset_at + 16, "section flags")
            if flags & _SECTION_TYPE_MASK in _ZEROFILL_TYPES or not offset or not size:
                continue
            offsets.append(offset)
        if not offsets and fileoff and filesize:
            offsets.append(fileoff)
        return offsets

    def _string_slot(self, command: _Command, kind: SlotKind) -> LinkSlot:
        name_off = self._reader.word("I", command.offset + 8, "load command string offset")
        if name_off < 12 or name_off >= command.size:
            raise self._reader.fail(f"load command {command.cmd:#x} string offset {name_off} out of range")
        start = command.offset + name_off
        value = self._reader.cstring(start, command.offset + command.size, "load command string")
        return LinkSlot(
            kind=kind,
            value=value,
            offset=self._base + start,
            capacity=command.size - name_off - 1,
        )

    def _build_table(self) -> DynamicLinkTable:
        dependencies: list[LinkSlot] = []
        rpaths: list[LinkSlot] = []
        install_name: LinkSlot | None = None
        for command in self._commands:
            if command.cmd in DEPENDENCY_COMMANDS:
                dependencies.append(self._string_slot(command, SlotKind.DEPENDENCY))
            elif command.cmd == LC_ID_DYLIB:
                install_name = self._string_slot(command, SlotKind.ID)
            elif command.cmd == LC_RPATH:
                rpaths.append(self._string_slot(command, SlotKind.RPATH))
        return DynamicLinkTable(
            format=self.format,
            dependencies=tuple(dependencies),
            install_name=install_name,
            rpaths=tuple(rpaths),
        )

    # -- rewriting -----------------------------------------------------------------------

    @property
    def _alignment(self) -> int:
        return 8 if self._is64 else 4

    def _rebuild_string_command(self, command: _Command, value: str) -> bytes:
        name_off = self._reader.word("I", command.offset + 8, "load command string offset")
        fixed = self._image[command.offset + 8 : command.offset + name_off]
        payload = encode_name(value) + b"\0"
        size = max(command.size, align(name_off + len(payload), self._alignment))
        body = struct.pack(self._reader.endian + "II", command.cmd, size) + fixed + payload
        return body.ljust(size, b"\0")

    def _new_rpath_command(self, value: str) -> bytes:
        payload = encode_name(value) + b"\0"
        size = align(12 + len(payload), self._alignment)
        body = struct.pack(self._reader.endian + "III", LC_RPATH, size, 12) + payload
        return body.ljust(size, b"\0")

    def apply(self, edits: LinkEdits) -> bytes:
        """Return the file with the slice's load commands rewritten.

        Raises:
            LinkEditError: If the rewritten commands exceed the header padding
                or an install name is requested for an image without one.
        """

        if edits.install_name is not None and self._table.install_name is None:
            raise LinkEditError(self.path, "image has no LC_ID_DYLIB to rename")
        if self.has_code_signature:
            LOGGER.warning("%s: rewriting load commands invalidates the code signature", self.path)
        replacements: dict[int, str | None] = {}
        for edit in (*edits.dependencies, *edits.rpaths):
            replacements[edit.slot.offset] = edit.value
        if edits.install_name is not None and self._table.install_name is not None:
            replacements[self._table.install_name.offset] = edits.install_name

        blocks: list[bytes] = []
        for command in self._commands:
            raw = self._image[command.offset : command.offset + command.size]
            if command.cmd in DEPENDENCY_COMMANDS or command.cmd in (LC_ID_DYLIB, LC_RPATH):
                name_off = self._reader.word("I", command.offset + 8, "load command string offset")
                key = self._base + command.offset + name_off
                if key in replacements:
                    value = replacements[key]
                    if value is None:
                        continue
                    raw = self._rebuild_string_command(command, value)
            blocks.append(raw)
        blocks.extend(self._new_rpath_command(value) for value in edits.rpath_additions)

        sizeofcmds = sum(len(block) for block in blocks)
        available = self._limit - self._header_size
        if sizeofcmds > available:
            raise LinkEditError(
                self.path,
                f"name too long for available slack (load commands need {sizeofcmds} bytes, {available} available)",
            )
        image = bytearray(self._image)
        struct.pack_into(self._reader.endian + "II", image, 16, len(blocks), sizeofcmds)
        region_end = max(self._header_size + self._sizeofcmds, self._header_size + sizeofcmds)
        image[self._header_size : region_end] = b"".join(blocks).ljust(region_end - self._header_size, b"\0")
        LOGGER.debug(
            "%s: load commands %d -> %d bytes (%d bytes of header padding)",
            self.path,
            self._sizeofcmds,
            sizeofcmds,
            available,
        )
        if not self._base and self._size == len(self.data):
            return bytes(image)
        result = bytearray(self.data)
        result[self._base : self._base + self._size] = image
        return bytes(result)


__all__ = [
    "FAT_MAGIC",
    "FAT_MAGIC_64",
    "FatSlice",
    "MachOImage",
    "cpu_name",
    "is_fat_header",
    "read_fat_slices",
    "select_fat_slice",
]
