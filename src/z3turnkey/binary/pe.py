# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""PE-COFF back end: import and delay-import name rewriting.

DLL names are NUL-terminated strings referenced by RVA from the import
descriptors. Replacements are written in place and must fit the old name;
PE images carry no install name or search path.
"""

from __future__ import annotations

import logging
import struct
import sys
from array import array
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ..errors import LinkEditError
from ._reader import BinaryReader, encode_name
from .model import ContainerFormat, DynamicLinkTable, LinkEdits, LinkSlot, SlotKind

LOGGER = logging.getLogger(__name__)

DOS_MAGIC: Final[bytes] = b"MZ"
PE_SIGNATURE: Final[bytes] = b"PE\0\0"
PE32_MAGIC: Final[int] = 0x10B
PE32_PLUS_MAGIC: Final[int] = 0x20B

IMAGE_DIRECTORY_ENTRY_IMPORT: Final[int] = 1
IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT: Final[int] = 11
IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT: Final[int] = 13

_IMPORT_DESCRIPTOR_SIZE: Final[int] = 20
_DELAY_DESCRIPTOR_SIZE: Final[int] = 32
_SECTION_HEADER_SIZE: Final[int] = 40
_CHECKSUM_OFFSET: Final[int] = 64
# Upper bound on descriptors walked before assuming a missing terminator.
_MAX_DESCRIPTORS: Final[int] = 4096

_MACHINES: Final[dict[int, str]] = {
    0x14C: "i386",
    0x1C0: "arm",
    0x1C4: "armnt",
    0x8664: "x86_64",
    0xAA64: "arm64",
}


@dataclass(frozen=True, slots=True)
class _Section:
    virtual_address: int
    virtual_size: int
    raw_offset: int
    raw_size: int


def pe_checksum(data: bytes | bytearray, checksum_offset: int) -> int:
    """Compute the optional-header CheckSum with the field itself treated as zero."""

    buffer = bytearray(data)
    buffer[checksum_offset : checksum_offset + 4] = b"\0\0\0\0"
    if len(buffer) % 2:
        buffer.append(0)
    words = array("H")
    words.frombytes(bytes(buffer))
    if sys.byteorder == "big":
        words.byteswap()
    total = sum(words)
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return (total + len(data)) & 0xFFFFFFFF


class PEImage:
    """Parsed PE-COFF DLL."""

    format = ContainerFormat.PE
    supports_install_name = False
    supports_rpath = False

    def __init__(self, path: Path, data: bytes) -> None:
        self.path = path
        self.data = data
        self._reader = BinaryReader(path, data, "<")
        if data[:2] != DOS_MAGIC:
            raise self._reader.fail("missing MZ header")
        e_lfanew = self._reader.word("I", 0x3C, "e_lfanew")
        if bytes(data[e_lfanew : e_lfanew + 4]) != PE_SIGNATURE:
            raise self._reader.fail(f"missing PE signature at {e_lfanew:#x}")
        machine, nsections, _, _, _, optional_size, _ = self._reader.unpack("HHIIIHH", e_lfanew + 4, "COFF header")
        self._machine = _MACHINES.get(machine, f"pe-machine-{machine:#x}")
        self._optional = e_lfanew + 24
        magic = self._reader.word("H", self._optional, "optional header magic")
        if magic == PE32_MAGIC:
            self._image_base = self._reader.word("I", self._optional + 28, "ImageBase")
            directory_count_at, directories_at = 92, 96
        elif magic == PE32_PLUS_MAGIC:
            self._image_base = self._reader.word("Q", self._optional + 24, "ImageBase")
            directory_count_at, directories_at = 108, 112
        else:
            raise self._reader.fail(f"unknown optional header magic {magic:#x}")
        self._directory_count = self._reader.word("I", self._optional + directory_count_at, "NumberOfRvaAndSizes")
        self._directories_offset = self._optional + directories_at
        self._sections = self._read_sections(self._optional + optional_size, nsections)
        self._table = self._build_table()

    @property
    def table(self) -> DynamicLinkTable:
        return self._table

    @property
    def machine(self) -> str:
        return self._machine

    @property
    def checksum_offset(self) -> int:
        return self._optional + _CHECKSUM_OFFSET

    def _read_sections(self, offset: int, count: int) -> tuple[_Section, ...]:
        sections: list[_Section] = []
        for index in range(count):
            _, vsize, vaddr, raw_size, raw_offset = self._reader.unpack(
                "8sIIII", offset + index * _SECTION_HEADER_SIZE, "section header"
            )
            sections.append(
                _Section(virtual_address=vaddr, virtual_size=vsize, raw_offset=raw_offset, raw_size=raw_size)
            )
        return tuple(sections)

    def _directory(self, index: int) -> tuple[int, int]:
        if index >= self._directory_count:
            return 0, 0
        rva, size = self._reader.unpack("II", self._directories_offset + index * 8, "data directory")
        return rva, size

    def rva_to_offset(self, rva: int, what: str) -> int:
        for section in self._sections:
            span = max(section.virtual_size, section.raw_size)
            if section.virtual_address <= rva < section.virtual_address + span:
                delta = rva - section.virtual_address
                if delta >= section.raw_size:
                    raise self._reader.fail(f"{what} RVA {rva:#x} lies in uninitialised section data")
                return section.raw_offset + delta
        raise self._reader.fail(f"{what} RVA {rva:#x} is not mapped by any section")

    def _name_slot(self, rva: int) -> LinkSlot:
        offset = self.rva_to_offset(rva, "DLL name")
        value = self._reader.cstring(offset, len(self.data), "DLL name")
        return LinkSlot(
            kind=SlotKind.DEPENDENCY,
            value=value,
            offset=offset,
            capacity=len(encode_name(value)),
        )

    def _import_names(self) -> list[int]:
        rva, _ = self._directory(IMAGE_DIRECTORY_ENTRY_IMPORT)
        if not rva:
            return []
        cursor = self.rva_to_offset(rva, "import directory")
        names: list[int] = []
        for index in range(_MAX_DESCRIPTORS):
            fields = self._reader.unpack("IIIII", cursor + index * _IMPORT_DESCRIPTOR_SIZE, "import descriptor")
            if not any(fields):
                return names
            names.append(fields[3])
        raise self._reader.fail("import directory is not terminated")

    def _delay_import_names(self) -> list[int]:
        rva, _ = self._directory(IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT)
        if not rva:
            return []
        cursor = self.rva_to_offset(rva, "delay-import directory")
        names: list[int] = []
        for index in range(_MAX_DESCRIPTORS):
            attributes, name = self._reader.unpack(
                "II", cursor + index * _DELAY_DESCRIPTOR_SIZE, "delay-import descriptor"
            )
            if not name:
                return names
            # Attribute bit 0 clear marks the legacy VA-based descriptor.
            names.append(name if attributes & 1 else name - self._image_base)
        raise self._reader.fail("delay-import directory is not terminated")

    def _build_table(self) -> DynamicLinkTable:
        slots = [self._name_slot(rva) for rva in (*self._import_names(), *self._delay_import_names())]
        return DynamicLinkTable(format=self.format, dependencies=tuple(slots))

    @property
    def has_bound_imports(self) -> bool:
        rva, size = self._directory(IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT)
        return bool(rva and size)

    def apply(self, edits: LinkEdits) -> bytes:
        """Return a copy with dependency names replaced in place.

        Raises:
            LinkEditError: If a name does not fit, the image carries a bound
                import table, or the edit asks for an install name or RPATH.
        """

        if edits.install_name is not None:
            raise LinkEditError(self.path, "PE images carry no install name")
        if edits.rpaths or edits.rpath_additions:
            raise LinkEditError(self.path, "PE images carry no RPATH entries")
        if not edits.dependencies:
            return bytes(self.data)
        if self.has_bound_imports:
            raise LinkEditError(self.path, "bound import table would go stale after renaming an import")
        buffer = bytearray(self.data)
        for edit in edits.dependencies:
            slot = edit.slot
            encoded = encode_name(edit.value or "")
            if not encoded:
                raise LinkEditError(self.path, f"cannot remove import {slot.value}")
            if len(encoded) > slot.capacity:
                raise LinkEditError(
                    self.path,
                    f"name too long for available slack ({edit.value!r} needs {len(encoded)} bytes, "
                    f"{slot.capacity} available for {slot.value!r})",
                )
            buffer[slot.offset : slot.offset + slot.capacity + 1] = encoded.ljust(slot.capacity + 1, b"\0")
        stored = struct.unpack_from("<I", buffer, self.checksum_offset)[0]
        if stored:
            checksum = pe_checksum(buffer, self.checksum_offset)
            struct.pack_into("<I", buffer, self.checksum_offset, checksum)
            LOGGER.debug("%s: PE checksum %#x -> %#x", self.path, stored, checksum)
        return bytes(buffer)


__all__ = ["DOS_MAGIC", "PEImage", "pe_checksum"]
