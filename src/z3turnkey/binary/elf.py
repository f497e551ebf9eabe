# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""ELF back end: ``PT_DYNAMIC`` parsing and ``.dynstr`` rewriting.

Dependency names (``DT_NEEDED``) and search paths (``DT_RUNPATH`` /
``DT_RPATH``) are offsets into the dynamic string table. A replacement that
fits the old string and is not shared with another reference is written in
place. Anything else triggers a compacting rewrite: the table is rebuilt from
every live reference with suffix sharing and each offset field is updated,
all within the table's existing size.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ..errors import LinkEditError
from ._reader import BinaryReader, encode_name
from .model import ContainerFormat, DynamicLinkTable, LinkEdits, LinkSlot, SlotKind

LOGGER = logging.getLogger(__name__)

ELF_MAGIC: Final[bytes] = b"\x7fELF"
ELFCLASS32: Final[int] = 1
ELFCLASS64: Final[int] = 2
ELFDATA2LSB: Final[int] = 1
ELFDATA2MSB: Final[int] = 2

PT_LOAD: Final[int] = 1
PT_DYNAMIC: Final[int] = 2

SHT_SYMTAB: Final[int] = 2
SHT_DYNSYM: Final[int] = 11

DT_NULL: Final[int] = 0
DT_NEEDED: Final[int] = 1
DT_HASH: Final[int] = 4
DT_STRTAB: Final[int] = 5
DT_SYMTAB: Final[int] = 6
DT_STRSZ: Final[int] = 10
DT_SYMENT: Final[int] = 11
DT_SONAME: Final[int] = 14
DT_RPATH: Final[int] = 15
DT_RUNPATH: Final[int] = 29
DT_GNU_HASH: Final[int] = 0x6FFFFEF5
DT_CONFIG: Final[int] = 0x6FFFFEFA
DT_DEPAUDIT: Final[int] = 0x6FFFFEFB
DT_AUDIT: Final[int] = 0x6FFFFEFC
DT_VERDEF: Final[int] = 0x6FFFFFFC
DT_VERDEFNUM: Final[int] = 0x6FFFFFFD
DT_VERNEED: Final[int] = 0x6FFFFFFE
DT_VERNEEDNUM: Final[int] = 0x6FFFFFFF
DT_AUXILIARY: Final[int] = 0x7FFFFFFD
DT_FILTER: Final[int] = 0x7FFFFFFF

_STRING_TAGS: Final[frozenset[int]] = frozenset(
    {DT_NEEDED, DT_SONAME, DT_RPATH, DT_RUNPATH, DT_CONFIG, DT_DEPAUDIT, DT_AUDIT, DT_AUXILIARY, DT_FILTER}
)
_RPATH_TAGS: Final[frozenset[int]] = frozenset({DT_RUNPATH, DT_RPATH})
RPATH_SEPARATOR: Final[str] = ":"

_MACHINES: Final[dict[int, str]] = {
    3: "i386",
    8: "mips",
    20: "ppc",
    21: "ppc64",
    22: "s390",
    40: "arm",
    62: "x86_64",
    183: "aarch64",
    243: "riscv",
}


@dataclass(frozen=True, slots=True)
class _Layout:
    """Struct formats for one ELF class."""

    is64: bool

    @property
    def header(self) -> str:
        return "16sHHIQQQIHHHHHH" if self.is64 else "16sHHIIIIIHHHHHH"

    @property
    def program_header(self) -> str:
        return "IIQQQQQQ" if self.is64 else "IIIIIIII"

    @property
    def section_header(self) -> str:
        return "IIQQQQIIQQ" if self.is64 else "IIIIIIIIII"

    @property
    def dynamic(self) -> str:
        return "qQ" if self.is64 else "iI"

    @property
    def address(self) -> str:
        return "Q" if self.is64 else "I"

    @property
    def symbol_size(self) -> int:
        return 24 if self.is64 else 16


@dataclass(frozen=True, slots=True)
class _Segment:
    type: int
    offset: int
    vaddr: int
    filesz: int


@dataclass(frozen=True, slots=True)
class _DynamicEntry:
    tag: int
    value: int
    offset: int


@dataclass(frozen=True, slots=True)
class _StringRef:
    """A field somewhere in the file that holds a ``.dynstr`` offset."""

    field_offset: int
    field_format: str
    value: int
    origin: str


def build_string_table(values: Iterable[bytes]) -> tuple[bytes, dict[bytes, int]]:
    """Build a NUL-separated string table with suffix sharing.

    Sorting the reversed strings places every string right after the longest
    string it is a suffix of, so a single comparison with the last emitted
    string finds each sharing opportunity.

    Args:
        values: Encoded strings that must be present in the table.

    Returns:
        tuple[bytes, dict[bytes, int]]: Table bytes and the offset of each string.
    """

    table = bytearray(b"\0")
    offsets: dict[bytes, int] = {b"": 0}
    previous: bytes | None = None
    previous_offset = 0
    for value in sorted(set(values) - {b""}, key=lambda item: item[::-1], reverse=True):
        if previous is not None and previous.endswith(value):
            offsets[value] = previous_offset + len(previous) - len(value)
            continue
        offsets[value] = len(table)
        table += value + b"\0"
        previous, previous_offset = value, offsets[value]
    return bytes(table), offsets


class ElfImage:
    """Parsed ELF shared object."""

    format = ContainerFormat.ELF
    supports_install_name = False
    supports_rpath = True

    def __init__(self, path: Path, data: bytes) -> None:
        self.path = path
        self.data = data
        if len(data) < 16 or data[:4] != ELF_MAGIC:
            raise BinaryReader(path, data).fail("missing ELF magic")
        ei_class, ei_data = data[4], data[5]
        if ei_class not in (ELFCLASS32, ELFCLASS64):
            raise BinaryReader(path, data).fail(f"unknown ELF class {ei_class}")
        if ei_data not in (ELFDATA2LSB, ELFDATA2MSB):
            raise BinaryReader(path, data).fail(f"unknown ELF data encoding {ei_data}")
        self._layout = _Layout(is64=ei_class == ELFCLASS64)
        self._reader = BinaryReader(path, data, "<" if ei_data == ELFDATA2LSB else ">")
        header = self._reader.unpack(self._layout.header, 0, "ELF header")
        (_, _, e_machine, _, _, e_phoff, e_shoff, _, _, e_phentsize, e_phnum, e_shentsize, e_shnum, _) = header
        self._machine = _MACHINES.get(e_machine, f"elf-machine-{e_machine}")
        self._segments = self._read_segments(e_phoff, e_phentsize, e_phnum)
        self._sections = self._read_sections(e_shoff, e_shentsize, e_shnum)
        self._dynamic, self._null_entries = self._read_dynamic()
        self._strtab_offset, self._strtab_size = self._locate_strtab()
        self._table = self._build_table()

    @property
    def table(self) -> DynamicLinkTable:
        return self._table

    @property
    def machine(self) -> str:
        return self._machine

    # -- parsing -------------------------------------------------------------------------

    def _read_segments(self, phoff: int, phentsize: int, phnum: int) -> tuple[_Segment, ...]:
        fmt = self._layout.program_header
        if phnum and phentsize < struct.calcsize(self._reader.endian + fmt):
            raise self._reader.fail(f"program header entry size {phentsize} too small")
        segments: list[_Segment] = []
        for index in range(phnum):
            fields = self._reader.unpack(fmt, phoff + index * phentsize, "program header")
            if self._layout.is64:
                p_type, _, p_offset, p_vaddr, _, p_filesz, _, _ = fields
            else:
                p_type, p_offset, p_vaddr, _, p_filesz, _, _, _ = fields
            segments.append(_Segment(type=p_type, offset=p_offset, vaddr=p_vaddr, filesz=p_filesz))
        return tuple(segments)

    def _read_sections(self, shoff: int, shentsize: int, shnum: int) -> tuple[tuple[int, ...], ...]:
        fmt = self._layout.section_header
        if not shoff or not shnum or shentsize < struct.calcsize(self._reader.endian + fmt):
            return ()
        if shoff + shnum * shentsize > len(self.data):
            LOGGER.debug("%s: section headers truncated; ignoring them", self.path)
            return ()
        return tuple(self._reader.unpack(fmt, shoff + index * shentsize, "section header") for index in range(shnum))

    def _read_dynamic(self) -> tuple[tuple[_DynamicEntry, ...], tuple[int, ...]]:
        dynamic = [segment for segment in self._segments if segment.type == PT_DYNAMIC]
        if not dynamic:
            return (), ()
        segment = dynamic[0]
        fmt = self._layout.dynamic
        entry_size = struct.calcsize(self._reader.endian + fmt)
        if segment.offset + segment.filesz > len(self.data):
            raise self._reader.fail("PT_DYNAMIC segment extends past end of file")
        entries: list[_DynamicEntry] = []
        nulls: list[int] = []
        for index in range(segment.filesz // entry_size):
            offset = segment.offset + index * entry_size
            tag, value = self._reader.unpack(fmt, offset, "dynamic entry")
            if nulls:
                if tag != DT_NULL:
                    break
                nulls.append(offset)
                continue
            if tag == DT_NULL:
                nulls.append(offset)
                continue
            entries.append(_DynamicEntry(tag=tag, value=value, offset=offset))
        if not nulls:
            raise self._reader.fail("dynamic section is not terminated by DT_NULL")
        return tuple(entries), tuple(nulls)

    def _vaddr_to_offset(self, vaddr: int, what: str) -> int:
        for segment in self._segments:
            if segment.type == PT_LOAD and segment.vaddr <= vaddr < segment.vaddr + segment.filesz:
                return vaddr - segment.vaddr + segment.offset
        raise self._reader.fail(f"{what} address {vaddr:#x} is not backed by a PT_LOAD segment")

    def _dynamic_value(self, tag: int) -> int | None:
        for entry in self._dynamic:
            if entry.tag == tag:
                return entry.value
        return None

    def _locate_strtab(self) -> tuple[int, int]:
        if not self._dynamic:
            return 0, 0
        address = self._dynamic_value(DT_STRTAB)
        size = self._dynamic_value(DT_STRSZ)
        if address is None or size is None:
            if any(entry.tag in _STRING_TAGS for entry in self._dynamic):
                raise self._reader.fail("dynamic section lacks DT_STRTAB/DT_STRSZ")
            return 0, 0
        offset = self._vaddr_to_offset(address, "DT_STRTAB")
        if offset + size > len(self.data):
            raise self._reader.fail("dynamic string table extends past end of file")
        return offset, size

    def _string(self, strtab_value: int, what: str) -> str:
        if strtab_value >= self._strtab_size:
            raise self._reader.fail(f"{what} offset {strtab_value:#x} outside the dynamic string table")
        return self._reader.cstring(self._strtab_offset + strtab_value, self._strtab_offset + self._strtab_size, what)

    def _build_table(self) -> DynamicLinkTable:
        dependencies: list[LinkSlot] = []
        for entry in self._dynamic:
            if entry.tag == DT_NEEDED:
                value = self._string(entry.value, "DT_NEEDED name")
                dependencies.append(
                    LinkSlot(
                        kind=SlotKind.DEPENDENCY,
                        value=value,
                        offset=self._strtab_offset + entry.value,
                        capacity=len(encode_name(value)),
                    )
                )
        return DynamicLinkTable(
            format=self.format,
            dependencies=tuple(dependencies),
            rpaths=tuple(self._rpath_slots()),
        )

    def _rpath_entry(self) -> _DynamicEntry | None:
        for tag in (DT_RUNPATH, DT_RPATH):
            for entry in self._dynamic:
                if entry.tag == tag:
                    return entry
        return None

    def _rpath_slots(self) -> list[LinkSlot]:
        entry = self._rpath_entry()
        if entry is None:
            return []
        value = self._string(entry.value, "RPATH")
        slots: list[LinkSlot] = []
        cursor = self._strtab_offset + entry.value
        for component in value.split(RPATH_SEPARATOR):
            size = len(encode_name(component))
            if component:
                slots.append(LinkSlot(kind=SlotKind.RPATH, value=component, offset=cursor, capacity=size))
            cursor += size + 1
        return slots

    # -- string references ---------------------------------------------------------------

    def _string_references(self) -> tuple[list[_StringRef], bool]:
        """Return every known ``.dynstr`` reference and whether the list is complete."""

        refs: list[_StringRef] = []
        value_format = self._layout.dynamic[1]
        value_offset = struct.calcsize(self._reader.endian + self._layout.dynamic[0])
        for entry in self._dynamic:
            if entry.tag in _STRING_TAGS:
                refs.append(
                    _StringRef(
                        field_offset=entry.offset + value_offset,
                        field_format=value_format,
                        value=entry.value,
                        origin=f"dynamic:{entry.tag:#x}",
                    )
                )
        complete = self._symbol_references(refs)
        self._verneed_references(refs)
        self._verdef_references(refs)
        return refs, complete

    def _symbol_references(self, refs: list[_StringRef]) -> bool:
        symbol_tables = self._symbol_tables_from_sections()
        if symbol_tables is None:
            symbol_tables = self._symbol_tables_from_dynamic()
        if symbol_tables is None:
            return False
        for offset, count, entsize in symbol_tables:
            for index in range(count):
                field = offset + index * entsize
                name = self._reader.word("I", field, "symbol name")
                refs.append(_StringRef(field_offset=field, field_format="I", value=name, origin="symbol"))
        return True

    def _symbol_tables_from_sections(self) -> list[tuple[int, int, int]] | None:
        if not self._sections:
            return None
        dynstr_index = None
        for index, section in enumerate(self._sections):
            sh_offset, sh_size = section[4], section[5]
            if sh_offset == self._strtab_offset and sh_size:
                dynstr_index = index
                break
        if dynstr_index is None:
            return None
        tables: list[tuple[int, int, int]] = []
        for section in self._sections:
            sh_type, sh_offset, sh_size, sh_link, sh_entsize = section[1], section[4], section[5], section[6], section[9]
            if sh_type in (SHT_DYNSYM, SHT_SYMTAB) and sh_link == dynstr_index:
                entsize = sh_entsize or self._layout.symbol_size
                tables.append((sh_offset, sh_size // entsize, entsize))
        return tables

    def _symbol_tables_from_dynamic(self) -> list[tuple[int, int, int]] | None:
        address = self._dynamic_value(DT_SYMTAB)
        if address is None:
            return []
        offset = self._vaddr_to_offset(address, "DT_SYMTAB")
        entsize = self._dynamic_value(DT_SYMENT) or self._layout.symbol_size
        count = self._symbol_count()
        if count is None:
            return None
        return [(offset, count, entsize)]

    def _symbol_count(self) -> int | None:
        hash_address = self._dynamic_value(DT_HASH)
        if hash_address is not None:
            offset = self._vaddr_to_offset(hash_address, "DT_HASH")
            return self._reader.word("I", offset + 4, "hash table")
        gnu_address = self._dynamic_value(DT_GNU_HASH)
        if gnu_address is None:
            return None
        return self._gnu_hash_symbol_count(self._vaddr_to_offset(gnu_address, "DT_GNU_HASH"))

    def _gnu_hash_symbol_count(self, offset: int) -> int:
        nbuckets, symoffset, bloom_size, _ = self._reader.unpack("IIII", offset, "GNU hash header")
        word = 8 if self._layout.is64 else 4
        buckets_offset = offset + 16 + bloom_size * word
        buckets = [self._reader.word("I", buckets_offset + 4 * index, "GNU hash bucket") for index in range(nbuckets)]
        last = max(buckets, default=0)
        if last < symoffset:
            return symoffset
        chains_offset = buckets_offset + 4 * nbuckets
        while not self._reader.word("I", chains_offset + 4 * (last - symoffset), "GNU hash chain") & 1:
            last += 1
        return last + 1

    def _verneed_references(self, refs: list[_StringRef]) -> None:
        address = self._dynamic_value(DT_VERNEED)
        count = self._dynamic_value(DT_VERNEEDNUM) or 0
        if address is None:
            return
        cursor = self._vaddr_to_offset(address, "DT_VERNEED")
        for _ in range(count):
            _, vn_cnt, vn_file, vn_aux, vn_next = self._reader.unpack("HHIII", cursor, "version need")
            refs.append(_StringRef(field_offset=cursor + 4, field_format="I", value=vn_file, origin="verneed"))
            aux = cursor + vn_aux
            for _ in range(vn_cnt):
                _, _, _, vna_name, vna_next = self._reader.unpack("IHHII", aux, "version need aux")
                refs.append(_StringRef(field_offset=aux + 8, field_format="I", value=vna_name, origin="vernaux"))
                if not vna_next:
                    break
                aux += vna_next
            if not vn_next:
                break
            cursor += vn_next

    def _verdef_references(self, refs: list[_StringRef]) -> None:
        address = self._dynamic_value(DT_VERDEF)
        count = self._dynamic_value(DT_VERDEFNUM) or 0
        if address is None:
            return
        cursor = self._vaddr_to_offset(address, "DT_VERDEF")
        for _ in range(count):
            _, _, _, vd_cnt, _, vd_aux, vd_next = self._reader.unpack("HHHHIII", cursor, "version definition")
            aux = cursor + vd_aux
            for _ in range(vd_cnt):
                vda_name, vda_next = self._reader.unpack("II", aux, "version definition aux")
                refs.append(_StringRef(field_offset=aux, field_format="I", value=vda_name, origin="verdaux"))
                if not vda_next:
                    break
                aux += vda_next
            if not vd_next:
                break
            cursor += vd_next

    # -- rewriting -----------------------------------------------------------------------

    def apply(self, edits: LinkEdits) -> bytes:
        """Return a copy of the image with ``edits`` applied.

        Raises:
            LinkEditError: If a replacement does not fit even after compaction.
        """

        if edits.install_name is not None:
            raise LinkEditError(self.path, "ELF objects carry no install name")
        refs, complete = self._string_references()
        assignments: dict[int, str] = {}
        renamed = {edit.slot.offset - self._strtab_offset: edit.value for edit in edits.dependencies}
        old_names = {edit.slot.value: edit.value for edit in edits.dependencies}
        for index, ref in enumerate(refs):
            if ref.origin == f"dynamic:{DT_NEEDED:#x}" and ref.value in renamed:
                assignments[index] = renamed[ref.value]  # type: ignore[assignment]
            elif ref.origin == "verneed" and self._string(ref.value, "version need file") in old_names:
                assignments[index] = old_names[self._string(ref.value, "version need file")]  # type: ignore[assignment]

        new_entries: list[tuple[int, _StringRef]] = []
        rpath_value = self._resolve_rpath(edits)
        if rpath_value is not None:
            rpath_refs = [
                index
                for index, ref in enumerate(refs)
                if ref.origin in {f"dynamic:{DT_RUNPATH:#x}", f"dynamic:{DT_RPATH:#x}"}
            ]
            if rpath_refs:
                for index in rpath_refs:
                    assignments[index] = rpath_value
            elif rpath_value:
                new_entries.append(self._claim_spare_entry())

        buffer = bytearray(self.data)
        if not new_entries and self._write_in_place(buffer, refs, assignments):
            return bytes(buffer)
        if not complete:
            raise LinkEditError(
                self.path,
                "name too long for available slack and the string table references cannot be "
                "enumerated for a compacting rewrite",
            )
        self._compact(buffer, refs, assignments, new_entries, rpath_value)
        return bytes(buffer)

    def _resolve_rpath(self, edits: LinkEdits) -> str | None:
        if not edits.rpaths and not edits.rpath_additions:
            return None
        updates = {edit.slot.offset: edit.value for edit in edits.rpaths}
        components: list[str] = []
        for slot in self._table.rpaths:
            value = updates.get(slot.offset, slot.value)
            if value is not None and value not in components:
                components.append(value)
        for addition in edits.rpath_additions:
            if addition not in components:
                components.append(addition)
        return RPATH_SEPARATOR.join(components)

    def _claim_spare_entry(self) -> tuple[int, _StringRef]:
        # The terminator takes the new tag; the next DT_NULL becomes the terminator.
        if len(self._null_entries) < 2:
            raise LinkEditError(self.path, "no spare DT_NULL entry to hold a new DT_RUNPATH")
        entry_offset = self._null_entries[0]
        value_offset = struct.calcsize(self._reader.endian + self._layout.dynamic[0])
        ref = _StringRef(
            field_offset=entry_offset + value_offset,
            field_format=self._layout.dynamic[1],
            value=0,
            origin=f"dynamic:{DT_RUNPATH:#x}",
        )
        return entry_offset, ref

    def _write_in_place(self, buffer: bytearray, refs: list[_StringRef], assignments: dict[int, str]) -> bool:
        targets: dict[int, bytes] = {}
        for index, value in assignments.items():
            encoded = encode_name(value)
            offset = refs[index].value
            if targets.setdefault(offset, encoded) != encoded:
                return False
        writes: list[tuple[int, int, bytes]] = []
        for offset, encoded in targets.items():
            old = encode_name(self._string(offset, "string"))
            if encoded == old:
                continue
            if len(encoded) > len(old):
                return False
            for index, ref in enumerate(refs):
                if not offset <= ref.value < offset + len(old):
                    continue
                if ref.value != offset or index not in assignments:
                    LOGGER.debug("%s: string at %#x is shared by %s; compacting", self.path, offset, ref.origin)
                    return False
            writes.append((offset, len(old), encoded))
        for offset, length, encoded in writes:
            start = self._strtab_offset + offset
            buffer[start : start + length] = encoded.ljust(length, b"\0")
        return True

    def _compact(
        self,
        buffer: bytearray,
        refs: list[_StringRef],
        assignments: dict[int, str],
        new_entries: list[tuple[int, _StringRef]],
        rpath_value: str | None,
    ) -> None:
        final: list[tuple[_StringRef, bytes]] = []
        for index, ref in enumerate(refs):
            value = assignments.get(index)
            final.append((ref, encode_name(value) if value is not None else encode_name(self._string(ref.value, ref.origin))))
        for _, ref in new_entries:
            final.append((ref, encode_name(rpath_value or "")))
        table, offsets = build_string_table(value for _, value in final)
        if len(table) > self._strtab_size:
            raise LinkEditError(
                self.path,
                f"name too long for available slack (string table needs {len(table)} bytes, "
                f"{self._strtab_size} available)",
            )
        LOGGER.debug("%s: compacted .dynstr from %d to %d bytes", self.path, self._strtab_size, len(table))
        start = self._strtab_offset
        buffer[start : start + self._strtab_size] = table.ljust(self._strtab_size, b"\0")
        endian = self._reader.endian
        for ref, value in final:
            struct.pack_into(endian + ref.field_format, buffer, ref.field_offset, offsets[value])
        for entry_offset, _ in new_entries:
            struct.pack_into(endian + self._layout.dynamic[0], buffer, entry_offset, DT_RUNPATH)


__all__ = ["ELF_MAGIC", "ElfImage", "build_string_table"]
