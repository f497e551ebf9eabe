# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Recognise a binary container from its leading bytes."""

from __future__ import annotations

import struct
from typing import Final

from ..errors import UnsupportedFormatError
from .elf import ELF_MAGIC
from .macho import MH_CIGAM, MH_CIGAM_64, MH_MAGIC, MH_MAGIC_64, is_fat_header
from .model import ContainerFormat
from .pe import DOS_MAGIC, PE_SIGNATURE

SNIFF_SIZE: Final[int] = 8
_MACHO_MAGICS: Final[frozenset[bytes]] = frozenset({MH_MAGIC, MH_MAGIC_64, MH_CIGAM, MH_CIGAM_64})
_E_LFANEW_OFFSET: Final[int] = 0x3C


def sniff_format(header: bytes, *, source: object = "<data>") -> ContainerFormat:
    """Return the container format announced by ``header``.

    Args:
        header: Leading bytes of the file. PE detection needs the bytes up to
            the signature that ``e_lfanew`` points at.
        source: Label used in the error message.

    Returns:
        ContainerFormat: The detected format.

    Raises:
        UnsupportedFormatError: If the magic matches none of ELF, Mach-O
            (thin or universal) or PE.
    """

    magic = bytes(header[:4])
    if magic == ELF_MAGIC:
        return ContainerFormat.ELF
    if magic in _MACHO_MAGICS or is_fat_header(bytes(header[:SNIFF_SIZE])):
        return ContainerFormat.MACHO
    if magic[:2] == DOS_MAGIC and _has_pe_signature(header):
        return ContainerFormat.PE
    raise UnsupportedFormatError(f"{source}: unrecognised binary container (magic {magic.hex() or 'empty'})")


def _has_pe_signature(header: bytes) -> bool:
    # A bare DOS executable carries MZ but no PE header.
    if len(header) < _E_LFANEW_OFFSET + 4:
        return False
    (e_lfanew,) = struct.unpack_from("<I", header, _E_LFANEW_OFFSET)
    return bytes(header[e_lfanew : e_lfanew + 4]) == PE_SIGNATURE


__all__ = ["SNIFF_SIZE", "sniff_format"]
