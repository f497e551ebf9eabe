# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Bounds-checked ``struct`` access shared by the container back ends."""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Final

from ..errors import MalformedBinaryError

_ENCODING: Final[str] = "utf-8"
_ERRORS: Final[str] = "surrogateescape"


def encode_name(value: str) -> bytes:
    """Encode a link-table string exactly as it was decoded."""

    return value.encode(_ENCODING, _ERRORS)


def decode_name(raw: bytes) -> str:
    return raw.decode(_ENCODING, _ERRORS)


def align(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


class BinaryReader:
    """Read fixed-layout records from an in-memory image."""

    def __init__(self, path: Path, data: bytes | bytearray | memoryview, endian: str = "<") -> None:
        self.path = path
        self.data = data
        self.endian = endian

    def __len__(self) -> int:
        return len(self.data)

    def fail(self, reason: str) -> MalformedBinaryError:
        return MalformedBinaryError(self.path, reason)

    def unpack(self, fmt: str, offset: int, what: str) -> tuple[int, ...]:
        """Unpack ``fmt`` at ``offset`` or raise :class:`MalformedBinaryError`."""

        layout = struct.Struct(self.endian + fmt)
        if offset < 0 or offset + layout.size > len(self.data):
            raise self.fail(f"truncated {what} at offset {offset:#x}")
        return layout.unpack_from(self.data, offset)

    def word(self, fmt: str, offset: int, what: str) -> int:
        return self.unpack(fmt, offset, what)[0]

    def cstring(self, offset: int, end: int, what: str) -> str:
        """Return the NUL-terminated string starting at ``offset`` before ``end``."""

        limit = min(end, len(self.data))
        if offset < 0 or offset >= limit:
            raise self.fail(f"{what} offset {offset:#x} outside its table")
        terminator = bytes(self.data[offset:limit]).find(b"\0")
        if terminator < 0:
            raise self.fail(f"unterminated {what} at offset {offset:#x}")
        return decode_name(bytes(self.data[offset : offset + terminator]))


__all__ = ["BinaryReader", "align", "decode_name", "encode_name"]
