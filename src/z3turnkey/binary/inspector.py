# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Read a shared library's container format and dynamic-link table."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import MalformedBinaryError
from .elf import ElfImage
from .formats import sniff_format
from .macho import MachOImage
from .model import ContainerFormat, ContainerImage, LibraryArtifact
from .pe import PEImage

LOGGER = logging.getLogger(__name__)


def open_image(path: Path, data: bytes, *, fat_slice: str | None = None) -> ContainerImage:
    """Parse ``data`` with the back end matching its magic bytes.

    Args:
        path: Origin of ``data``; used in diagnostics only.
        data: Complete file contents.
        fat_slice: Architecture to select inside a universal Mach-O binary.

    Returns:
        ContainerImage: Parsed image ready for inspection or rewriting.

    Raises:
        UnsupportedFormatError: If the container is not ELF, Mach-O or PE,
            or a universal binary needs a slice selection.
        MalformedBinaryError: If the structures are truncated or inconsistent.
    """

    fmt = sniff_format(data, source=path)
    if fmt is ContainerFormat.ELF:
        return ElfImage(path, data)
    if fmt is ContainerFormat.MACHO:
        return MachOImage(path, data, fat_slice=fat_slice)
    return PEImage(path, data)


def read_image(path: Path, *, fat_slice: str | None = None) -> ContainerImage:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise MalformedBinaryError(path, f"cannot read file: {exc.strerror or exc}") from exc
    return open_image(path, data, fat_slice=fat_slice)


def inspect_library(path: Path, *, fat_slice: str | None = None) -> LibraryArtifact:
    """Return the format, machine and link table of the library at ``path``."""

    image = read_image(path, fat_slice=fat_slice)
    artifact = LibraryArtifact(path=path, format=image.format, table=image.table, machine=image.machine)
    LOGGER.debug(
        "%s: %s %s, %d dependencies, install name %s, rpaths %s",
        path,
        artifact.format.value,
        artifact.machine,
        len(artifact.dependencies),
        artifact.install_name,
        list(artifact.rpaths),
    )
    return artifact


__all__ = ["inspect_library", "open_image", "read_image"]
