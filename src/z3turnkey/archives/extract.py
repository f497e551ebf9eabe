# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Copy selected archive members into a working directory."""

from __future__ import annotations

import logging
import shutil
import tarfile
import zipfile
import zlib
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import IO

from ..core.filesystem import atomic_path
from ..errors import ExtractionError

LOGGER = logging.getLogger(__name__)

_READ_ERRORS = (zipfile.BadZipFile, tarfile.TarError, zlib.error, EOFError)


@dataclass(frozen=True, slots=True)
class _Member:
    """Archive entry normalised across zip and tar containers."""

    name: str
    open: Callable[[], IO[bytes]]


def extract_archive(
    archive: Path,
    destination: Path,
    *,
    include: Sequence[str],
    exclude: Sequence[str] = (),
    flatten: bool = False,
    prefix: str | None = None,
    rename: Mapping[str, str] | None = None,
) -> list[Path]:
    """Extract members of ``archive`` matching ``include`` into ``destination``.

    Args:
        archive: Zip or tar archive on disk.
        destination: Directory receiving the extracted files.
        include: Glob patterns matched against POSIX member paths.
        exclude: Glob patterns removing members that ``include`` selected.
        flatten: Keep only each member's file name.
        prefix: Re-root each kept member under this relative sub-path.
        rename: Mapping from extracted file name to the name written to disk.

    Returns:
        list[Path]: Written files in archive order.

    Raises:
        ExtractionError: If the archive is unreadable, a member escapes the
            destination, or no member matches.
    """

    if not include:
        raise ExtractionError(f"{archive}: no include patterns given")
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()
    renames = dict(rename or {})
    written: list[Path] = []

    with _open_members(archive) as members:
        for member in members:
            if not _selected(member.name, include, exclude):
                continue
            relative = _target_path(member.name, flatten=flatten, prefix=prefix)
            if relative.name in renames:
                relative = relative.with_name(renames[relative.name])
            target = (root / relative).resolve()
            if not target.is_relative_to(root):
                raise ExtractionError(f"{archive}: unsafe path detected in archive: {member.name}")
            if target in written:
                LOGGER.warning("archive %s: %s overwrites an earlier member at %s", archive, member.name, target)
            try:
                with member.open() as source, atomic_path(target) as temporary, temporary.open("wb") as sink:
                    shutil.copyfileobj(source, sink)
            except _READ_ERRORS as exc:
                raise ExtractionError(f"{archive}: cannot read member {member.name}: {exc}") from exc
            written.append(target)

    if not written:
        patterns = ", ".join(include)
        raise ExtractionError(f"{archive}: no entries match {patterns}")
    LOGGER.debug("extracted %d member(s) from %s into %s", len(written), archive, destination)
    return written


def list_members(archive: Path) -> list[str]:
    """Return the POSIX paths of all regular-file members of ``archive``."""

    with _open_members(archive) as members:
        return [member.name for member in members]


def _selected(name: str, include: Sequence[str], exclude: Sequence[str]) -> bool:
    if not any(fnmatchcase(name, pattern) for pattern in include):
        return False
    return not any(fnmatchcase(name, pattern) for pattern in exclude)


def _target_path(name: str, *, flatten: bool, prefix: str | None) -> PurePosixPath:
    member_path = PurePosixPath(name)
    relative = PurePosixPath(member_path.name) if flatten else member_path
    if prefix:
        relative = PurePosixPath(prefix) / relative
    return relative


@contextmanager
def _open_members(archive: Path) -> Iterator[list[_Member]]:
    if not archive.is_file():
        raise ExtractionError(f"{archive}: archive does not exist")
    handle: zipfile.ZipFile | tarfile.TarFile
    try:
        if zipfile.is_zipfile(archive):
            handle = zipfile.ZipFile(archive)
            members = [_zip_member(handle, info) for info in handle.infolist() if not info.is_dir()]
        elif tarfile.is_tarfile(archive):
            handle = tarfile.open(archive)
            members = [_tar_member(handle, info) for info in handle.getmembers() if info.isfile()]
        else:
            raise ExtractionError(f"{archive}: not a zip or tar archive")
    except _READ_ERRORS as exc:
        raise ExtractionError(f"{archive}: unreadable archive: {exc}") from exc
    with handle:
        yield members


def _zip_member(handle: zipfile.ZipFile, info: zipfile.ZipInfo) -> _Member:
    return _Member(name=info.filename, open=lambda: handle.open(info))


def _tar_member(handle: tarfile.TarFile, info: tarfile.TarInfo) -> _Member:
    def _open() -> IO[bytes]:
        stream = handle.extractfile(info)
        if stream is None:
            raise ExtractionError(f"{info.name}: member has no content")
        return stream

    return _Member(name=info.name, open=_open)


__all__ = ["extract_archive", "list_members"]
