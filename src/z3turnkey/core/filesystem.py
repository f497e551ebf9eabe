# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Write-then-rename helpers so interrupted runs never leave partial artefacts."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


@contextmanager
def atomic_path(destination: Path) -> Iterator[Path]:
    """Yield a temporary sibling of ``destination`` and rename it on success.

    The temporary file lives in the same directory so the final
    :func:`os.replace` stays on one filesystem. When the body raises, the
    temporary file is removed and ``destination`` is left untouched.

    Args:
        destination: Final path of the file being produced.

    Yields:
        Path: Temporary path the caller writes to.
    """

    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
    os.close(fd)
    temporary = Path(name)
    try:
        yield temporary
        os.replace(temporary, destination)
    finally:
        temporary.unlink(missing_ok=True)


def write_bytes_atomic(destination: Path, payload: bytes) -> Path:
    """Write ``payload`` to ``destination`` via a temporary sibling."""

    with atomic_path(destination) as temporary:
        temporary.write_bytes(payload)
    return destination


def write_text_atomic(destination: Path, text: str) -> Path:
    """Write UTF-8 ``text`` to ``destination`` via a temporary sibling."""

    return write_bytes_atomic(destination, text.encode("utf-8"))


def copy_file_atomic(source: Path, destination: Path) -> Path:
    """Copy ``source`` to ``destination`` preserving permission bits."""

    with atomic_path(destination) as temporary:
        shutil.copy2(source, temporary)
    return destination


def staging_directory(destination: Path) -> Path:
    """Create and return a fresh staging directory next to ``destination``."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f".{destination.name}.", suffix=".staging", dir=destination.parent))


def promote_directory(staging: Path, destination: Path) -> Path:
    """Replace ``destination`` with the populated ``staging`` directory.

    The previous directory, if any, is moved aside first and deleted after the
    rename so a reader never observes a half-populated ``destination``.

    Args:
        staging: Fully written staging directory.
        destination: Final directory path.

    Returns:
        Path: ``destination`` after promotion.
    """

    retired: Path | None = None
    if destination.exists():
        retired = destination.with_name(f".{destination.name}.retired")
        if retired.exists():
            shutil.rmtree(retired)
        os.replace(destination, retired)
    os.replace(staging, destination)
    if retired is not None:
        shutil.rmtree(retired, ignore_errors=True)
    return destination


def discard_directory(path: Path) -> None:
    """Remove a staging directory left behind by a failed stage."""

    shutil.rmtree(path, ignore_errors=True)


__all__ = [
    "atomic_path",
    "copy_file_atomic",
    "discard_directory",
    "promote_directory",
    "staging_directory",
    "write_bytes_atomic",
    "write_text_atomic",
]
