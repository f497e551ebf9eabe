# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Run the Z3 Java code generators and collect the hand-written API sources."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Final

from ..core.filesystem import copy_file_atomic
from ..core.process import CommandOptions, SubprocessExecutionError, run_command
from ..errors import GeneratorError

LOGGER = logging.getLogger(__name__)

HEADER_GLOB: Final[str] = "z3*.h"
HEADER_EXCLUDE: Final[str] = "*v1*"
JAVA_API_DIR: Final[tuple[str, ...]] = ("src", "api", "java")
SCRIPTS_DIR: Final[str] = "scripts"
DEFAULT_GENERATOR_TIMEOUT: Final[float] = 600.0


def api_headers(source_root: Path) -> list[Path]:
    """Return the public ``z3*.h`` headers the generators consume, sorted."""

    api_dir = source_root / "src" / "api"
    headers = [
        path
        for path in api_dir.glob(HEADER_GLOB)
        if path.is_file() and not fnmatchcase(path.name, HEADER_EXCLUDE)
    ]
    if not headers:
        raise GeneratorError(f"{api_dir}: no {HEADER_GLOB} headers found")
    return sorted(headers)


def copy_java_api_sources(source_root: Path, destination: Path) -> list[Path]:
    """Copy the non-generated ``src/api/java/**/*.java`` files into ``destination``.

    Args:
        source_root: Extracted Z3 source tree.
        destination: Package directory of the output source set.

    Returns:
        list[Path]: Copied files.

    Raises:
        GeneratorError: If the Java API directory holds no sources.
    """

    java_dir = source_root.joinpath(*JAVA_API_DIR)
    copied = [
        copy_file_atomic(path, destination / path.relative_to(java_dir))
        for path in sorted(java_dir.rglob("*.java"))
        if path.is_file()
    ]
    if not copied:
        raise GeneratorError(f"{java_dir}: no Java API sources found")
    LOGGER.debug("copied %d Java API source(s) from %s", len(copied), java_dir)
    return copied


def run_generator(
    script: str,
    *,
    source_root: Path,
    python: str,
    java_package: str,
    output_dir: Path,
    headers: Sequence[Path],
    timeout: float = DEFAULT_GENERATOR_TIMEOUT,
) -> None:
    """Invoke ``scripts/<script>.py`` from the Z3 source tree.

    Args:
        script: Script name without directory or ``.py`` suffix.
        source_root: Extracted Z3 source tree, used as working directory.
        python: Interpreter used to run the script.
        java_package: Value for ``--java-package-name``.
        output_dir: Value for ``--java-output-dir``.
        headers: Header files passed as positional arguments.
        timeout: Seconds before the script is abandoned.

    Raises:
        GeneratorError: If the script is missing, cannot start, or fails.
    """

    script_path = source_root / SCRIPTS_DIR / f"{script}.py"
    if not script_path.is_file():
        raise GeneratorError(f"generator script {script_path} does not exist")
    output_dir.mkdir(parents=True, exist_ok=True)
    command = [
        python,
        "-B",
        str(script_path),
        "--java-package-name",
        java_package,
        "--java-output-dir",
        str(output_dir),
        *(str(header) for header in headers),
    ]
    LOGGER.info("running generator %s", script)
    try:
        completed = run_command(command, options=CommandOptions(cwd=source_root, timeout=timeout))
    except FileNotFoundError as exc:
        raise GeneratorError(f"cannot run generator {script}: {exc}") from exc
    except SubprocessExecutionError as exc:
        detail = (exc.stderr or "").strip()
        raise GeneratorError(f"generator {script} failed with status {exc.returncode}: {detail}") from exc
    for line in (completed.stdout or "").splitlines():
        LOGGER.debug("%s: %s", script, line)


__all__ = ["api_headers", "copy_java_api_sources", "run_generator"]
