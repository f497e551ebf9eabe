# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Cross-cutting helpers: console output, subprocesses, atomic filesystem writes."""

from __future__ import annotations

from .buildlog import BuildLog, BuildLogEntry
from .process import CommandOptions, SubprocessExecutionError, run_command

__all__ = [
    "BuildLog",
    "BuildLogEntry",
    "CommandOptions",
    "SubprocessExecutionError",
    "run_command",
]
