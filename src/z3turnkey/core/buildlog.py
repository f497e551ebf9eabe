# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Append-only build log shared by concurrently running platform pipelines."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass
from threading import Lock

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BuildLogEntry:
    """Single event recorded by a pipeline stage."""

    scope: str
    stage: str
    message: str
    timestamp: float


class BuildLog:
    """Thread-safe, append-only record of pipeline events.

    Entries can be appended from any worker thread; readers receive snapshots,
    never the live list.
    """

    def __init__(self) -> None:
        self._entries: list[BuildLogEntry] = []
        self._lock = Lock()

    def record(self, scope: str, stage: str, message: str = "") -> BuildLogEntry:
        """Append an event and mirror it to the module logger.

        Args:
            scope: Platform label or ``"sources"``.
            stage: Pipeline state the event belongs to.
            message: Optional free-form detail.

        Returns:
            BuildLogEntry: The recorded entry.
        """

        entry = BuildLogEntry(scope=scope, stage=stage, message=message, timestamp=time.time())
        with self._lock:
            self._entries.append(entry)
        LOGGER.debug("scope=%s stage=%s %s", scope, stage, message)
        return entry

    def entries(self, scope: str | None = None) -> tuple[BuildLogEntry, ...]:
        """Return a snapshot of recorded entries, optionally filtered by scope."""

        with self._lock:
            snapshot = tuple(self._entries)
        if scope is None:
            return snapshot
        return tuple(entry for entry in snapshot if entry.scope == scope)

    def __iter__(self) -> Iterator[BuildLogEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["BuildLog", "BuildLogEntry"]
