# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Output tree of a packaging run."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock

from ..config.models import DistributionDescriptor, TurnkeyConfig


@dataclass(slots=True)
class PackageLayout:
    """Map each ``native/<os>/<arch>/`` directory to the files packaged there.

    Attributes:
        resources_root: Root of the resource tree.
        sources_root: Root of the Java source tree.
        resource_prefix: First path component below ``resources_root``.
    """

    resources_root: Path
    sources_root: Path
    resource_prefix: str = "native"
    _platforms: dict[str, tuple[Path, ...]] = field(default_factory=dict, init=False, repr=False)
    _sources: tuple[Path, ...] = field(default=(), init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    @classmethod
    def from_config(cls, config: TurnkeyConfig) -> PackageLayout:
        return cls(
            resources_root=config.output.resources_dir,
            sources_root=config.output.sources_dir,
            resource_prefix=config.output.resource_prefix,
        )

    def platform_dir(self, descriptor: DistributionDescriptor) -> Path:
        return self.resources_root / self.resource_prefix / descriptor.os / descriptor.arch

    def record_platform(self, descriptor: DistributionDescriptor, files: Iterable[Path]) -> None:
        """Remember the files promoted into ``descriptor``'s directory."""

        with self._lock:
            if descriptor.label in self._platforms:
                raise ValueError(f"platform {descriptor.label} was packaged twice")
            self._platforms[descriptor.label] = tuple(files)

    def record_sources(self, files: Iterable[Path]) -> None:
        with self._lock:
            self._sources = tuple(files)

    @property
    def platforms(self) -> dict[str, tuple[Path, ...]]:
        with self._lock:
            return dict(self._platforms)

    @property
    def sources(self) -> tuple[Path, ...]:
        with self._lock:
            return self._sources

    def missing(self, descriptors: Sequence[DistributionDescriptor]) -> list[str]:
        """Return labels of ``descriptors`` without a non-empty package entry."""

        packaged = self.platforms
        return [descriptor.label for descriptor in descriptors if not packaged.get(descriptor.label)]


__all__ = ["PackageLayout"]
