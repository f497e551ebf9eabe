# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Local build driver wiring the fetch, rewrite, patch and package stages."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .archives import fetch_archive
from .config.models import DistributionDescriptor, TurnkeyConfig
from .core.buildlog import BuildLog
from .errors import TurnkeyError
from .packaging import (
    PackageLayout,
    Packager,
    PlatformOutcome,
    SourceOutcome,
    SourceSetBuilder,
    raise_for_failures,
)
from .packaging.pipeline import Fetcher
from .packaging.sources import SOURCE_SCOPE

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BuildReport:
    """Outcomes of every platform pipeline plus the source set."""

    platforms: tuple[PlatformOutcome, ...]
    sources: SourceOutcome | None
    layout: PackageLayout
    log: BuildLog = field(repr=False)

    @property
    def errors(self) -> list[tuple[str, BaseException]]:
        """Return ``(scope, error)`` pairs for every failure, platforms first."""

        collected: list[tuple[str, BaseException]] = [
            (outcome.label, outcome.error) for outcome in self.platforms if outcome.error is not None
        ]
        if self.sources is not None and self.sources.error is not None:
            collected.append((SOURCE_SCOPE, self.sources.error))
        return collected

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise the source-set error, else :class:`IncompletePackageError` for platforms."""

        if self.sources is not None and self.sources.error is not None:
            raise self.sources.error
        raise_for_failures(self.platforms)


class BuildRunner:
    """Run one packaging build for a configuration."""

    def __init__(self, config: TurnkeyConfig, *, fetcher: Fetcher = fetch_archive) -> None:
        self.config = config
        self.log = BuildLog()
        self.layout = PackageLayout.from_config(config)
        self._fetcher = fetcher

    def select(self, labels: Sequence[str]) -> list[DistributionDescriptor]:
        """Return the configured distributions named by ``labels`` (name or ``os/arch``)."""

        if not labels:
            return list(self.config.distributions)
        wanted = set(labels)
        selected = [d for d in self.config.distributions if d.name in wanted or d.label in wanted]
        known = {d.name for d in selected} | {d.label for d in selected}
        unknown = sorted(wanted - known)
        if unknown:
            raise TurnkeyError(f"unknown distribution(s): {', '.join(unknown)}")
        return selected

    def run(
        self,
        *,
        platforms: Sequence[str] = (),
        include_binaries: bool = True,
        include_sources: bool = True,
    ) -> BuildReport:
        """Package binaries and sources, collecting every failure.

        Args:
            platforms: Distribution names or ``os/arch`` labels; empty selects all.
            include_binaries: Run the platform pipelines.
            include_sources: Build the Java source set when enabled in config.

        Returns:
            BuildReport: Per-platform and source-set outcomes.
        """

        outcomes: list[PlatformOutcome] = []
        if include_binaries:
            packager = Packager(self.config, layout=self.layout, log=self.log, fetcher=self._fetcher)
            outcomes = packager.package(self.select(platforms))

        sources: SourceOutcome | None = None
        if include_sources and self.config.source.enabled:
            builder = SourceSetBuilder(self.config, self.layout, self.log, fetcher=self._fetcher)
            try:
                sources = SourceOutcome(files=builder.build())
            except (TurnkeyError, OSError) as exc:
                LOGGER.error("source set failed: %s", exc)
                self.log.record(SOURCE_SCOPE, "failed", str(exc))
                sources = SourceOutcome(error=exc)

        report = BuildReport(platforms=tuple(outcomes), sources=sources, layout=self.layout, log=self.log)
        if report.ok:
            LOGGER.info("build complete: %d platform(s)", len(outcomes))
        return report


__all__ = ["BuildReport", "BuildRunner"]
