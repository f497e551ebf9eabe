# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Run every platform pipeline and collect their outcomes."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace

from ..archives import fetch_archive
from ..config.models import DistributionDescriptor, TurnkeyConfig
from ..core.buildlog import BuildLog
from ..errors import IncompletePackageError, PackagingError
from .layout import PackageLayout
from .pipeline import Fetcher, PlatformOutcome, PlatformPipeline, PlatformState

LOGGER = logging.getLogger(__name__)


def raise_for_failures(outcomes: Sequence[PlatformOutcome]) -> None:
    """Raise :class:`IncompletePackageError` naming every failed platform."""

    failures = {
        outcome.label: outcome.error or RuntimeError("platform produced no files")
        for outcome in outcomes
        if not outcome.ok or not outcome.files
    }
    if failures:
        raise IncompletePackageError(failures)


class Packager:
    """Package all configured distributions in parallel.

    Pipelines share only the read-only configuration, the layout (whose
    bookkeeping is locked) and the append-only :class:`BuildLog`.
    """

    def __init__(
        self,
        config: TurnkeyConfig,
        *,
        layout: PackageLayout | None = None,
        log: BuildLog | None = None,
        fetcher: Fetcher = fetch_archive,
    ) -> None:
        self.config = config
        self.layout = layout or PackageLayout.from_config(config)
        self.log = log or BuildLog()
        self._fetcher = fetcher

    def pipeline(self, descriptor: DistributionDescriptor) -> PlatformPipeline:
        return PlatformPipeline(descriptor, self.config, self.layout, self.log, fetcher=self._fetcher)

    def package(self, descriptors: Sequence[DistributionDescriptor] | None = None) -> list[PlatformOutcome]:
        """Run a pipeline per descriptor and return outcomes in configuration order.

        Args:
            descriptors: Subset of the configured distributions; all by default.

        Returns:
            list[PlatformOutcome]: One outcome per descriptor, failures included.
        """

        selected = list(descriptors if descriptors is not None else self.config.distributions)
        jobs = max(1, min(self.config.output.jobs, len(selected)))
        outcomes: dict[str, PlatformOutcome] = {}
        if jobs == 1:
            for descriptor in selected:
                outcomes[descriptor.label] = self.pipeline(descriptor).run()
        else:
            with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="z3turnkey") as executor:
                future_map = {executor.submit(self.pipeline(descriptor).run): descriptor for descriptor in selected}
                for future in as_completed(future_map):
                    descriptor = future_map[future]
                    outcomes[descriptor.label] = future.result()
        for label in self.layout.missing(selected):
            outcome = outcomes[label]
            if outcome.ok:
                outcomes[label] = replace(
                    outcome,
                    state=PlatformState.FAILED,
                    error=PackagingError(label, RuntimeError("no files recorded in the output layout")),
                    failed_stage=PlatformState.PACKAGED,
                )
        for descriptor in selected:
            outcome = outcomes[descriptor.label]
            LOGGER.info("%s: %s", descriptor.label, outcome.state.value)
        return [outcomes[descriptor.label] for descriptor in selected]

    def run(self, descriptors: Sequence[DistributionDescriptor] | None = None) -> list[PlatformOutcome]:
        """Package every platform or raise :class:`IncompletePackageError`."""

        outcomes = self.package(descriptors)
        raise_for_failures(outcomes)
        return outcomes


__all__ = ["Packager", "raise_for_failures"]
