# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Per-platform state machine: fetch, extract, inspect, rewrite, package."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from ..archives import extract_archive, fetch_archive
from ..binary import inspect_library, rewrite_library, rewrite_with_install_name_tool
from ..binary.model import ContainerFormat, LibraryArtifact, LinkEditPlan
from ..config.models import DistributionDescriptor, LinkEditorStrategy, TurnkeyConfig
from ..core.buildlog import BuildLog
from ..core.filesystem import discard_directory, promote_directory, staging_directory
from ..errors import ExtractionError, PackagingError, TurnkeyError
from .layout import PackageLayout
from .plan import build_link_edit_plan

LOGGER = logging.getLogger(__name__)

Fetcher = Callable[..., Path]


class PlatformState(str, Enum):
    """States of one platform pipeline. ``FAILED`` is terminal."""

    PENDING = "pending"
    FETCHED = "fetched"
    EXTRACTED = "extracted"
    INSPECTED = "inspected"
    REWRITTEN = "rewritten"
    PACKAGED = "packaged"
    FAILED = "failed"


_TRANSITIONS: dict[PlatformState, frozenset[PlatformState]] = {
    PlatformState.PENDING: frozenset({PlatformState.FETCHED, PlatformState.FAILED}),
    PlatformState.FETCHED: frozenset({PlatformState.EXTRACTED, PlatformState.FAILED}),
    PlatformState.EXTRACTED: frozenset({PlatformState.INSPECTED, PlatformState.FAILED}),
    PlatformState.INSPECTED: frozenset({PlatformState.REWRITTEN, PlatformState.FAILED}),
    PlatformState.REWRITTEN: frozenset({PlatformState.PACKAGED, PlatformState.FAILED}),
    PlatformState.PACKAGED: frozenset(),
    PlatformState.FAILED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class PlatformOutcome:
    """Terminal result of one platform pipeline.

    Attributes:
        descriptor: Platform that was processed.
        state: ``PACKAGED`` or ``FAILED``.
        files: Files promoted into the platform directory.
        error: Cause of failure, when ``state`` is ``FAILED``.
        failed_stage: Last state reached before the failure.
    """

    descriptor: DistributionDescriptor
    state: PlatformState
    files: tuple[Path, ...] = ()
    error: BaseException | None = None
    failed_stage: PlatformState | None = None

    @property
    def label(self) -> str:
        return self.descriptor.label

    @property
    def ok(self) -> bool:
        return self.state is PlatformState.PACKAGED


class PlatformPipeline:
    """Run one distribution through every packaging stage.

    The pipeline writes only into its own staging directory, which replaces
    ``native/<os>/<arch>/`` once every stage succeeded.
    """

    def __init__(
        self,
        descriptor: DistributionDescriptor,
        config: TurnkeyConfig,
        layout: PackageLayout,
        log: BuildLog,
        *,
        fetcher: Fetcher = fetch_archive,
    ) -> None:
        self.descriptor = descriptor
        self.config = config
        self.layout = layout
        self.log = log
        self._fetcher = fetcher
        self.state = PlatformState.PENDING

    def _advance(self, state: PlatformState, message: str = "") -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"{self.descriptor.label}: illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.log.record(self.descriptor.label, state.value, message)

    @property
    def version(self) -> str:
        return self.config.project.version

    def archive_url(self) -> str:
        return self.config.fetch.binary_archive_url(self.descriptor, version=self.version)

    def archive_path(self) -> Path:
        url = self.archive_url()
        name = PurePosixPath(urlparse(url).path).name or f"z3-{self.version}-{self.descriptor.name}.zip"
        return self.config.fetch.archive_dir / name

    def run(self) -> PlatformOutcome:
        """Execute every stage and return the terminal outcome; never raises for platform errors."""

        staging: Path | None = None
        try:
            archive = self._fetch()
            staging = staging_directory(self.layout.platform_dir(self.descriptor))
            renames = self._extract(archive, staging)
            artifacts = self._inspect(staging)
            artifacts = self._rewrite(artifacts, renames)
            files = self._package(staging, artifacts)
        except (TurnkeyError, OSError) as exc:
            return self._fail(exc, staging)
        except Exception as exc:
            LOGGER.debug("%s: unexpected error", self.descriptor.label, exc_info=True)
            wrapped = PackagingError(self.descriptor.label, exc)
            wrapped.__cause__ = exc
            return self._fail(wrapped, staging)
        return PlatformOutcome(descriptor=self.descriptor, state=PlatformState.PACKAGED, files=files)

    def _fail(self, exc: BaseException, staging: Path | None) -> PlatformOutcome:
        failed_stage = self.state
        self._advance(PlatformState.FAILED, str(exc))
        LOGGER.error("%s failed after %s: %s", self.descriptor.label, failed_stage.value, exc)
        if staging is not None:
            discard_directory(staging)
        return PlatformOutcome(
            descriptor=self.descriptor,
            state=PlatformState.FAILED,
            error=exc,
            failed_stage=failed_stage,
        )

    def _fetch(self) -> Path:
        archive = self._fetcher(
            self.archive_url(),
            self.archive_path(),
            timeout=self.config.fetch.timeout,
            overwrite=self.config.fetch.overwrite,
        )
        self._advance(PlatformState.FETCHED, str(archive))
        return archive

    def _extract(self, archive: Path, staging: Path) -> dict[str, str]:
        members = {
            library: self.descriptor.archive_member(library, version=self.version)
            for library in self.config.project.libraries
        }
        renames = {
            PurePosixPath(member).name: self.descriptor.packaged_name(library) for library, member in members.items()
        }
        extract_archive(archive, staging, include=list(members.values()), flatten=True, rename=renames)
        missing = [
            member for member in members.values() if not (staging / renames[PurePosixPath(member).name]).is_file()
        ]
        if missing:
            raise ExtractionError(f"{archive}: missing {', '.join(missing)}")
        self._advance(PlatformState.EXTRACTED, ", ".join(sorted(renames.values())))
        return renames

    def _inspect(self, staging: Path) -> list[LibraryArtifact]:
        artifacts = [
            inspect_library(staging / self.descriptor.packaged_name(library), fat_slice=self.descriptor.fat_slice)
            for library in self.config.project.libraries
        ]
        summary = "; ".join(f"{item.name} ({item.format.value}, {item.machine})" for item in artifacts)
        self._advance(PlatformState.INSPECTED, summary)
        return artifacts

    def _rewrite(self, artifacts: list[LibraryArtifact], renames: dict[str, str]) -> list[LibraryArtifact]:
        if not self.descriptor.post_link_patch:
            self._advance(PlatformState.REWRITTEN, "no post-link patch configured")
            return artifacts
        plans = build_link_edit_plan(self.descriptor, artifacts, renames)
        rewritten = [self._rewrite_one(artifact, plans[artifact.name]) for artifact in artifacts]
        self._advance(PlatformState.REWRITTEN, f"{len(rewritten)} librar{'y' if len(rewritten) == 1 else 'ies'}")
        return rewritten

    def _rewrite_one(self, artifact: LibraryArtifact, plan: LinkEditPlan) -> LibraryArtifact:
        editor = self.config.link_editor
        if editor.strategy is LinkEditorStrategy.INSTALL_NAME_TOOL and artifact.format is ContainerFormat.MACHO:
            return rewrite_with_install_name_tool(
                artifact,
                plan,
                tool=editor.tool,
                fat_slice=self.descriptor.fat_slice,
            )
        return rewrite_library(artifact, plan, fat_slice=self.descriptor.fat_slice)

    def _package(self, staging: Path, artifacts: list[LibraryArtifact]) -> tuple[Path, ...]:
        if not artifacts:
            raise ExtractionError(f"{self.descriptor.label}: nothing to package")
        destination = promote_directory(staging, self.layout.platform_dir(self.descriptor))
        files = tuple(sorted(destination / artifact.name for artifact in artifacts))
        self.layout.record_platform(self.descriptor, files)
        self._advance(PlatformState.PACKAGED, str(destination))
        return files


__all__ = ["PlatformOutcome", "PlatformPipeline", "PlatformState"]
