# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Assemble the Java source set: API sources, generated bindings, patched loader."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Final
from urllib.parse import urlparse

from ..archives import extract_archive, fetch_archive
from ..config.models import TurnkeyConfig, package_to_path
from ..core.buildlog import BuildLog
from ..core.filesystem import discard_directory, promote_directory, staging_directory
from ..errors import ExtractionError, GeneratorError
from ..source.generator import api_headers, copy_java_api_sources, run_generator
from ..source.patcher import patch_source_file
from .layout import PackageLayout
from .pipeline import Fetcher

LOGGER = logging.getLogger(__name__)

SOURCE_SCOPE: Final[str] = "sources"
SOURCE_MEMBERS: Final[tuple[str, ...]] = ("*/scripts/*", "*/src/api/*")


@dataclass(frozen=True, slots=True)
class SourceOutcome:
    """Result of building the source set."""

    files: tuple[Path, ...] = ()
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SourceSetBuilder:
    """Produce ``sources/<package path>/...`` once per run."""

    def __init__(
        self,
        config: TurnkeyConfig,
        layout: PackageLayout,
        log: BuildLog,
        *,
        fetcher: Fetcher = fetch_archive,
    ) -> None:
        self.config = config
        self.layout = layout
        self.log = log
        self._fetcher = fetcher

    @property
    def version(self) -> str:
        return self.config.project.version

    def archive_path(self) -> Path:
        url = self.config.fetch.source_archive_url(version=self.version)
        name = PurePosixPath(urlparse(url).path).name or f"z3-{self.version}.zip"
        return self.config.fetch.archive_dir / f"source-{name}"

    def build(self) -> tuple[Path, ...]:
        """Fetch, generate and patch the Java sources.

        Returns:
            tuple[Path, ...]: Files of the promoted source tree.

        Raises:
            DownloadError: If the source archive cannot be fetched.
            ExtractionError: If the archive lacks the Z3 source layout.
            GeneratorError: If a generator script fails.
            ParseError: If the generated ``Native.java`` does not parse.
            AmbiguousTargetError: If its static initializer is not unique.
        """

        url = self.config.fetch.source_archive_url(version=self.version)
        archive = self._fetcher(
            url,
            self.archive_path(),
            timeout=self.config.fetch.timeout,
            overwrite=self.config.fetch.overwrite,
        )
        self.log.record(SOURCE_SCOPE, "fetched", str(archive))

        work = self.config.output.work_dir / "source"
        discard_directory(work)
        extract_archive(archive, work, include=SOURCE_MEMBERS)
        source_root = self._source_root(work)
        self.log.record(SOURCE_SCOPE, "extracted", str(source_root))

        staging = staging_directory(self.layout.sources_root)
        try:
            files = self._populate(source_root, staging)
            destination = promote_directory(staging, self.layout.sources_root)
        except BaseException:
            discard_directory(staging)
            raise
        promoted = tuple(destination / path.relative_to(staging) for path in files)
        self.layout.record_sources(promoted)
        self.log.record(SOURCE_SCOPE, "packaged", f"{len(promoted)} file(s)")
        return promoted

    def _source_root(self, work: Path) -> Path:
        expected = work / f"z3-z3-{self.version}"
        if (expected / "scripts").is_dir():
            return expected
        candidates = [child for child in work.iterdir() if (child / "scripts").is_dir()]
        if len(candidates) != 1:
            raise ExtractionError(f"{work}: cannot locate the Z3 source tree (found {len(candidates)} candidates)")
        return candidates[0]

    def _populate(self, source_root: Path, staging: Path) -> list[Path]:
        settings = self.config.source
        package = self.config.project.package
        package_dir = staging / package_to_path(package)

        copy_java_api_sources(source_root, package_dir)
        self.log.record(SOURCE_SCOPE, "copied", str(package_dir))

        headers = api_headers(source_root)
        for generator in settings.generators:
            (staging / package_to_path(generator.output_package)).mkdir(parents=True, exist_ok=True)
            run_generator(
                generator.script,
                source_root=source_root,
                python=settings.python,
                java_package=package,
                output_dir=package_dir,
                headers=headers,
            )
            self.log.record(SOURCE_SCOPE, "generated", generator.script)

        native = package_dir / settings.file_name
        if not native.is_file():
            raise GeneratorError(f"{native.name} was not generated in {package_dir}")
        patch_source_file(
            native,
            native,
            class_name=settings.class_name,
            loader_call=settings.loader_call,
            arguments=settings.arguments,
        )
        self.log.record(SOURCE_SCOPE, "patched", native.name)
        return sorted(path for path in staging.rglob("*") if path.is_file())


__all__ = ["SOURCE_SCOPE", "SourceOutcome", "SourceSetBuilder"]
