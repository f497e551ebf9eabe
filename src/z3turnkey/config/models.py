# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Configuration models for the z3-turnkey packaging pipeline."""

from __future__ import annotations

import math
import os
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_Z3_VERSION: Final[str] = "4.8.7"
DEFAULT_JAVA_PACKAGE: Final[str] = "com.microsoft.z3"
DEFAULT_BINARY_URL: Final[str] = (
    "https://github.com/Z3Prover/z3/releases/download/z3-{version}/z3-{version}-{distribution}.zip"
)
DEFAULT_SOURCE_URL: Final[str] = "https://github.com/Z3Prover/z3/archive/z3-{version}.zip"
DEFAULT_ARCHIVE_PATTERN: Final[str] = "z3-{version}-{distribution}/bin/lib{library}.{extension}"


def default_parallel_jobs() -> int:
    """Return 75% of available CPU cores (minimum of 1)."""

    cores = os.cpu_count() or 1
    return max(1, math.floor(cores * 0.75))


def package_to_path(package: str) -> PurePosixPath:
    """Convert a Java package name to its relative source directory."""

    return PurePosixPath(*package.split("."))


class LinkEditorStrategy(str, Enum):
    """Enumerate how Mach-O link tables are rewritten."""

    BUILTIN = "builtin"
    INSTALL_NAME_TOOL = "install-name-tool"


class DistributionDescriptor(BaseModel):
    """Operating system and CPU metadata for one prebuilt Z3 distribution."""

    model_config = ConfigDict(frozen=True)

    name: str
    os: str
    arch: str
    extension: str
    has_lib_prefix: bool = True
    post_link_patch: bool = False
    archive_pattern: str = DEFAULT_ARCHIVE_PATTERN
    fat_slice: str | None = None

    @field_validator("name", "os", "arch", "extension")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("distribution fields must be non-empty")
        if "/" in stripped or "\\" in stripped:
            raise ValueError(f"distribution field '{stripped}' must not contain path separators")
        return stripped

    @property
    def label(self) -> str:
        """Return the ``<os>/<arch>`` label used in reports and output paths."""

        return f"{self.os}/{self.arch}"

    @property
    def lib_prefix(self) -> str:
        return "lib" if self.has_lib_prefix else ""

    def archive_member(self, library: str, *, version: str) -> str:
        """Return the archive-internal path of ``library`` for this distribution."""

        return self.archive_pattern.format(
            version=version,
            distribution=self.name,
            library=library,
            extension=self.extension,
        )

    def packaged_name(self, library: str) -> str:
        """Return the file name ``library`` is shipped under in the resource tree."""

        return f"{self.lib_prefix}{library}.{self.extension}"


def default_distributions() -> list[DistributionDescriptor]:
    """Return the OS/CPU combinations upstream Z3 releases are published for."""

    return [
        DistributionDescriptor(name="x64-osx-10.14.6", os="osx", arch="amd64", extension="dylib", post_link_patch=True),
        DistributionDescriptor(name="x64-ubuntu-16.04", os="linux", arch="amd64", extension="so"),
        DistributionDescriptor(name="x64-win", os="windows", arch="amd64", extension="dll", has_lib_prefix=False),
        DistributionDescriptor(name="x86-win", os="windows", arch="x86", extension="dll", has_lib_prefix=False),
    ]


class ProjectConfig(BaseModel):
    """Versioning and naming of the packaged artefact."""

    model_config = ConfigDict(validate_assignment=True)

    version: str = DEFAULT_Z3_VERSION
    package: str = DEFAULT_JAVA_PACKAGE
    libraries: list[str] = Field(default_factory=lambda: ["z3", "z3java"])

    @property
    def package_path(self) -> PurePosixPath:
        return package_to_path(self.package)


class FetchConfig(BaseModel):
    """Where archives come from and how long a download may block."""

    model_config = ConfigDict(validate_assignment=True)

    binary_url: str = DEFAULT_BINARY_URL
    source_url: str = DEFAULT_SOURCE_URL
    timeout: float = Field(default=60.0, gt=0)
    archive_dir: Path = Field(default_factory=lambda: Path("build") / "archives")
    overwrite: bool = False

    def binary_archive_url(self, distribution: DistributionDescriptor, *, version: str) -> str:
        return self.binary_url.format(version=version, distribution=distribution.name)

    def source_archive_url(self, *, version: str) -> str:
        return self.source_url.format(version=version)


class GeneratorScript(BaseModel):
    """One Z3 code generator script and the package its output lands in."""

    model_config = ConfigDict(frozen=True)

    script: str
    output_package: str


class SourceConfig(BaseModel):
    """Generated Java sources and the static initializer rewrite."""

    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = True
    class_name: str = "Native"
    file_name: str = "Native.java"
    loader_call: str = "Z3Loader.loadZ3"
    arguments: list[str] = Field(default_factory=list)
    python: str = "python3"
    generators: list[GeneratorScript] = Field(
        default_factory=lambda: [
            GeneratorScript(script="update_api", output_package=DEFAULT_JAVA_PACKAGE),
            GeneratorScript(script="mk_consts_files", output_package=f"{DEFAULT_JAVA_PACKAGE}.enumerations"),
        ]
    )

    @field_validator("loader_call")
    @classmethod
    def _qualified_call(cls, value: str) -> str:
        parts = value.split(".")
        if not all(part.isidentifier() for part in parts):
            raise ValueError(f"'{value}' is not a valid (qualified) Java method name")
        return value


class LinkEditorConfig(BaseModel):
    """How Mach-O link tables are rewritten and which external tool to use."""

    model_config = ConfigDict(validate_assignment=True)

    strategy: LinkEditorStrategy = LinkEditorStrategy.BUILTIN
    tool: str | None = None


class OutputConfig(BaseModel):
    """Output directories and parallelism."""

    model_config = ConfigDict(validate_assignment=True)

    directory: Path = Field(default_factory=lambda: Path("build") / "turnkey")
    resource_prefix: str = "native"
    jobs: int = Field(default_factory=default_parallel_jobs, ge=1)

    @property
    def resources_dir(self) -> Path:
        return self.directory / "resources"

    @property
    def sources_dir(self) -> Path:
        return self.directory / "sources"

    @property
    def work_dir(self) -> Path:
        return self.directory / "work"


class TurnkeyConfig(BaseModel):
    """Top-level configuration consumed by the build driver."""

    model_config = ConfigDict(validate_assignment=True)

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    distributions: list[DistributionDescriptor] = Field(default_factory=default_distributions)
    source: SourceConfig = Field(default_factory=SourceConfig)
    link_editor: LinkEditorConfig = Field(default_factory=LinkEditorConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @model_validator(mode="after")
    def _unique_platforms(self) -> TurnkeyConfig:
        if not self.distributions:
            raise ValueError("at least one distribution must be configured")
        names: set[str] = set()
        labels: set[str] = set()
        for descriptor in self.distributions:
            if descriptor.name in names:
                raise ValueError(f"duplicate distribution name '{descriptor.name}'")
            if descriptor.label in labels:
                raise ValueError(f"two distributions target the same platform '{descriptor.label}'")
            names.add(descriptor.name)
            labels.add(descriptor.label)
        return self


__all__ = [
    "DistributionDescriptor",
    "FetchConfig",
    "GeneratorScript",
    "LinkEditorConfig",
    "LinkEditorStrategy",
    "OutputConfig",
    "ProjectConfig",
    "SourceConfig",
    "TurnkeyConfig",
    "default_distributions",
    "default_parallel_jobs",
    "package_to_path",
]
