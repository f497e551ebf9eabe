# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Configuration models and loading."""

from __future__ import annotations

from .loader import CONFIG_FILE_NAME, INSTALL_NAME_TOOL_ENV, find_config_file, load_config
from .models import (
    DistributionDescriptor,
    FetchConfig,
    GeneratorScript,
    LinkEditorConfig,
    LinkEditorStrategy,
    OutputConfig,
    ProjectConfig,
    SourceConfig,
    TurnkeyConfig,
    default_distributions,
    package_to_path,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "INSTALL_NAME_TOOL_ENV",
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
    "find_config_file",
    "load_config",
    "package_to_path",
]
