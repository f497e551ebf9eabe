# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Java source generation and patching."""

from __future__ import annotations

from .generator import api_headers, copy_java_api_sources, run_generator
from .patcher import SourceRewriteTarget, patch_source, patch_source_file

__all__ = [
    "SourceRewriteTarget",
    "api_headers",
    "copy_java_api_sources",
    "patch_source",
    "patch_source_file",
    "run_generator",
]
