# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Assemble rewritten libraries and patched sources into the output layout."""

from __future__ import annotations

from .layout import PackageLayout
from .packager import Packager, raise_for_failures
from .pipeline import PlatformOutcome, PlatformPipeline, PlatformState
from .plan import build_link_edit_plan, sibling_reference
from .sources import SourceOutcome, SourceSetBuilder

__all__ = [
    "PackageLayout",
    "Packager",
    "PlatformOutcome",
    "PlatformPipeline",
    "PlatformState",
    "SourceOutcome",
    "SourceSetBuilder",
    "build_link_edit_plan",
    "raise_for_failures",
    "sibling_reference",
]
