# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Shared-library inspection and link-path rewriting."""

from __future__ import annotations

from .formats import sniff_format
from .inspector import inspect_library, open_image
from .install_name_tool import (
    INSTALL_NAME_TOOL_CANDIDATES,
    find_install_name_tool,
    rewrite_with_install_name_tool,
)
from .model import (
    ContainerFormat,
    DynamicLinkTable,
    LibraryArtifact,
    LinkEditPlan,
    LinkSlot,
    SlotKind,
)
from .rewriter import rewrite_library

__all__ = [
    "INSTALL_NAME_TOOL_CANDIDATES",
    "ContainerFormat",
    "DynamicLinkTable",
    "LibraryArtifact",
    "LinkEditPlan",
    "LinkSlot",
    "SlotKind",
    "find_install_name_tool",
    "inspect_library",
    "open_image",
    "rewrite_library",
    "rewrite_with_install_name_tool",
    "sniff_format",
]
