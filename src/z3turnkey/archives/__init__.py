# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Archive download and extraction."""

from __future__ import annotations

from .extract import extract_archive, list_members
from .fetch import fetch_archive

__all__ = ["extract_archive", "fetch_archive", "list_members"]
