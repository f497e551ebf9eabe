# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""CLI command registry."""

from __future__ import annotations

import typer

from . import build, inspect, patch_source, rewrite

__all__ = ["register_commands"]


def register_commands(app: typer.Typer) -> None:
    """Register every built-in command on ``app``.

    Args:
        app: Typer application receiving command registrations.
    """

    build.register(app)
    inspect.register(app)
    rewrite.register(app)
    patch_source.register(app)
