# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Load ``z3turnkey.toml`` files into validated configuration models."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Final

from pydantic import ValidationError

from ..errors import ConfigError
from .models import TurnkeyConfig

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_NAME: Final[str] = "z3turnkey.toml"
INSTALL_NAME_TOOL_ENV: Final[str] = "Z3TURNKEY_INSTALL_NAME_TOOL"


def find_config_file(root: Path) -> Path | None:
    """Return the configuration file under ``root`` when one exists."""

    candidate = root / CONFIG_FILE_NAME
    return candidate if candidate.is_file() else None


def load_config(
    path: Path | None = None,
    *,
    root: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TurnkeyConfig:
    """Load configuration from ``path`` or fall back to the built-in defaults.

    Relative paths inside the file resolve against the file's directory (or
    ``root`` when no file is used).

    Args:
        path: Explicit configuration file. ``None`` searches ``root``.
        root: Project root used for discovery and relative path resolution.
        environ: Environment used for overrides; defaults to ``os.environ``.

    Returns:
        TurnkeyConfig: Validated configuration.

    Raises:
        ConfigError: If the file is unreadable, not TOML, or fails validation.
    """

    base = (root or Path.cwd()).resolve()
    if path is None:
        path = find_config_file(base)
    raw: dict[str, object] = {}
    if path is not None:
        raw = _read_toml(path)
        base = path.resolve().parent
        LOGGER.debug("loaded configuration from %s", path)

    try:
        config = TurnkeyConfig.model_validate(raw)
    except ValidationError as exc:
        source = str(path) if path is not None else "defaults"
        raise ConfigError(f"Invalid configuration in {source}:\n{exc}") from exc

    _anchor_paths(config, base)
    _apply_environment(config, os.environ if environ is None else environ)
    return config


def _read_toml(path: Path) -> dict[str, object]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file {path} is not valid TOML: {exc}") from exc


def _anchor_paths(config: TurnkeyConfig, base: Path) -> None:
    if not config.fetch.archive_dir.is_absolute():
        config.fetch.archive_dir = base / config.fetch.archive_dir
    if not config.output.directory.is_absolute():
        config.output.directory = base / config.output.directory


def _apply_environment(config: TurnkeyConfig, environ: Mapping[str, str]) -> None:
    tool = environ.get(INSTALL_NAME_TOOL_ENV, "").strip()
    if tool:
        LOGGER.debug("install_name_tool overridden via %s=%s", INSTALL_NAME_TOOL_ENV, tool)
        config.link_editor.tool = tool


__all__ = ["CONFIG_FILE_NAME", "INSTALL_NAME_TOOL_ENV", "find_config_file", "load_config"]
