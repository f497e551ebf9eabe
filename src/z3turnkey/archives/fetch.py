# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Download remote archives into the local cache."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Final
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests
from urllib3.exceptions import ReadTimeoutError

from ..core.filesystem import atomic_path
from ..errors import DownloadError

LOGGER = logging.getLogger(__name__)

_HTTP_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https"})
_FILE_SCHEME: Final[str] = "file"
_CHUNK_SIZE: Final[int] = 1024 * 1024
_USER_AGENT: Final[str] = "z3-turnkey/1.0"


def fetch_archive(
    url: str,
    destination: Path,
    *,
    timeout: float,
    overwrite: bool = False,
) -> Path:
    """Ensure ``destination`` holds the content found at ``url``.

    Existing files are treated as cached and returned as-is unless
    ``overwrite`` is set. The payload is streamed into a temporary sibling and
    renamed into place, so an interrupted download never leaves a partial
    archive behind.

    Args:
        url: Remote (``http``/``https``) or local (``file``) archive location.
        destination: Cache path for the archive.
        timeout: Seconds a connect or read may block before failing.
        overwrite: Re-download even when ``destination`` exists.

    Returns:
        Path: ``destination``.

    Raises:
        DownloadError: If the resource is unreachable, times out, or answers
            with a non-success status.
    """

    if destination.exists() and not overwrite:
        LOGGER.debug("cached archive %s satisfies %s", destination, url)
        return destination

    scheme = urlparse(url).scheme.lower()
    if scheme == _FILE_SCHEME:
        return _copy_local(url, destination)
    if scheme not in _HTTP_SCHEMES:
        raise DownloadError(url, reason=f"unsupported scheme '{scheme or '<none>'}'")

    LOGGER.info("downloading %s", url)
    try:
        with requests.get(
            url,
            stream=True,
            timeout=timeout,
            headers={"User-Agent": _USER_AGENT},
        ) as response:
            if not response.ok:
                raise DownloadError(url, status=response.status_code, reason=response.reason or None)
            with atomic_path(destination) as temporary, temporary.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
    except requests.Timeout as exc:
        raise DownloadError(url, reason="timeout") from exc
    except requests.ConnectionError as exc:
        if _is_read_timeout(exc):
            raise DownloadError(url, reason="timeout") from exc
        raise DownloadError(url, reason=str(exc) or type(exc).__name__) from exc
    except requests.RequestException as exc:
        raise DownloadError(url, reason=str(exc) or type(exc).__name__) from exc
    return destination


def _is_read_timeout(exc: requests.ConnectionError) -> bool:
    # A body that stalls after the headers surfaces from iter_content as a
    # ConnectionError wrapping urllib3's ReadTimeoutError.
    if any(isinstance(arg, ReadTimeoutError) for arg in exc.args):
        return True
    return isinstance(exc.__cause__, ReadTimeoutError) or isinstance(exc.__context__, ReadTimeoutError)


def _copy_local(url: str, destination: Path) -> Path:
    source = Path(url2pathname(unquote(urlparse(url).path)))
    if not source.is_file():
        raise DownloadError(url, status=404, reason="no such file")
    with atomic_path(destination) as temporary:
        shutil.copyfile(source, temporary)
    return destination


__all__ = ["fetch_archive"]
