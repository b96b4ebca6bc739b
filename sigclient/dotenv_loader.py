# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent .env loading for client configuration.

``!env`` tags in the config file (typically the identity pool ID) are
resolved from the process environment.  Before the first config load,
variables are read from up to two ``.env`` files, in order:

1. ``.env`` next to ``sigclient.yaml`` in the XDG config directory
2. ``.env`` in the current working directory, for per-project overrides

Variables already set in the process environment, or by an earlier
file, are never overwritten.  A working directory that is the config
directory itself is read only once.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_loaded_files: list[Path] | None = None


def _candidate_files() -> list[Path]:
    """Existing ``.env`` files in load order, without duplicates."""
    from sigclient.config import get_dotenv_path

    candidates: list[Path] = []
    for path in (get_dotenv_path(), Path.cwd() / ".env"):
        if path.is_file() and path.resolve() not in (
            c.resolve() for c in candidates
        ):
            candidates.append(path)
    return candidates


def load_dotenv_once() -> list[Path]:
    """Load ``.env`` files on the first call only.

    Returns:
        The files loaded by the first call (possibly empty).  Later calls
        return the same list without reading anything.
    """
    global _loaded_files
    if _loaded_files is not None:
        return _loaded_files

    loaded: list[Path] = []
    for path in _candidate_files():
        load_dotenv(path, override=False)
        logger.debug("Loaded environment from %s", path)
        loaded.append(path)

    _loaded_files = loaded
    return loaded


def reset_dotenv_state() -> None:
    """Forget that .env files were loaded. For testing only."""
    global _loaded_files
    _loaded_files = None
