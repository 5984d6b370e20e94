"""Default locations and programs used when none are given explicitly."""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_NAME = "git-subcopy"
PROVENANCE_FILENAME = ".gitcopies"
SIGNATURE_NAME = APP_NAME
SIGNATURE_EMAIL = "git-subcopy@localhost"


def default_cache_dir() -> Path:
    """Return the platform cache directory for upstream mirrors."""
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / APP_NAME
    if os.name == "nt":
        local = os.environ.get("LOCALAPPDATA")
        if local:
            return Path(local) / APP_NAME
    return Path.home() / ".cache" / APP_NAME


def default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/sh"
