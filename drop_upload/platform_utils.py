"""
Cross-platform path helpers for Drop Uploader.

Centralises OS detection so the config and logging layers share one
canonical location for the config file and the rotating log.

Supported platforms:
  - Linux (primary target for the headless daemon)
  - macOS 12+
  - Windows 10/11
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"

_APP_DIR_NAME = "DropUploader"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\DropUploader``
    - macOS   : ``~/Library/Application Support/DropUploader``
    - Linux   : ``$XDG_CONFIG_HOME/DropUploader`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / _APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "drop_uploader.log"


def expand_home(path: str) -> str:
    """Expand a leading ``~/`` to the user's home directory."""
    if path == "~" or path.startswith("~/") or path.startswith("~\\"):
        return str(Path.home()) + path[1:]
    return path
