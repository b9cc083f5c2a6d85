"""Where remote-projects keeps its settings file and logs."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "remote-projects"
SETTINGS_FILE_NAME = "remote_servers.json"

_DIRS = PlatformDirs(appname=APP_NAME, appauthor=False)


def _created(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return _created(_DIRS.user_config_path)


def log_dir() -> Path:
    return _created(_DIRS.user_log_path)


def default_settings_path() -> Path:
    """Location of the persisted server registry."""
    return config_dir() / SETTINGS_FILE_NAME
