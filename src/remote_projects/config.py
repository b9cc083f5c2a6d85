"""Runtime settings read from the environment (and an optional `.env` file)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from remote_projects.paths import default_settings_path

DEFAULT_CONNECT_TIMEOUT = 15.0


@dataclass(frozen=True)
class AppConfig:
    settings_path: Path
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    known_hosts: Path | None = None


def _parse_float(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(*, dotenv: bool = True) -> AppConfig:
    """Resolve settings from REMOTE_PROJECTS_* variables.

    `.env` values never override variables already present in the environment.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True), override=False)

    settings = os.getenv("REMOTE_PROJECTS_SETTINGS")
    known_hosts = os.getenv("REMOTE_PROJECTS_KNOWN_HOSTS")
    return AppConfig(
        settings_path=Path(settings).expanduser() if settings else default_settings_path(),
        connect_timeout=_parse_float(os.getenv("REMOTE_PROJECTS_CONNECT_TIMEOUT"), DEFAULT_CONNECT_TIMEOUT),
        known_hosts=Path(known_hosts).expanduser() if known_hosts else None,
    )
