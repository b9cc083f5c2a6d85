"""JSON-file persistence for the server registry."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from remote_projects.log_utils import log_event
from remote_projects.registry import RegistryState, RegistryTransform

logger = logging.getLogger(__name__)


@dataclass
class SettingsStore:
    """Keep the registry in a JSON file and apply transforms one at a time.

    The file is re-read whenever its modification time changes, so edits made
    by hand (or by another process) show up on the next `snapshot()`.
    """

    path: Path
    _state: RegistryState = field(default_factory=RegistryState, init=False, repr=False)
    _mtime_ns: int | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._reload_if_changed()

    def snapshot(self) -> RegistryState:
        with self._lock:
            self._reload_if_changed()
            return self._state

    def update(self, transform: RegistryTransform) -> None:
        with self._lock:
            self._reload_if_changed()
            new_state = transform(self._state)
            if new_state == self._state:
                return
            self._write(new_state)
            self._state = new_state

    def _current_mtime(self) -> int | None:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def _reload_if_changed(self) -> None:
        mtime = self._current_mtime()
        if mtime == self._mtime_ns:
            return
        self._mtime_ns = mtime
        if mtime is None:
            self._state = RegistryState()
            return
        self._state = self._load()

    def _load(self) -> RegistryState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            log_event(logger, "settings.read_failed", level=logging.WARNING, path=str(self.path), error=str(exc))
            return self._state
        if not raw.strip():
            return RegistryState()
        try:
            state = RegistryState.model_validate_json(raw)
        except ValidationError as exc:
            # Keep the last good state; the broken file is left for the user to fix.
            log_event(
                logger,
                "settings.invalid",
                level=logging.WARNING,
                path=str(self.path),
                errors=exc.error_count(),
            )
            return self._state
        log_event(logger, "settings.loaded", level=logging.DEBUG, servers=len(state.ssh_connections))
        return state

    def _write(self, state: RegistryState) -> None:
        payload = json.dumps(state.model_dump(mode="json", exclude_none=True), indent=2) + "\n"
        fd, tmp_name = tempfile.mkstemp(prefix=".remote_servers.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._mtime_ns = self._current_mtime()
        log_event(logger, "settings.saved", level=logging.DEBUG, servers=len(state.ssh_connections))
