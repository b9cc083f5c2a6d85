"""Sessions kept alive for the rest of the process."""

from __future__ import annotations

import logging
import threading
from typing import Iterator

from remote_projects.collaborators import ConnectionSession
from remote_projects.log_utils import log_event

logger = logging.getLogger(__name__)


class SessionPool:
    """Append-only holder of established sessions.

    Retaining a session here is what lets a connection outlive the modal that
    created it. Nothing is ever removed.
    """

    def __init__(self) -> None:
        self._sessions: list[ConnectionSession] = []
        self._lock = threading.Lock()

    def retain(self, session: ConnectionSession) -> None:
        with self._lock:
            self._sessions.append(session)
            size = len(self._sessions)
        log_event(logger, "session_pool.retained", size=size)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[ConnectionSession]:
        return iter(list(self._sessions))

    def __contains__(self, session: object) -> bool:
        return any(existing is session for existing in self._sessions)
