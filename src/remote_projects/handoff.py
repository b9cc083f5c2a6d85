"""Turning a chosen remote directory into a saved project and an open workspace."""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import ValidationError

from remote_projects.collaborators import ConnectionSession, ModalHost, Notifier, WorkspaceOpener
from remote_projects.errors import OpenError
from remote_projects.log_utils import log_context, log_event
from remote_projects.registry import ProjectRecord, ServerRecord, ServerRegistry

logger = logging.getLogger(__name__)

OPEN_FAILED_TITLE = "Failed to open path"
CONNECT_FAILED_TITLE = "Failed to connect"


class ProjectHandoff:
    def __init__(
        self,
        registry: ServerRegistry,
        opener: WorkspaceOpener,
        *,
        notifier: Notifier | None = None,
        host: ModalHost | None = None,
    ) -> None:
        self._registry = registry
        self._opener = opener
        self._notifier = notifier
        self._host = host

    async def resolve(
        self,
        paths: Sequence[str],
        server_index: int,
        session: ConnectionSession,
        *,
        expected: ServerRecord | None = None,
    ) -> bool:
        """Save `paths` as a project of server `server_index` and open them.

        The project is persisted before the workspace is requested, so it stays
        listed even when opening fails. Returns True when the workspace opened.
        """
        with log_context(server_index=server_index):
            try:
                project = ProjectRecord.from_paths(paths)
            except ValidationError as exc:
                detail = "; ".join(error["msg"] for error in exc.errors())
                return self._failed(list(paths), detail, failure_title=OPEN_FAILED_TITLE)
            self._registry.add_project(server_index, project, expected=expected)
            log_event(logger, "remote.project.created", paths=project.paths)
            return await self._open(session, project, failure_title=OPEN_FAILED_TITLE)

    async def open_saved(self, session: ConnectionSession, project: ProjectRecord) -> bool:
        """Open an already-saved project; nothing is written to the registry."""
        return await self._open(session, project, failure_title=CONNECT_FAILED_TITLE)

    async def _open(self, session: ConnectionSession, project: ProjectRecord, *, failure_title: str) -> bool:
        paths = project.sort_key()
        try:
            await self._opener.open(session, paths)
        except OpenError as exc:
            return self._failed(paths, str(exc), failure_title=failure_title)
        except Exception as exc:
            logger.exception("Unexpected error while opening workspace")
            return self._failed(paths, str(exc) or type(exc).__name__, failure_title=failure_title)
        log_event(logger, "remote.workspace.opened", paths=paths)
        return True

    def _failed(self, paths: list[str], detail: str, *, failure_title: str) -> bool:
        log_event(logger, "remote.workspace.open_failed", level=logging.ERROR, paths=paths, error=detail)
        if self._notifier is not None:
            self._notifier.notify(failure_title, level="error", detail=detail)
        if self._host is not None:
            self._host.reopen()
        return False
