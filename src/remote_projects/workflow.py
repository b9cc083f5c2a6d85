"""State machine behind the remote-servers modal.

`RemoteServersWorkflow` owns the active mode (see `modes`) and the handful of
user actions that move between modes: adding a server, viewing and editing a
server's options, removing it, and opening a folder or saved project on it.
Connection attempts and directory selection run as asyncio tasks owned by the
mode that started them; replacing the mode cancels them.

Registry changes are fire-and-forget. After requesting one the workflow moves
on, and `render()` reconciles the mode with whatever the registry holds next.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

from remote_projects.collaborators import (
    Clipboard,
    ConfirmationPrompt,
    DirectoryLister,
    ModalHost,
    Notifier,
    RemoteSessionClient,
    WorkspaceOpener,
)
from remote_projects.connection import ConnectionAttempt
from remote_projects.errors import Cancelled, ConnectFailure, OpenError, ParseError, UserCancelled, describe_failure
from remote_projects.handoff import CONNECT_FAILED_TITLE, ProjectHandoff
from remote_projects.log_utils import log_context, log_event
from remote_projects.modes import (
    AddressInput,
    CreatingServer,
    DefaultState,
    EditingNickname,
    Mode,
    PickingProject,
    ViewingOptions,
    active_attempt,
    owned_task,
)
from remote_projects.options import parse_command_line
from remote_projects.prompts import Prompt
from remote_projects.registry import ProjectRecord, ServerRecord, ServerRegistry
from remote_projects.session_pool import SessionPool

logger = logging.getLogger(__name__)

REMOVE_SERVER_OPTIONS = ("Yes, remove it", "No, keep it")
SELECTION_FAILED_TITLE = "Failed to list remote directories"


class RemoteServersWorkflow:
    def __init__(
        self,
        registry: ServerRegistry,
        client: RemoteSessionClient,
        pool: SessionPool,
        *,
        lister: DirectoryLister,
        opener: WorkspaceOpener,
        confirmation: ConfirmationPrompt,
        notifier: Notifier | None = None,
        clipboard: Clipboard | None = None,
        host: ModalHost | None = None,
    ) -> None:
        self._registry = registry
        self._client = client
        self._pool = pool
        self._lister = lister
        self._confirmation = confirmation
        self._notifier = notifier
        self._clipboard = clipboard
        self._host = host
        self._handoff = ProjectHandoff(registry, opener, notifier=notifier, host=host)
        self._mode: Mode = self._default_mode()
        self.terminated = False

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def pending_prompt(self) -> Prompt | None:
        attempt = active_attempt(self._mode)
        return attempt.prompts.pending if attempt is not None else None

    # -- mode bookkeeping ------------------------------------------------

    def _default_mode(self) -> DefaultState:
        return DefaultState(servers=self._registry.servers())

    def _set_mode(self, mode: Mode) -> None:
        old = self._mode
        self._mode = mode
        if old is mode:
            return
        old_attempt = active_attempt(old)
        if old_attempt is not None and old_attempt is not active_attempt(mode):
            old_attempt.cancel()
        old_task = owned_task(old)
        if (
            old_task is not None
            and old_task is not owned_task(mode)
            and old_task is not asyncio.current_task()
            and not old_task.done()
        ):
            old_task.cancel()
        log_event(logger, "workflow.mode", level=logging.DEBUG, mode=type(mode).__name__)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        return asyncio.get_running_loop().create_task(coro, name=name)

    def _idle_default(self) -> DefaultState | None:
        """The current mode if it is Default with no connection in flight."""
        mode = self._mode
        if isinstance(mode, DefaultState) and mode.connection is None:
            return mode
        return None

    def _live_server(self, index: int, expected: ServerRecord | None = None) -> ServerRecord | None:
        record = self._registry.snapshot().get(index)
        if record is None:
            return None
        if expected is not None and record != expected:
            return None
        return record

    async def settle(self) -> None:
        """Wait until the current mode no longer has a running task."""
        while True:
            task = owned_task(self._mode)
            if task is None or task.done():
                return
            await asyncio.wait([task])

    # -- rendering / reconciliation --------------------------------------

    def render(self) -> Mode:
        """Reconcile the mode with the live registry and return it.

        A Default listing is rebuilt when the registry changed underneath it.
        Options and nickname views return to Default once the record at their
        index differs in any field, so a shifted duplicate is never adopted.
        """
        mode = self._mode
        live = self._registry.servers()
        if isinstance(mode, DefaultState):
            if mode.servers != live:
                log_event(logger, "workflow.reconciled", level=logging.DEBUG, servers=len(live))
                # In place: a running "open folder" task compares against this object.
                mode.servers = live
        elif isinstance(mode, (ViewingOptions, EditingNickname)):
            record = live[mode.server_index] if 0 <= mode.server_index < len(live) else None
            if record != mode.server:
                log_event(logger, "workflow.stale_index", index=mode.server_index)
                self._set_mode(DefaultState(servers=live))
        return self._mode

    # -- generic actions -------------------------------------------------

    def confirm(self) -> None:
        mode = self._mode
        if isinstance(mode, CreatingServer):
            if mode.attempt is not None:
                # A second attempt is never started while one is running.
                if mode.attempt.prompts.pending is not None:
                    mode.attempt.prompts.answer(mode.prompt_input)
                    mode.prompt_input = ""
                return
            self._create_server(mode)
        elif isinstance(mode, EditingNickname):
            self._registry.set_nickname(mode.server_index, mode.text, expected=mode.server)
            self._set_mode(self._default_mode())

    def cancel(self) -> None:
        mode = self._mode
        if isinstance(mode, DefaultState):
            if mode.connection is not None:
                self._set_mode(self._default_mode())
            else:
                self.dismiss()
        elif isinstance(mode, CreatingServer) and mode.attempt is not None:
            self._set_mode(CreatingServer(address=AddressInput(text=mode.address.text)))
        else:
            self._set_mode(self._default_mode())

    def dismiss(self) -> bool:
        """Close the modal (outside click). Only allowed from the listing."""
        if not isinstance(self._mode, DefaultState):
            return False
        self._set_mode(self._default_mode())
        self._close()
        return True

    def _close(self) -> None:
        self.terminated = True
        log_event(logger, "workflow.dismissed")
        if self._host is not None:
            self._host.dismissed()

    def answer_prompt(self, text: str) -> bool:
        attempt = active_attempt(self._mode)
        if attempt is None or attempt.prompts.pending is None:
            return False
        attempt.prompts.answer(text)
        return True

    # -- creating a server -----------------------------------------------

    def start_create(self) -> bool:
        if self._idle_default() is None:
            return False
        self._set_mode(CreatingServer())
        return True

    def set_address(self, text: str) -> bool:
        mode = self._mode
        if not isinstance(mode, CreatingServer):
            return False
        return mode.address.set_text(text)

    def set_prompt_input(self, text: str) -> None:
        mode = self._mode
        if isinstance(mode, CreatingServer):
            mode.prompt_input = text

    def _create_server(self, mode: CreatingServer) -> None:
        text = mode.address.text
        if not text.strip():
            return
        try:
            options = parse_command_line(text)
        except ParseError as exc:
            log_event(logger, "workflow.address_invalid", error=str(exc))
            self._set_mode(CreatingServer(address=mode.address, error=f"could not parse: {exc}"))
            return

        mode.address.read_only = True
        attempt = ConnectionAttempt(self._client, options)
        state = CreatingServer(address=mode.address, attempt=attempt)
        self._set_mode(state)
        attempt.start()
        state.task = self._spawn(self._finish_create(state, attempt), name="create-server")

    async def _finish_create(self, state: CreatingServer, attempt: ConnectionAttempt) -> None:
        error: str | None
        try:
            session = await attempt.result()
        except UserCancelled:
            error = None
        except ConnectFailure as exc:
            error = describe_failure(exc)
        else:
            if self._mode is not state:
                return
            self._pool.retain(session)
            self._registry.add_server(attempt.options)
            log_event(logger, "remote.server.created", host=attempt.options.host)
            self._set_mode(self._default_mode())
            return

        if self._mode is not state:
            return
        state.address.read_only = False
        self._set_mode(CreatingServer(address=state.address, error=error))

    # -- server options --------------------------------------------------

    def view_server_options(self, index: int) -> bool:
        if self._idle_default() is None:
            return False
        record = self._live_server(index)
        if record is None:
            self.render()
            return False
        self._set_mode(ViewingOptions(server_index=index, server=record))
        return True

    def go_back(self) -> None:
        if isinstance(self._mode, (ViewingOptions, EditingNickname)):
            self._set_mode(self._default_mode())

    def edit_nickname(self) -> bool:
        mode = self._mode
        if not isinstance(mode, ViewingOptions):
            return False
        record = self._live_server(mode.server_index, mode.server)
        if record is None:
            self._set_mode(self._default_mode())
            return False
        self._set_mode(EditingNickname(server_index=mode.server_index, server=record, text=record.nickname or ""))
        return True

    def set_nickname_text(self, text: str) -> None:
        mode = self._mode
        if isinstance(mode, EditingNickname):
            mode.text = text

    def copy_server_address(self) -> str | None:
        mode = self._mode
        if not isinstance(mode, ViewingOptions):
            return None
        address = mode.server.connection_string()
        if self._clipboard is not None:
            self._clipboard.write(address)
        if self._notifier is not None:
            self._notifier.notify(f"Copied server address ({address}) to clipboard")
        return address

    async def remove_server(self) -> bool:
        mode = self._mode
        if not isinstance(mode, ViewingOptions):
            return False
        try:
            choice = await self._confirmation.ask(f"Remove server `{mode.server.host}`?", REMOVE_SERVER_OPTIONS)
        except Cancelled:
            return False
        if choice != 0:
            return False
        self._registry.remove_server(mode.server_index, expected=mode.server)
        if not self.terminated:
            self._set_mode(self._default_mode())
        return True

    # -- projects --------------------------------------------------------

    def delete_project(self, index: int, project: ProjectRecord) -> bool:
        mode = self._idle_default()
        if mode is None:
            return False
        expected = mode.servers[index] if 0 <= index < len(mode.servers) else None
        if expected is None:
            return False
        self._registry.remove_project(index, project, expected=expected)
        return True

    def open_folder(self, index: int) -> bool:
        """Connect to server `index` and, once connected, pick directories on it."""
        mode = self._idle_default()
        if mode is None:
            return False
        record = self._live_server(index)
        if record is None:
            self.render()
            return False
        attempt = ConnectionAttempt(self._client, record.to_options())
        state = DefaultState(servers=mode.servers, connection=attempt)
        self._set_mode(state)
        attempt.start()
        state.task = self._spawn(self._finish_open_folder(state, attempt, index, record), name="open-folder")
        return True

    async def _finish_open_folder(
        self, state: DefaultState, attempt: ConnectionAttempt, index: int, record: ServerRecord
    ) -> None:
        with log_context(server_index=index, host=record.host):
            try:
                session = await attempt.result()
            except ConnectFailure as exc:
                if self._mode is not state:
                    return
                self._report_connect_failure(exc)
                self._set_mode(self._default_mode())
                if self._host is not None:
                    self._host.reopen()
                return
            if self._mode is not state:
                return
            self._pool.retain(session)
            picking = PickingProject(server_index=index, server=record, session=session)
            self._set_mode(picking)
            picking.task = self._spawn(self._pick_and_handoff(picking), name="pick-project")

    async def _pick_and_handoff(self, state: PickingProject) -> None:
        try:
            paths = await self._lister.select(state.session)
        except OpenError as exc:
            log_event(logger, "workflow.selection_failed", level=logging.WARNING, error=str(exc))
            self._report_selection_failure(str(exc))
            paths = []
        except Exception as exc:
            logger.exception("Unexpected error while selecting remote directories")
            self._report_selection_failure(str(exc) or type(exc).__name__)
            paths = []
        if self._mode is not state:
            return
        if not paths:
            self._set_mode(self._default_mode())
            if self._host is not None:
                self._host.reopen()
            return

        opened = await self._handoff.resolve(paths, state.server_index, state.session, expected=state.server)
        if self._mode is not state:
            return
        if opened:
            self._set_mode(self._default_mode())
            self._close()
        else:
            self._set_mode(self._default_mode())

    def open_project(self, index: int, project: ProjectRecord) -> bool:
        """Connect to server `index` and open a saved project on it."""
        mode = self._idle_default()
        if mode is None:
            return False
        record = self._live_server(index)
        if record is None or project not in record.projects:
            self.render()
            return False
        attempt = ConnectionAttempt(self._client, record.to_options())
        state = DefaultState(servers=mode.servers, connection=attempt)
        self._set_mode(state)
        attempt.start()
        state.task = self._spawn(self._finish_open_project(state, attempt, project), name="open-project")
        return True

    async def _finish_open_project(self, state: DefaultState, attempt: ConnectionAttempt, project: ProjectRecord) -> None:
        try:
            session = await attempt.result()
        except ConnectFailure as exc:
            if self._mode is state:
                self._report_connect_failure(exc)
                self._set_mode(self._default_mode())
            return
        self._pool.retain(session)
        if self._mode is not state:
            return
        log_event(logger, "remote.project.opening", paths=project.paths)
        opened = await self._handoff.open_saved(session, project)
        if self._mode is not state:
            return
        self._set_mode(self._default_mode())
        if opened:
            self._close()

    def _report_selection_failure(self, detail: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(SELECTION_FAILED_TITLE, level="error", detail=detail)

    def _report_connect_failure(self, exc: ConnectFailure) -> None:
        if isinstance(exc, UserCancelled):
            return
        log_event(logger, "workflow.connect_failed", level=logging.ERROR, error=describe_failure(exc))
        if self._notifier is not None:
            self._notifier.notify(CONNECT_FAILED_TITLE, level="error", detail=describe_failure(exc))
