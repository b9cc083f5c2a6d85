"""Terminal front-end for the remote-servers workflow.

Renders the active mode with rich and reads commands with prompt_toolkit. All
decisions live in `RemoteServersWorkflow`; this module only translates key
presses into workflow actions and implements the user-facing collaborators.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import posixpath
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Sequence

import paramiko
from prompt_toolkit import PromptSession  # type: ignore
from prompt_toolkit.clipboard import ClipboardData, InMemoryClipboard  # type: ignore
from prompt_toolkit.completion import Completer, Completion, ThreadedCompleter  # type: ignore
from prompt_toolkit.shortcuts import radiolist_dialog  # type: ignore
from rich.console import Console
from rich.table import Table
from rich.text import Text

from remote_projects.config import load_config
from remote_projects.errors import Cancelled, OpenError
from remote_projects.log_utils import build_log_config, configure_logging, log_event
from remote_projects.modes import (
    CreatingServer,
    DefaultState,
    EditingNickname,
    Mode,
    PickingProject,
    ViewingOptions,
    active_attempt,
    owned_task,
)
from remote_projects.prompts import Prompt
from remote_projects.registry import ServerRegistry
from remote_projects.session_pool import SessionPool
from remote_projects.settings_store import SettingsStore
from remote_projects.ssh_client import ParamikoSessionClient, SshSession, SshWorkspaceOpener
from remote_projects.workflow import RemoteServersWorkflow

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05

console = Console(highlight=False)


# -- collaborators ---------------------------------------------------------


class ConsoleNotifier:
    def notify(self, message: str, *, level: str = "info", detail: str | None = None) -> None:
        style = {"error": "bold red", "warning": "yellow"}.get(level, "cyan")
        text = Text(message, style=style)
        if detail:
            text.append(f": {detail}", style="dim")
        console.print(text)


class SessionClipboard:
    """Keeps the copied address in prompt_toolkit's clipboard (paste with Ctrl-Y)."""

    def __init__(self) -> None:
        self.clipboard = InMemoryClipboard()

    def write(self, text: str) -> None:
        self.clipboard.set_data(ClipboardData(text))


class DialogConfirmation:
    async def ask(self, message: str, options: Sequence[str]) -> int:
        result = await radiolist_dialog(
            title="Remote servers",
            text=message,
            values=list(enumerate(options)),
        ).run_async()
        if result is None:
            raise Cancelled(message)
        return int(result)


class RemoteDirectoryCompleter(Completer):
    """Complete directory names over SFTP."""

    def __init__(self, session: SshSession) -> None:
        self._session = session

    def get_completions(self, document, complete_event) -> Iterable[Completion]:  # type: ignore[override]
        word = document.get_word_before_cursor(WORD=True)
        parent = posixpath.dirname(word) or "/"
        try:
            candidates = self._session.list_directories(parent)
        except OSError:
            return
        for candidate in candidates:
            if candidate.startswith(word):
                yield Completion(candidate + "/", start_position=-len(word))


class PromptDirectoryLister:
    """Ask for one or more remote directories, relative paths resolved from $HOME."""

    def __init__(self, session_factory: Callable[..., PromptSession]) -> None:
        self._session_factory = session_factory

    async def select(self, session: SshSession) -> list[str]:
        try:
            home = await asyncio.to_thread(session.home_directory)
        except (OSError, paramiko.SSHException) as exc:
            raise OpenError(f"could not open SFTP on {session.options.host}: {exc}") from exc
        picker = self._session_factory(completer=ThreadedCompleter(RemoteDirectoryCompleter(session)))
        console.print(f"Pick folders on [bold]{session.options.connection_string()}[/bold] (space separated, empty to cancel)")
        try:
            line = await picker.prompt_async("folder> ", default=home.rstrip("/") + "/")
        except (EOFError, KeyboardInterrupt):
            return []
        try:
            tokens = shlex.split(line)
        except ValueError:
            return []
        return [posixpath.normpath(posixpath.join(home, token)) for token in tokens]


@dataclass
class ModalState:
    open: bool = True
    reopened: int = 0


class TerminalModalHost:
    def __init__(self, state: ModalState) -> None:
        self._state = state

    def reopen(self) -> None:
        self._state.open = True
        self._state.reopened += 1
        console.print("[dim]Remote servers re-opened.[/dim]")

    def dismissed(self) -> None:
        self._state.open = False


# -- rendering -------------------------------------------------------------


def render_mode(mode: Mode) -> None:
    if isinstance(mode, DefaultState):
        _render_default(mode)
    elif isinstance(mode, CreatingServer):
        _render_create(mode)
    elif isinstance(mode, ViewingOptions):
        console.print(Text.assemble(("Server ", "bold"), mode.server.connection_string()))
        console.print(f"  nickname   {mode.nickname_action_label}")
        console.print(f"  copy       Copy Server Address ({mode.server.connection_string()})")
        console.print("  remove     Remove Server")
        console.print("  back       Go Back")
    elif isinstance(mode, EditingNickname):
        console.print(Text.assemble(("Nickname for ", "bold"), mode.server.connection_string()))
        if mode.placeholder:
            console.print(f"[dim]{mode.placeholder}[/dim]")
    elif isinstance(mode, PickingProject):
        console.print(Text.assemble(("Connected to ", "bold"), mode.server.connection_string()))


def _render_default(mode: DefaultState) -> None:
    table = Table(title="Remote Projects", show_lines=False, expand=False)
    table.add_column("#", justify="right")
    table.add_column("Server")
    table.add_column("Projects")
    for index, server in enumerate(mode.servers):
        main, aux = server.display_label()
        label = Text(main)
        if aux:
            label.append(f" {aux}", style="dim")
        projects = server.sorted_projects()
        lines = [f"{pix}: {', '.join(p.sort_key())}" for pix, p in enumerate(projects)] or ["No projects."]
        table.add_row(str(index), label, "\n".join(lines))
    console.print(table)
    console.print("[dim]add | open N | project N P | delete N P | options N | help | quit[/dim]")


def _render_create(mode: CreatingServer) -> None:
    console.print("[bold]Connect New Server[/bold]")
    if mode.address.placeholder:
        console.print(f"[dim]{mode.address.placeholder}[/dim]")
    if mode.error:
        console.print(f"[red]{mode.error}[/red]")
    elif mode.hint:
        console.print(f"[dim]{mode.hint}[/dim]")


# -- command dispatch ------------------------------------------------------

CommandHandler = Callable[[RemoteServersWorkflow, list[str]], Awaitable[None] | None]


@dataclass
class CommandDef:
    description: str
    hint: str
    handler: CommandHandler


COMMANDS: dict[str, CommandDef] = {}


def register_command(name: str, description: str, hint: str) -> Callable[[CommandHandler], CommandHandler]:
    def _decorator(func: CommandHandler) -> CommandHandler:
        COMMANDS[name] = CommandDef(description=description, hint=hint, handler=func)
        return func

    return _decorator


def _int_args(args: list[str], count: int) -> list[int] | None:
    if len(args) != count or not all(a.isdigit() for a in args):
        return None
    return [int(a) for a in args]


@register_command("help", "Show available commands.", "help")
def _cmd_help(_workflow: RemoteServersWorkflow, _args: list[str]) -> None:
    for entry in COMMANDS.values():
        console.print(f"{entry.hint:<16} - {entry.description}")


@register_command("add", "Connect a new server.", "add")
def _cmd_add(workflow: RemoteServersWorkflow, _args: list[str]) -> None:
    workflow.start_create()


@register_command("options", "View a server's options.", "options N")
def _cmd_options(workflow: RemoteServersWorkflow, args: list[str]) -> None:
    parsed = _int_args(args, 1)
    if parsed is None or not workflow.view_server_options(parsed[0]):
        console.print("[yellow]No such server.[/yellow]")


@register_command("open", "Connect to a server and open a folder on it.", "open N")
def _cmd_open(workflow: RemoteServersWorkflow, args: list[str]) -> None:
    parsed = _int_args(args, 1)
    if parsed is None or not workflow.open_folder(parsed[0]):
        console.print("[yellow]No such server.[/yellow]")


def _project_at(workflow: RemoteServersWorkflow, server_index: int, project_index: int):
    mode = workflow.mode
    if not isinstance(mode, DefaultState) or not 0 <= server_index < len(mode.servers):
        return None
    projects = mode.servers[server_index].sorted_projects()
    return projects[project_index] if 0 <= project_index < len(projects) else None


@register_command("project", "Open a saved project.", "project N P")
def _cmd_project(workflow: RemoteServersWorkflow, args: list[str]) -> None:
    parsed = _int_args(args, 2)
    project = _project_at(workflow, *parsed) if parsed else None
    if project is None or not workflow.open_project(parsed[0], project):  # type: ignore[index]
        console.print("[yellow]No such project.[/yellow]")


@register_command("delete", "Delete a saved project.", "delete N P")
def _cmd_delete(workflow: RemoteServersWorkflow, args: list[str]) -> None:
    parsed = _int_args(args, 2)
    project = _project_at(workflow, *parsed) if parsed else None
    if project is None or not workflow.delete_project(parsed[0], project):  # type: ignore[index]
        console.print("[yellow]No such project.[/yellow]")


@register_command("nickname", "Edit the server's nickname (options view).", "nickname")
def _cmd_nickname(workflow: RemoteServersWorkflow, _args: list[str]) -> None:
    workflow.edit_nickname()


@register_command("copy", "Copy the server address (options view).", "copy")
def _cmd_copy(workflow: RemoteServersWorkflow, _args: list[str]) -> None:
    workflow.copy_server_address()


@register_command("remove", "Remove the server (options view).", "remove")
async def _cmd_remove(workflow: RemoteServersWorkflow, _args: list[str]) -> None:
    await workflow.remove_server()


@register_command("back", "Return to the server list.", "back")
def _cmd_back(workflow: RemoteServersWorkflow, _args: list[str]) -> None:
    workflow.go_back()


async def handle_command(workflow: RemoteServersWorkflow, line: str) -> bool:
    """Dispatch `line` to a registered command. Returns False for unknown commands."""
    try:
        parts = shlex.split(line)
    except ValueError:
        return False
    if not parts or parts[0] not in COMMANDS:
        return False
    result = COMMANDS[parts[0]].handler(workflow, parts[1:])
    if asyncio.iscoroutine(result):
        await result
    return True


# -- main loop -------------------------------------------------------------


class TerminalUI:
    def __init__(self) -> None:
        self.clipboard = SessionClipboard()
        self.session: PromptSession = PromptSession(clipboard=self.clipboard.clipboard)

    def new_session(self, **kwargs) -> PromptSession:
        return PromptSession(clipboard=self.clipboard.clipboard, **kwargs)

    async def read(self, message: str, *, default: str = "", secret: bool = False) -> str | None:
        try:
            return await self.session.prompt_async(message, default=default, is_password=secret)
        except KeyboardInterrupt:
            return None

    async def ask_prompt(self, prompt: Prompt) -> str | None:
        if prompt.detail:
            console.print(prompt.detail)
        return await self.read(f"{prompt.message} ", secret=prompt.secret)


async def drive(workflow: RemoteServersWorkflow, ui: TerminalUI) -> None:
    """Relay prompts and wait until the current mode has no running task."""
    while True:
        prompt = workflow.pending_prompt
        if prompt is not None:
            answer = await ui.ask_prompt(prompt)
            if answer is None:
                workflow.cancel()
            else:
                workflow.answer_prompt(answer)
            continue

        mode = workflow.mode
        task = owned_task(mode)
        if task is None or task.done():
            return
        attempt = active_attempt(mode)
        if attempt is not None and not attempt.done:
            with console.status(attempt.prompts.status or "Connecting..."):
                while not task.done() and workflow.pending_prompt is None and workflow.mode is mode:
                    await asyncio.wait([task], timeout=POLL_INTERVAL)
        else:
            await asyncio.wait([task])


async def run(workflow: RemoteServersWorkflow, ui: TerminalUI, modal: ModalState) -> int:
    while modal.open and not workflow.terminated:
        mode = workflow.render()
        render_mode(mode)
        try:
            if isinstance(mode, CreatingServer):
                line = await ui.session.prompt_async("ssh> ", default=mode.address.text)
            elif isinstance(mode, EditingNickname):
                line = await ui.session.prompt_async("nickname> ", default=mode.text)
            else:
                line = await ui.session.prompt_async("remote> ")
        except KeyboardInterrupt:
            workflow.cancel()
            continue
        except EOFError:
            break

        if isinstance(mode, CreatingServer):
            workflow.set_address(line)
            workflow.confirm()
        elif isinstance(mode, EditingNickname):
            workflow.set_nickname_text(line)
            workflow.confirm()
        elif line.strip() in {"quit", "exit"}:
            if not workflow.dismiss():
                workflow.cancel()
        elif line.strip() and not await handle_command(workflow, line):
            console.print(f"[yellow]Unknown command: {line.strip()}[/yellow] (try `help`)")
        await drive(workflow, ui)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="remote-projects", description="Manage SSH remote servers and projects.")
    parser.add_argument("--settings", type=Path, help="Path of the remote servers JSON file.")
    parser.add_argument("--timeout", type=float, help="Connection timeout in seconds.")
    parser.add_argument("--no-shell", action="store_true", help="Do not start a remote shell after picking a folder.")
    return parser


async def main_async(argv: list[str]) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(build_log_config())

    store = SettingsStore(args.settings or config.settings_path)
    ui = TerminalUI()
    modal = ModalState()
    workflow = RemoteServersWorkflow(
        ServerRegistry(store),
        ParamikoSessionClient(timeout=args.timeout or config.connect_timeout, known_hosts=config.known_hosts),
        SessionPool(),
        lister=PromptDirectoryLister(ui.new_session),
        opener=SshWorkspaceOpener(launch_shell=not args.no_shell),
        confirmation=DialogConfirmation(),
        notifier=ConsoleNotifier(),
        clipboard=ui.clipboard,
        host=TerminalModalHost(modal),
    )
    log_event(logger, "cli.start", settings=str(store.path))
    return await run(workflow, ui, modal)


def main(argv: list[str] | None = None) -> int:
    try:
        return asyncio.run(main_async(sys.argv[1:] if argv is None else argv))
    except KeyboardInterrupt:
        return 130
