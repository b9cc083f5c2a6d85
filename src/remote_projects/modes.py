"""The remote-servers modal's modes.

Exactly one of these is active at a time. Transitions build a new value rather
than mutating the old one, and replacing a mode is what abandons whatever task
it owned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Union

from remote_projects.connection import ConnectionAttempt
from remote_projects.registry import ServerRecord

ADDRESS_PLACEHOLDER = "ssh user@example -p 2222"
ADDRESS_HINT = "Enter the command you use to SSH into this server."
NICKNAME_PLACEHOLDER = "Add a nickname for this server"


@dataclass
class AddressInput:
    """The single-line address editor of the create-server form."""

    text: str = ""
    read_only: bool = False

    @property
    def placeholder(self) -> str | None:
        return ADDRESS_PLACEHOLDER if not self.text else None

    def set_text(self, text: str) -> bool:
        if self.read_only:
            return False
        self.text = text
        return True


@dataclass
class DefaultState:
    """Server listing. `connection` is set while "Open Folder" / a saved project connects."""

    servers: tuple[ServerRecord, ...]
    connection: ConnectionAttempt | None = None
    task: asyncio.Task[Any] | None = field(default=None, repr=False)


@dataclass
class CreatingServer:
    address: AddressInput = field(default_factory=AddressInput)
    error: str | None = None
    attempt: ConnectionAttempt | None = None
    prompt_input: str = ""
    task: asyncio.Task[Any] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.error is not None and self.attempt is not None:
            raise ValueError("a create-server form cannot show an error while connecting")

    @property
    def hint(self) -> str | None:
        if self.attempt is None and self.error is None:
            return ADDRESS_HINT
        return None


@dataclass
class ViewingOptions:
    server_index: int
    server: ServerRecord

    @property
    def nickname_action_label(self) -> str:
        return "Edit Nickname" if self.server.nickname else "Add Nickname to Server"


@dataclass
class EditingNickname:
    server_index: int
    server: ServerRecord
    text: str = ""

    @property
    def placeholder(self) -> str | None:
        return NICKNAME_PLACEHOLDER if not self.text else None


@dataclass
class PickingProject:
    server_index: int
    server: ServerRecord
    session: Any
    task: asyncio.Task[Any] | None = field(default=None, repr=False)


Mode = Union[DefaultState, CreatingServer, ViewingOptions, EditingNickname, PickingProject]


def owned_task(mode: Mode) -> asyncio.Task[Any] | None:
    return getattr(mode, "task", None)


def active_attempt(mode: Mode) -> ConnectionAttempt | None:
    if isinstance(mode, CreatingServer):
        return mode.attempt
    if isinstance(mode, DefaultState):
        return mode.connection
    return None
