"""Capabilities the workflow consumes but does not implement.

Concrete adapters live in `settings_store` (persistence), `ssh_client`
(session client and directory lister) and `cli` (everything user-facing). Tests
substitute in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from remote_projects.options import ConnectionOptions
    from remote_projects.prompts import PromptChannel
    from remote_projects.registry import RegistryState

# Opaque handle produced by a RemoteSessionClient. Only the client that created
# it (and the adapters built on that client) look inside.
ConnectionSession = Any


@runtime_checkable
class Persistence(Protocol):
    """Durable home of the registry."""

    def snapshot(self) -> "RegistryState":
        """Return the latest known registry state."""
        ...

    def update(self, transform: Callable[["RegistryState"], "RegistryState"]) -> None:
        """Apply `transform` to the current state and persist the result.

        Transforms are applied one at a time in call order.
        """
        ...


@runtime_checkable
class RemoteSessionClient(Protocol):
    async def connect(self, options: "ConnectionOptions", prompts: "PromptChannel") -> ConnectionSession:
        """Authenticate against the host described by `options`.

        Interactive questions are asked through `prompts`. Raises a
        `ConnectFailure` subclass when no session can be established.
        """
        ...


@runtime_checkable
class DirectoryLister(Protocol):
    async def select(self, session: ConnectionSession) -> list[str]:
        """Let the user pick directories on the remote host.

        Returns absolute paths; an empty list means nothing was chosen.
        Cancelling the awaiting task abandons the selection.
        """
        ...


@runtime_checkable
class WorkspaceOpener(Protocol):
    async def open(self, session: ConnectionSession, paths: Sequence[str]) -> None:
        """Open a workspace for `paths`; raises `OpenError` on failure."""
        ...


@runtime_checkable
class ConfirmationPrompt(Protocol):
    async def ask(self, message: str, options: Sequence[str]) -> int:
        """Return the index of the chosen option; raises `Cancelled` if dismissed."""
        ...


@runtime_checkable
class Notifier(Protocol):
    def notify(self, message: str, *, level: str = "info", detail: str | None = None) -> None:
        ...


@runtime_checkable
class Clipboard(Protocol):
    def write(self, text: str) -> None:
        ...


@runtime_checkable
class ModalHost(Protocol):
    """Owner of the modal: re-opens it after a failed handoff, closes it when done."""

    def reopen(self) -> None:
        ...

    def dismissed(self) -> None:
        ...
