from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from remote_projects.errors import Cancelled, OpenError
from remote_projects.options import ConnectionOptions
from remote_projects.prompts import PromptChannel
from remote_projects.registry import RegistryState, RegistryTransform, ServerRecord, ServerRegistry
from remote_projects.session_pool import SessionPool
from remote_projects.workflow import RemoteServersWorkflow


class MemoryPersistence:
    """In-memory persistence that records every transform it applies."""

    def __init__(self, state: RegistryState | None = None) -> None:
        self.state = state or RegistryState()
        self.updates = 0

    def snapshot(self) -> RegistryState:
        return self.state

    def update(self, transform: RegistryTransform) -> None:
        self.updates += 1
        self.state = transform(self.state)


@dataclass
class FakeSession:
    options: ConnectionOptions


ConnectBehavior = Callable[[ConnectionOptions, PromptChannel], Awaitable[object]]


class FakeClient:
    """Session client whose connect() is driven by the test.

    By default each connect waits on `release` and then returns a FakeSession;
    set `behavior` to script prompts or failures.
    """

    def __init__(self, behavior: ConnectBehavior | None = None) -> None:
        self.behavior = behavior
        self.release = asyncio.Event()
        self.calls: list[ConnectionOptions] = []

    async def connect(self, options: ConnectionOptions, prompts: PromptChannel) -> object:
        self.calls.append(options)
        if self.behavior is not None:
            return await self.behavior(options, prompts)
        await self.release.wait()
        return FakeSession(options)


def failing(exc: Exception) -> ConnectBehavior:
    async def _connect(_options: ConnectionOptions, _prompts: PromptChannel) -> object:
        raise exc

    return _connect


def succeeding() -> ConnectBehavior:
    async def _connect(options: ConnectionOptions, _prompts: PromptChannel) -> object:
        return FakeSession(options)

    return _connect


class FakeLister:
    def __init__(self, paths: Sequence[str] = (), error: Exception | None = None) -> None:
        self.paths = list(paths)
        self.error = error
        self.sessions: list[object] = []

    async def select(self, session: object) -> list[str]:
        self.sessions.append(session)
        if self.error is not None:
            raise self.error
        return list(self.paths)


class FakeOpener:
    def __init__(self, error: OpenError | None = None) -> None:
        self.error = error
        self.opened: list[tuple[object, list[str]]] = []

    async def open(self, session: object, paths: Sequence[str]) -> None:
        if self.error is not None:
            raise self.error
        self.opened.append((session, list(paths)))


class FakeConfirmation:
    def __init__(self, choice: int | None = 0) -> None:
        self.choice = choice
        self.asked: list[tuple[str, tuple[str, ...]]] = []

    async def ask(self, message: str, options: Sequence[str]) -> int:
        self.asked.append((message, tuple(options)))
        if self.choice is None:
            raise Cancelled(message)
        return self.choice


@dataclass
class RecordingNotifier:
    messages: list[tuple[str, str, str | None]] = field(default_factory=list)

    def notify(self, message: str, *, level: str = "info", detail: str | None = None) -> None:
        self.messages.append((message, level, detail))


@dataclass
class RecordingClipboard:
    contents: list[str] = field(default_factory=list)

    def write(self, text: str) -> None:
        self.contents.append(text)


@dataclass
class RecordingHost:
    reopened: int = 0
    dismissed_count: int = 0

    def reopen(self) -> None:
        self.reopened += 1

    def dismissed(self) -> None:
        self.dismissed_count += 1


def server(host: str, **kwargs: object) -> ServerRecord:
    return ServerRecord(host=host, **kwargs)  # type: ignore[arg-type]


@dataclass
class Harness:
    workflow: RemoteServersWorkflow
    persistence: MemoryPersistence
    client: FakeClient
    pool: SessionPool
    lister: FakeLister
    opener: FakeOpener
    confirmation: FakeConfirmation
    notifier: RecordingNotifier
    clipboard: RecordingClipboard
    host: RecordingHost


def make_workflow(
    servers: Sequence[ServerRecord] = (),
    *,
    client: FakeClient | None = None,
    lister: FakeLister | None = None,
    opener: FakeOpener | None = None,
    confirmation: FakeConfirmation | None = None,
) -> Harness:
    persistence = MemoryPersistence(RegistryState(ssh_connections=tuple(servers)))
    harness = Harness(
        workflow=None,  # type: ignore[arg-type]
        persistence=persistence,
        client=client or FakeClient(),
        pool=SessionPool(),
        lister=lister or FakeLister(["/home/alice/project"]),
        opener=opener or FakeOpener(),
        confirmation=confirmation or FakeConfirmation(),
        notifier=RecordingNotifier(),
        clipboard=RecordingClipboard(),
        host=RecordingHost(),
    )
    harness.workflow = RemoteServersWorkflow(
        ServerRegistry(persistence),
        harness.client,
        harness.pool,
        lister=harness.lister,
        opener=harness.opener,
        confirmation=harness.confirmation,
        notifier=harness.notifier,
        clipboard=harness.clipboard,
        host=harness.host,
    )
    return harness


async def wait_for(predicate: Callable[[], bool], *, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)
