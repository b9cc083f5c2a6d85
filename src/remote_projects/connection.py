"""A single cancellable attempt to open a session on a remote host."""

from __future__ import annotations

import asyncio
import logging

from remote_projects.collaborators import ConnectionSession, RemoteSessionClient
from remote_projects.errors import ConnectError, ConnectFailure, UserCancelled
from remote_projects.log_utils import log_context, log_event
from remote_projects.options import ConnectionOptions
from remote_projects.prompts import PromptChannel

logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Task[ConnectionSession]) -> None:
    # Marks the exception retrieved; result()/outcome() still report it.
    if not task.cancelled():
        task.exception()


class ConnectionAttempt:
    """Runs `client.connect` in its own task and relays prompts through `prompts`.

    The attempt never touches the registry or the session pool; the owner
    applies those effects after `result()` returns. Cancelling discards the
    task and dismisses any outstanding prompt.
    """

    def __init__(
        self,
        client: RemoteSessionClient,
        options: ConnectionOptions,
        prompts: PromptChannel | None = None,
    ) -> None:
        self.options = options
        self.prompts = prompts or PromptChannel()
        self._client = client
        self._task: asyncio.Task[ConnectionSession] | None = None

    @classmethod
    def begin(
        cls,
        client: RemoteSessionClient,
        options: ConnectionOptions,
        prompts: PromptChannel | None = None,
    ) -> "ConnectionAttempt":
        attempt = cls(client, options, prompts)
        attempt.start()
        return attempt

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("connection attempt already started")
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"connect:{self.options.connection_string()}"
        )
        self._task.add_done_callback(_consume_result)

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    def cancel(self) -> None:
        self.prompts.dismiss()
        if self._task is not None and not self._task.done():
            log_event(logger, "connect.cancelled", host=self.options.host)
            self._task.cancel()

    async def result(self) -> ConnectionSession:
        """Wait for the session; raises a ConnectFailure subclass on failure."""
        if self._task is None:
            raise RuntimeError("connection attempt was never started")
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise UserCancelled("connection attempt cancelled") from None

    def outcome(self) -> ConnectionSession | ConnectFailure:
        """Synchronous view of a finished attempt."""
        if self._task is None or not self._task.done():
            raise RuntimeError("connection attempt has not finished")
        if self._task.cancelled():
            return UserCancelled("connection attempt cancelled")
        exc = self._task.exception()
        if exc is None:
            return self._task.result()
        if isinstance(exc, ConnectFailure):
            return exc
        return ConnectError(str(exc) or type(exc).__name__)

    async def _run(self) -> ConnectionSession:
        with log_context(host=self.options.host, port=self.options.port):
            log_event(logger, "connect.start", username=self.options.username)
            self.prompts.set_status(f"Connecting to {self.options.connection_string()}")
            try:
                session = await self._client.connect(self.options, self.prompts)
            except ConnectFailure as exc:
                log_event(logger, "connect.failed", level=logging.WARNING, error=type(exc).__name__, detail=str(exc))
                raise
            except Exception as exc:
                logger.exception("Unexpected error while connecting")
                raise ConnectError(str(exc) or type(exc).__name__) from exc
            finally:
                self.prompts.set_status(None)
            log_event(logger, "connect.succeeded")
            return session
