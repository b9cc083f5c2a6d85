"""Prompt relay between a connection attempt and whoever renders its questions.

The attempt side calls `ask()` and suspends until the UI side calls `answer()`
(or `dismiss()`). Only one prompt may be outstanding at a time, so prompts are
answered strictly in the order they were asked.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from remote_projects.errors import UserCancelled
from remote_projects.log_utils import log_event

logger = logging.getLogger(__name__)

YES_ANSWERS = frozenset({"y", "yes"})


class PromptKind(str, Enum):
    PASSWORD = "password"
    HOST_KEY = "host_key"


@dataclass(frozen=True)
class Prompt:
    kind: PromptKind
    message: str
    detail: str | None = None

    @property
    def secret(self) -> bool:
        return self.kind is PromptKind.PASSWORD


class PromptChannel:
    def __init__(self) -> None:
        self._pending: Prompt | None = None
        self._answer: asyncio.Future[str] | None = None
        self._status: str | None = None
        self._closed = False

    @property
    def pending(self) -> Prompt | None:
        return self._pending

    @property
    def status(self) -> str | None:
        return self._status

    def set_status(self, text: str | None) -> None:
        self._status = text

    async def ask(self, prompt: Prompt) -> str:
        if self._closed:
            raise UserCancelled("connection prompt was dismissed")
        if self._pending is not None:
            raise RuntimeError("a prompt is already waiting for an answer")

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending = prompt
        self._answer = future
        log_event(logger, "prompt.asked", kind=prompt.kind.value)
        try:
            return await future
        finally:
            self._pending = None
            self._answer = None

    async def ask_password(self, message: str) -> str:
        return await self.ask(Prompt(PromptKind.PASSWORD, message))

    async def confirm(self, message: str, detail: str | None = None) -> bool:
        """Ask a yes/no question; anything other than y/yes is a no."""
        answer = await self.ask(Prompt(PromptKind.HOST_KEY, message, detail))
        return answer.strip().lower() in YES_ANSWERS

    def answer(self, text: str) -> None:
        if self._answer is None or self._answer.done():
            raise RuntimeError("no prompt is waiting for an answer")
        log_event(logger, "prompt.answered", kind=self._pending.kind.value if self._pending else None)
        self._answer.set_result(text)

    def dismiss(self) -> None:
        """Reject the outstanding prompt (if any) and every later one."""
        self._closed = True
        if self._answer is not None and not self._answer.done():
            self._answer.set_exception(UserCancelled("connection prompt was dismissed"))
