"""paramiko-backed session client, directory checks and workspace opener.

paramiko is blocking, so each call runs in a worker thread. Prompts raised on
that thread (unknown host key, password) are marshalled back onto the event
loop and answered through the attempt's PromptChannel.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import getpass
import hashlib
import logging
import posixpath
import shlex
import socket
import threading
from pathlib import Path
from typing import Any, Callable, Coroutine, Sequence, TypeVar

import paramiko

from remote_projects.errors import AuthRejected, ConnectError, HostUnreachable, OpenError, UserCancelled
from remote_projects.log_utils import log_event
from remote_projects.options import ConnectionOptions
from remote_projects.prompts import PromptChannel

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SSH_PORT = 22
# ssh flags that only make sense to the OpenSSH client and are ignored here.
_IGNORED_FLAGS = frozenset({"-4", "-6", "-A", "-a", "-C", "-K", "-k", "-X", "-x", "-Y", "-y"})


def key_fingerprint(key: paramiko.PKey) -> str:
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def identity_files(args: Sequence[str]) -> list[str]:
    """Collect `-i` identity files from pass-through ssh arguments."""
    files: list[str] = []
    it = iter(args)
    for arg in it:
        if arg == "-i":
            value = next(it, None)
            if value:
                files.append(str(Path(value).expanduser()))
        elif arg.startswith("-i"):
            files.append(str(Path(arg[2:]).expanduser()))
    return files


class SshSession:
    """Live paramiko connection plus a lazily opened SFTP channel."""

    def __init__(self, options: ConnectionOptions, client: paramiko.SSHClient) -> None:
        self.options = options
        self.client = client
        self._sftp: paramiko.SFTPClient | None = None
        self._lock = threading.Lock()

    def sftp(self) -> paramiko.SFTPClient:
        with self._lock:
            if self._sftp is None:
                self._sftp = self.client.open_sftp()
            return self._sftp

    def home_directory(self) -> str:
        return self.sftp().normalize(".")

    def is_directory(self, path: str) -> bool:
        try:
            attrs = self.sftp().stat(path)
        except OSError:
            return False
        return attrs.st_mode is not None and (attrs.st_mode & 0o170000) == 0o040000

    def list_directories(self, path: str) -> list[str]:
        entries = self.sftp().listdir_attr(path)
        return sorted(
            posixpath.join(path, entry.filename)
            for entry in entries
            if entry.st_mode is not None and (entry.st_mode & 0o170000) == 0o040000
        )

    def close(self) -> None:
        with self._lock:
            if self._sftp is not None:
                with contextlib.suppress(Exception):
                    self._sftp.close()
                self._sftp = None
        self.client.close()


class _PromptingHostKeyPolicy(paramiko.MissingHostKeyPolicy):
    """Ask before trusting an unknown host key; remember accepted keys."""

    def __init__(self, confirm: Callable[[str, str], bool], known_hosts: Path | None) -> None:
        self._confirm = confirm
        self._known_hosts = known_hosts

    def missing_host_key(self, client: paramiko.SSHClient, hostname: str, key: paramiko.PKey) -> None:
        fingerprint = key_fingerprint(key)
        message = f"The authenticity of host '{hostname}' can't be established. Trust it? (yes/no)"
        detail = f"{key.get_name()} key fingerprint is {fingerprint}."
        if not self._confirm(message, detail):
            log_event(logger, "ssh.host_key.rejected", host=hostname, fingerprint=fingerprint)
            raise UserCancelled(f"host key for {hostname} was not trusted")
        client.get_host_keys().add(hostname, key.get_name(), key)
        log_event(logger, "ssh.host_key.accepted", host=hostname, fingerprint=fingerprint)
        if self._known_hosts is not None:
            try:
                self._known_hosts.parent.mkdir(parents=True, exist_ok=True)
                client.save_host_keys(str(self._known_hosts))
            except OSError as exc:
                log_event(logger, "ssh.host_key.save_failed", level=logging.WARNING, error=str(exc))


class _LoopBridge:
    """Run prompt coroutines on the event loop from a worker thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def call(self, coro: Coroutine[Any, Any, T]) -> T:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()


async def _run_blocking(func: Callable[[], T], *, on_abandoned: Callable[[T], None] | None = None) -> T:
    """Await `func` on a worker thread; clean up its result if the caller goes away."""
    future: asyncio.Future[T] = asyncio.get_running_loop().run_in_executor(None, func)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        if on_abandoned is not None:

            def _cleanup(done: asyncio.Future[T]) -> None:
                if not done.cancelled() and done.exception() is None:
                    on_abandoned(done.result())

            future.add_done_callback(_cleanup)
        raise


class ParamikoSessionClient:
    """RemoteSessionClient that authenticates with keys/agent, then password."""

    def __init__(self, *, timeout: float = 15.0, known_hosts: Path | None = None) -> None:
        self._timeout = timeout
        self._known_hosts = known_hosts

    async def connect(self, options: ConnectionOptions, prompts: PromptChannel) -> SshSession:
        bridge = _LoopBridge(asyncio.get_running_loop())
        return await _run_blocking(
            lambda: self._connect_blocking(options, prompts, bridge),
            on_abandoned=lambda session: session.close(),
        )

    def _connect_blocking(self, options: ConnectionOptions, prompts: PromptChannel, bridge: _LoopBridge) -> SshSession:
        client = paramiko.SSHClient()
        with contextlib.suppress(OSError):
            client.load_system_host_keys()
        if self._known_hosts is not None and self._known_hosts.exists():
            with contextlib.suppress(OSError):
                client.load_host_keys(str(self._known_hosts))
        client.set_missing_host_key_policy(
            _PromptingHostKeyPolicy(
                lambda message, detail: bridge.call(prompts.confirm(message, detail)),
                self._known_hosts,
            )
        )

        for arg in options.args:
            if arg.startswith("-") and arg not in _IGNORED_FLAGS and not arg.startswith("-i"):
                log_event(logger, "ssh.argument_ignored", level=logging.DEBUG, argument=arg)

        username = options.username or getpass.getuser()
        kwargs: dict[str, Any] = {
            "hostname": options.host,
            "port": options.port or DEFAULT_SSH_PORT,
            "username": username,
            "timeout": self._timeout,
            "banner_timeout": self._timeout,
            "auth_timeout": self._timeout,
        }
        keys = identity_files(options.args)
        if keys:
            kwargs["key_filename"] = keys

        try:
            try:
                client.connect(**kwargs)
            except paramiko.AuthenticationException:
                password = bridge.call(prompts.ask_password(f"Password for {username}@{options.host}:"))
                client.connect(**kwargs, password=password, allow_agent=False, look_for_keys=False)
        except UserCancelled:
            client.close()
            raise
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthRejected(str(exc)) from exc
        except paramiko.BadHostKeyException as exc:
            client.close()
            raise ConnectError(f"host key for {options.host} does not match the known key") from exc
        except paramiko.SSHException as exc:
            client.close()
            raise ConnectError(str(exc) or "ssh negotiation failed") from exc
        except (socket.gaierror, socket.timeout, OSError) as exc:
            client.close()
            raise HostUnreachable(str(exc)) from exc

        log_event(logger, "ssh.connected", host=options.host, username=username)
        return SshSession(options, client)


class SshWorkspaceOpener:
    """Check the chosen directories exist, then start a shell in the first one."""

    def __init__(self, *, launch_shell: bool = True) -> None:
        self._launch_shell = launch_shell

    async def open(self, session: SshSession, paths: Sequence[str]) -> None:
        if not paths:
            raise OpenError("no paths to open")
        try:
            missing = await asyncio.to_thread(lambda: [p for p in paths if not session.is_directory(p)])
        except (OSError, paramiko.SSHException) as exc:
            raise OpenError(f"could not inspect {session.options.host}: {exc}") from exc
        if missing:
            raise OpenError(f"not a directory on {session.options.host}: {', '.join(missing)}")
        if not self._launch_shell:
            return

        argv = session.options.ssh_command()
        argv[1:1] = ["-t"]
        argv.append(f"cd {shlex.quote(paths[0])} && exec \"$SHELL\" -l")
        log_event(logger, "ssh.shell.launch", host=session.options.host, path=paths[0])
        try:
            proc = await asyncio.create_subprocess_exec(*argv)
        except OSError as exc:
            raise OpenError(f"could not start ssh: {exc}") from exc
        code = await proc.wait()
        if code == 255:
            raise OpenError(f"ssh exited with status {code}")
