"""Error taxonomy for connecting to remote servers and opening projects.

Every failure the workflow can observe is one of these classes. None of them is
fatal: the workflow catches them at its mode transitions and surfaces the
message inline (connection failures), through the notifier (open failures), or
not at all (user cancellation).
"""

from __future__ import annotations


class RemoteProjectsError(Exception):
    """Base class for all errors raised by this package."""


class ConnectFailure(RemoteProjectsError):
    """A connection attempt did not produce a session."""


class ConnectError(ConnectFailure):
    """Connection failure that carries only a message."""


class ParseError(ConnectFailure):
    """The connection command line could not be parsed."""


class AuthRejected(ConnectFailure):
    """The remote host refused every offered credential."""


class HostUnreachable(ConnectFailure):
    """The host could not be resolved or the TCP connection failed."""


class UserCancelled(ConnectFailure):
    """The user dismissed a prompt while the attempt was waiting on it."""


class OpenError(RemoteProjectsError):
    """The workspace opener failed after a session was established."""


class Cancelled(RemoteProjectsError):
    """A confirmation prompt was dismissed without choosing an option."""


def describe_failure(exc: BaseException) -> str:
    """Render a failure for inline display next to the address input."""
    message = str(exc).strip()
    if isinstance(exc, AuthRejected):
        return f"authentication failed: {message}" if message else "authentication failed"
    if isinstance(exc, HostUnreachable):
        return f"host unreachable: {message}" if message else "host unreachable"
    return message or type(exc).__name__
