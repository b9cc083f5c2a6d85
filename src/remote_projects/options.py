"""Connection options and the ssh command-line parser."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field

from remote_projects.errors import ParseError

# ssh flags without a value; passed through verbatim.
ALLOWED_OPTS = frozenset({"-4", "-6", "-A", "-a", "-C", "-K", "-k", "-X", "-x", "-Y", "-y"})
# ssh flags that take a value (`-i key` or `-ikey`); passed through verbatim.
ALLOWED_ARGS = ("-B", "-b", "-c", "-D", "-F", "-I", "-i", "-J", "-L", "-m", "-o", "-P", "-R", "-w")

MAX_PORT = 65535


@dataclass
class ConnectionOptions:
    host: str
    port: int | None = None
    username: str | None = None
    args: list[str] = field(default_factory=list)
    nickname: str | None = None

    def connection_string(self) -> str:
        host = f"{self.username}@{self.host}" if self.username else self.host
        if self.port is not None:
            return f"{host}:{self.port}"
        return host

    def ssh_command(self) -> list[str]:
        """Equivalent `ssh` argv, useful for handing the connection to a terminal."""
        argv = ["ssh", *self.args]
        if self.port is not None:
            argv += ["-p", str(self.port)]
        argv.append(f"{self.username}@{self.host}" if self.username else self.host)
        return argv


def _parse_port(value: str | None) -> int:
    # isdigit() alone accepts superscripts and other non-ASCII digits.
    if value is None or not (value.isascii() and value.isdigit()):
        raise ParseError(f"invalid port: {value!r}")
    port = int(value)
    if not 0 < port <= MAX_PORT:
        raise ParseError(f"invalid port: {value!r}")
    return port


def _split_destination(token: str) -> tuple[str | None, str, int | None]:
    """Split `[user@]host[:port]`, accepting `[v6addr]:port` for IPv6 hosts."""
    username: str | None = None
    rest = token
    if "@" in rest:
        username, rest = rest.rsplit("@", 1)
        if not username:
            raise ParseError(f"invalid destination: {token!r}")

    port: int | None = None
    if rest.startswith("["):
        end = rest.find("]")
        if end == -1:
            raise ParseError(f"invalid destination: {token!r}")
        host, suffix = rest[1:end], rest[end + 1 :]
        if suffix:
            if not suffix.startswith(":"):
                raise ParseError(f"invalid destination: {token!r}")
            port = _parse_port(suffix[1:])
    elif ":" in rest:
        host, raw_port = rest.split(":", 1)
        port = _parse_port(raw_port)
    else:
        host = rest

    if not host:
        raise ParseError(f"missing hostname in {token!r}")
    return username, host, port


def parse_command_line(text: str) -> ConnectionOptions:
    """Parse `ssh [user@]host[:port] [-p port] [-l user] [args...]`.

    `-p` and `-l` are folded into the options; the remaining supported flags
    are kept in `args` in their original order. Unsupported flags, a second
    destination, or a bad port raise ParseError.
    """
    try:
        tokens = shlex.split(text)
    except ValueError as exc:
        raise ParseError(f"invalid input: {exc}") from exc

    if tokens and tokens[0] == "ssh":
        tokens = tokens[1:]

    destination: tuple[str | None, str, int | None] | None = None
    port_arg: str | None = None
    user_arg: str | None = None
    args: list[str] = []

    it = iter(tokens)
    for token in it:
        if token in ALLOWED_OPTS:
            args.append(token)
            continue
        if token == "-p":
            port_arg = next(it, None)
            if port_arg is None:
                raise ParseError("missing value for -p")
            continue
        if token.startswith("-p"):
            port_arg = token[2:]
            continue
        if token == "-l":
            user_arg = next(it, None)
            if not user_arg:
                raise ParseError("missing value for -l")
            continue
        if token.startswith("-l"):
            user_arg = token[2:]
            continue
        flag = next((a for a in ALLOWED_ARGS if token.startswith(a)), None)
        if flag is not None:
            args.append(token)
            if token == flag:
                value = next(it, None)
                if value is None:
                    raise ParseError(f"missing value for {flag}")
                args.append(value)
            continue
        if token.startswith("-") or destination is not None:
            raise ParseError(f"unsupported argument: {token!r}")
        destination = _split_destination(token)

    if destination is None:
        raise ParseError("missing hostname")

    username, host, port = destination
    if port_arg is not None:
        port = _parse_port(port_arg)
    return ConnectionOptions(
        host=host,
        port=port,
        username=user_arg or username,
        args=args,
    )
