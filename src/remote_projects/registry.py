"""Configured remote servers and their saved projects.

The registry is an ordered tuple of `ServerRecord`s addressed by index. It is
never mutated in place: every change is a transform `RegistryState ->
RegistryState` handed to the persistence collaborator, which applies it
atomically with respect to other transforms. Index-addressed transforms take an
optional `expected` snapshot and become no-ops when the record at that index no
longer matches, so a stale index can never touch the wrong server.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import PurePosixPath, PureWindowsPath
from typing import Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from remote_projects.collaborators import Persistence
from remote_projects.log_utils import log_event
from remote_projects.options import ConnectionOptions

logger = logging.getLogger(__name__)


class UploadBinaryPolicy(str, Enum):
    """How the remote helper binary reaches the server."""

    UPLOAD_OVER_SSH = "upload_over_ssh"
    DOWNLOAD_ON_SERVER = "download_on_server"


class ProjectRecord(BaseModel):
    """A saved set of remote directories opened together."""

    model_config = ConfigDict(frozen=True)

    paths: frozenset[str]

    @field_validator("paths")
    @classmethod
    def _absolute_paths(cls, paths: frozenset[str]) -> frozenset[str]:
        for path in paths:
            if not (PurePosixPath(path).is_absolute() or PureWindowsPath(path).is_absolute()):
                raise ValueError(f"project path must be absolute: {path!r}")
        return paths

    @field_serializer("paths")
    def _sorted_paths(self, paths: frozenset[str]) -> list[str]:
        return sorted(paths)

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> "ProjectRecord":
        return cls(paths=frozenset(paths))

    def sort_key(self) -> list[str]:
        return sorted(self.paths)


class ServerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int | None = Field(default=None, ge=0, le=65535)
    username: str | None = None
    args: tuple[str, ...] = ()
    nickname: str | None = None
    upload_binary_policy: UploadBinaryPolicy | None = None
    projects: frozenset[ProjectRecord] = frozenset()

    @field_serializer("projects")
    def _sorted_projects(self, projects: frozenset[ProjectRecord]) -> list[dict[str, list[str]]]:
        return [{"paths": p.sort_key()} for p in sorted(projects, key=ProjectRecord.sort_key)]

    @classmethod
    def from_options(cls, options: ConnectionOptions) -> "ServerRecord":
        return cls(
            host=options.host,
            port=options.port,
            username=options.username,
            args=tuple(options.args),
            nickname=options.nickname or None,
        )

    def to_options(self) -> ConnectionOptions:
        return ConnectionOptions(
            host=self.host,
            port=self.port,
            username=self.username,
            args=list(self.args),
            nickname=self.nickname,
        )

    def connection_string(self) -> str:
        return self.to_options().connection_string()

    def display_label(self) -> tuple[str, str | None]:
        """Main label and optional secondary label for listings."""
        if self.nickname:
            return self.nickname, f"({self.host})"
        return self.host, None

    def sorted_projects(self) -> list[ProjectRecord]:
        return sorted(self.projects, key=ProjectRecord.sort_key)


class RegistryState(BaseModel):
    """Root of the persisted settings document."""

    model_config = ConfigDict(frozen=True)

    ssh_connections: tuple[ServerRecord, ...] = ()

    def get(self, index: int) -> ServerRecord | None:
        if 0 <= index < len(self.ssh_connections):
            return self.ssh_connections[index]
        return None

    def replace(self, index: int, record: ServerRecord) -> "RegistryState":
        servers = list(self.ssh_connections)
        servers[index] = record
        return self.model_copy(update={"ssh_connections": tuple(servers)})


RegistryTransform = Callable[[RegistryState], RegistryState]


def _resolve(state: RegistryState, index: int, expected: ServerRecord | None) -> ServerRecord | None:
    record = state.get(index)
    if record is None:
        log_event(logger, "registry.stale_index", level=logging.DEBUG, index=index, size=len(state.ssh_connections))
        return None
    # Whole-record comparison: duplicates of one host may differ only by nickname.
    if expected is not None and record != expected:
        log_event(logger, "registry.stale_record", level=logging.DEBUG, index=index, host=record.host)
        return None
    return record


def add_server(options: ConnectionOptions) -> RegistryTransform:
    # Duplicates of an existing host/user/port are kept; they differ by index.
    def _apply(state: RegistryState) -> RegistryState:
        servers = (*state.ssh_connections, ServerRecord.from_options(options))
        return state.model_copy(update={"ssh_connections": servers})

    return _apply


def remove_server(index: int, *, expected: ServerRecord | None = None) -> RegistryTransform:
    def _apply(state: RegistryState) -> RegistryState:
        if _resolve(state, index, expected) is None:
            return state
        servers = state.ssh_connections[:index] + state.ssh_connections[index + 1 :]
        return state.model_copy(update={"ssh_connections": servers})

    return _apply


def add_project(index: int, project: ProjectRecord, *, expected: ServerRecord | None = None) -> RegistryTransform:
    def _apply(state: RegistryState) -> RegistryState:
        record = _resolve(state, index, expected)
        if record is None or project in record.projects:
            return state
        return state.replace(index, record.model_copy(update={"projects": record.projects | {project}}))

    return _apply


def remove_project(index: int, project: ProjectRecord, *, expected: ServerRecord | None = None) -> RegistryTransform:
    def _apply(state: RegistryState) -> RegistryState:
        record = _resolve(state, index, expected)
        if record is None or project not in record.projects:
            return state
        return state.replace(index, record.model_copy(update={"projects": record.projects - {project}}))

    return _apply


def set_nickname(index: int, nickname: str | None, *, expected: ServerRecord | None = None) -> RegistryTransform:
    normalized = nickname or None

    def _apply(state: RegistryState) -> RegistryState:
        record = _resolve(state, index, expected)
        if record is None:
            return state
        return state.replace(index, record.model_copy(update={"nickname": normalized}))

    return _apply


class ServerRegistry:
    """Describes registry mutations and hands them to the persistence layer.

    Reads go through `snapshot()`; the registry itself holds no state, so any
    external change to the settings is visible on the next read.
    """

    def __init__(self, persistence: Persistence) -> None:
        self._persistence = persistence

    def snapshot(self) -> RegistryState:
        return self._persistence.snapshot()

    def servers(self) -> tuple[ServerRecord, ...]:
        return self.snapshot().ssh_connections

    def add_server(self, options: ConnectionOptions) -> None:
        log_event(logger, "registry.add_server", host=options.host, port=options.port)
        self._persistence.update(add_server(options))

    def remove_server(self, index: int, *, expected: ServerRecord | None = None) -> None:
        log_event(logger, "registry.remove_server", index=index)
        self._persistence.update(remove_server(index, expected=expected))

    def add_project(self, index: int, project: ProjectRecord, *, expected: ServerRecord | None = None) -> None:
        log_event(logger, "registry.add_project", index=index, paths=project.paths)
        self._persistence.update(add_project(index, project, expected=expected))

    def remove_project(self, index: int, project: ProjectRecord, *, expected: ServerRecord | None = None) -> None:
        log_event(logger, "registry.remove_project", index=index, paths=project.paths)
        self._persistence.update(remove_project(index, project, expected=expected))

    def set_nickname(self, index: int, nickname: str | None, *, expected: ServerRecord | None = None) -> None:
        log_event(logger, "registry.set_nickname", index=index, nickname=nickname or None)
        self._persistence.update(set_nickname(index, nickname, expected=expected))
