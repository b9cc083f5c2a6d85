from __future__ import annotations

import asyncio

import pytest

from remote_projects.errors import AuthRejected, HostUnreachable, OpenError, UserCancelled
from remote_projects.modes import (
    ADDRESS_HINT,
    ADDRESS_PLACEHOLDER,
    CreatingServer,
    DefaultState,
    EditingNickname,
    PickingProject,
    ViewingOptions,
)
from remote_projects.options import ConnectionOptions
from remote_projects.prompts import PromptChannel
from remote_projects.registry import ProjectRecord, RegistryState
from remote_projects.workflow import REMOVE_SERVER_OPTIONS

from tests.utils import (
    FakeClient,
    FakeConfirmation,
    FakeLister,
    FakeOpener,
    FakeSession,
    failing,
    make_workflow,
    server,
    succeeding,
    wait_for,
)


async def _submit(harness, address: str) -> None:
    wf = harness.workflow
    assert wf.start_create()
    assert wf.set_address(address)
    wf.confirm()


# -- creating a server --------------------------------------------------


@pytest.mark.asyncio
async def test_new_form_shows_placeholder_and_hint() -> None:
    h = make_workflow()
    h.workflow.start_create()

    mode = h.workflow.mode
    assert isinstance(mode, CreatingServer)
    assert mode.address.placeholder == ADDRESS_PLACEHOLDER
    assert mode.hint == ADDRESS_HINT


@pytest.mark.asyncio
async def test_unreachable_host_keeps_text_and_shows_error() -> None:
    h = make_workflow(client=FakeClient(failing(HostUnreachable("no route to host"))))

    await _submit(h, "ssh alice@example.com")
    await h.workflow.settle()

    mode = h.workflow.mode
    assert isinstance(mode, CreatingServer)
    assert mode.address.text == "ssh alice@example.com"
    assert not mode.address.read_only
    assert mode.attempt is None
    assert mode.error == "host unreachable: no route to host"
    assert h.persistence.state.ssh_connections == ()
    assert len(h.pool) == 0


@pytest.mark.asyncio
async def test_auth_failure_message() -> None:
    h = make_workflow(client=FakeClient(failing(AuthRejected("publickey,password"))))

    await _submit(h, "ssh alice@example.com")
    await h.workflow.settle()

    assert h.workflow.mode.error == "authentication failed: publickey,password"


@pytest.mark.asyncio
async def test_unparseable_address_does_not_connect() -> None:
    h = make_workflow()

    await _submit(h, "ssh -Z example.com")

    mode = h.workflow.mode
    assert isinstance(mode, CreatingServer)
    assert mode.error is not None and mode.error.startswith("could not parse:")
    assert mode.address.text == "ssh -Z example.com"
    assert h.client.calls == []


@pytest.mark.asyncio
async def test_blank_address_is_ignored() -> None:
    h = make_workflow()

    await _submit(h, "   ")

    mode = h.workflow.mode
    assert isinstance(mode, CreatingServer)
    assert mode.attempt is None and mode.error is None
    assert h.client.calls == []


@pytest.mark.asyncio
async def test_address_is_read_only_and_single_attempt_while_connecting() -> None:
    h = make_workflow()
    wf = h.workflow

    await _submit(h, "ssh alice@example.com -p 2222")
    await wait_for(lambda: len(h.client.calls) == 1)

    mode = wf.mode
    assert isinstance(mode, CreatingServer) and mode.attempt is not None
    assert mode.address.read_only
    assert mode.hint is None
    assert wf.set_address("something else") is False
    wf.confirm()
    await asyncio.sleep(0)
    assert len(h.client.calls) == 1
    assert wf.start_create() is False

    h.client.release.set()
    await wf.settle()

    assert isinstance(wf.mode, DefaultState)
    saved = h.persistence.state.ssh_connections
    assert [(s.host, s.username, s.port) for s in saved] == [("example.com", "alice", 2222)]
    assert len(h.pool) == 1
    assert wf.mode.servers == saved


@pytest.mark.asyncio
async def test_cancel_during_attempt_preserves_text_and_discards_result() -> None:
    h = make_workflow()
    wf = h.workflow

    await _submit(h, "ssh alice@example.com")
    await wait_for(lambda: len(h.client.calls) == 1)
    attempt = wf.mode.attempt

    wf.cancel()

    mode = wf.mode
    assert isinstance(mode, CreatingServer)
    assert mode.address.text == "ssh alice@example.com"
    assert not mode.address.read_only
    assert mode.attempt is None and mode.error is None

    h.client.release.set()
    await wait_for(lambda: attempt.done)
    await asyncio.sleep(0)
    assert attempt.cancelled
    assert h.persistence.state.ssh_connections == ()
    assert len(h.pool) == 0


@pytest.mark.asyncio
async def test_password_prompt_is_answered_with_prompt_input() -> None:
    passwords: list[str] = []

    async def _connect(options: ConnectionOptions, prompts: PromptChannel) -> object:
        passwords.append(await prompts.ask_password("Password"))
        return FakeSession(options)

    h = make_workflow(client=FakeClient(_connect))
    wf = h.workflow

    await _submit(h, "ssh alice@example.com")
    await wait_for(lambda: wf.pending_prompt is not None)
    assert wf.pending_prompt.secret

    wf.set_prompt_input("hunter2")
    wf.confirm()
    await wf.settle()

    assert passwords == ["hunter2"]
    assert isinstance(wf.mode, DefaultState)
    assert len(h.persistence.state.ssh_connections) == 1


@pytest.mark.asyncio
async def test_cancel_while_prompting_returns_to_editable_form() -> None:
    async def _connect(_options: ConnectionOptions, prompts: PromptChannel) -> object:
        await prompts.ask_password("Password")
        raise AssertionError("unreachable")

    h = make_workflow(client=FakeClient(_connect))
    wf = h.workflow

    await _submit(h, "ssh alice@example.com")
    await wait_for(lambda: wf.pending_prompt is not None)
    wf.cancel()

    assert wf.pending_prompt is None
    mode = wf.mode
    assert isinstance(mode, CreatingServer)
    assert mode.error is None and mode.attempt is None
    assert mode.address.text == "ssh alice@example.com"


@pytest.mark.asyncio
async def test_user_cancelled_failure_shows_no_error() -> None:
    h = make_workflow(client=FakeClient(failing(UserCancelled("host key rejected"))))

    await _submit(h, "ssh alice@example.com")
    await h.workflow.settle()

    mode = h.workflow.mode
    assert isinstance(mode, CreatingServer)
    assert mode.error is None
    assert not mode.address.read_only


# -- dismissing ---------------------------------------------------------


@pytest.mark.asyncio
async def test_dismiss_only_from_listing() -> None:
    h = make_workflow()
    wf = h.workflow

    wf.start_create()
    assert wf.dismiss() is False
    assert not wf.terminated

    wf.cancel()
    assert isinstance(wf.mode, DefaultState)
    wf.cancel()

    assert wf.terminated
    assert h.host.dismissed_count == 1


# -- server options -----------------------------------------------------


@pytest.mark.asyncio
async def test_clearing_nickname_stores_none() -> None:
    h = make_workflow([server("a"), server("b"), server("c", nickname="old")])
    wf = h.workflow

    assert wf.view_server_options(2)
    assert wf.mode.nickname_action_label == "Edit Nickname"
    assert wf.edit_nickname()
    assert isinstance(wf.mode, EditingNickname)
    assert wf.mode.text == "old"

    wf.set_nickname_text("")
    assert wf.mode.placeholder is not None
    wf.confirm()

    assert isinstance(wf.mode, DefaultState)
    assert h.persistence.state.ssh_connections[2].nickname is None


@pytest.mark.asyncio
async def test_setting_nickname() -> None:
    h = make_workflow([server("example.com")])
    wf = h.workflow

    wf.view_server_options(0)
    assert wf.mode.nickname_action_label == "Add Nickname to Server"
    wf.edit_nickname()
    wf.set_nickname_text("prod")
    wf.confirm()

    assert h.persistence.state.ssh_connections[0].display_label() == ("prod", "(example.com)")


@pytest.mark.asyncio
async def test_external_removal_returns_options_view_to_listing() -> None:
    a, b = server("a"), server("b")
    h = make_workflow([a, b])
    wf = h.workflow
    assert wf.view_server_options(1)

    h.persistence.state = RegistryState(ssh_connections=(a,))

    mode = wf.render()
    assert isinstance(mode, DefaultState)
    assert mode.servers == (a,)


@pytest.mark.asyncio
async def test_index_pointing_at_other_server_returns_to_listing() -> None:
    h = make_workflow([server("a"), server("b")])
    wf = h.workflow
    wf.view_server_options(0)

    h.persistence.state = RegistryState(ssh_connections=(server("b"),))

    assert isinstance(wf.render(), DefaultState)


@pytest.mark.asyncio
async def test_record_changed_elsewhere_returns_to_listing() -> None:
    h = make_workflow([server("a")])
    wf = h.workflow
    wf.view_server_options(0)

    h.persistence.state = RegistryState(ssh_connections=(server("a", nickname="alpha"),))

    mode = wf.render()
    assert isinstance(mode, DefaultState)
    assert mode.servers[0].nickname == "alpha"


@pytest.mark.asyncio
async def test_removed_duplicate_does_not_retarget_options_view() -> None:
    prod = server("db", username="admin", nickname="prod")
    staging = server("db", username="admin", nickname="staging")
    h = make_workflow([prod, staging])
    wf = h.workflow
    wf.view_server_options(0)

    h.persistence.state = RegistryState(ssh_connections=(staging,))

    assert isinstance(wf.render(), DefaultState)
    assert await wf.remove_server() is False
    assert h.persistence.state.ssh_connections == (staging,)


@pytest.mark.asyncio
async def test_remove_without_render_keeps_shifted_duplicate() -> None:
    prod = server("db", username="admin", nickname="prod")
    staging = server("db", username="admin", nickname="staging")
    h = make_workflow([prod, staging])
    wf = h.workflow
    wf.view_server_options(0)
    h.persistence.state = RegistryState(ssh_connections=(staging,))

    await wf.remove_server()

    assert h.persistence.state.ssh_connections == (staging,)


@pytest.mark.asyncio
async def test_render_refreshes_listing() -> None:
    h = make_workflow()
    h.persistence.state = RegistryState(ssh_connections=(server("new"),))

    assert [s.host for s in h.workflow.render().servers] == ["new"]


@pytest.mark.asyncio
async def test_view_missing_index_is_rejected() -> None:
    h = make_workflow([server("a")])

    assert h.workflow.view_server_options(4) is False
    assert isinstance(h.workflow.mode, DefaultState)


@pytest.mark.asyncio
async def test_copy_server_address() -> None:
    h = make_workflow([server("example.com", username="alice", port=2222)])
    wf = h.workflow
    wf.view_server_options(0)

    assert wf.copy_server_address() == "alice@example.com:2222"
    assert h.clipboard.contents == ["alice@example.com:2222"]
    assert h.notifier.messages == [("Copied server address (alice@example.com:2222) to clipboard", "info", None)]


@pytest.mark.asyncio
async def test_remove_server_after_confirmation() -> None:
    h = make_workflow([server("a"), server("b")])
    wf = h.workflow
    wf.view_server_options(0)

    assert await wf.remove_server() is True

    assert h.confirmation.asked == [("Remove server `a`?", REMOVE_SERVER_OPTIONS)]
    assert [s.host for s in h.persistence.state.ssh_connections] == ["b"]
    assert isinstance(wf.mode, DefaultState)
    assert wf.mode.servers == h.persistence.state.ssh_connections


@pytest.mark.parametrize("choice", [1, None])
@pytest.mark.asyncio
async def test_remove_server_declined_or_dismissed(choice: int | None) -> None:
    h = make_workflow([server("a")], confirmation=FakeConfirmation(choice))
    wf = h.workflow
    wf.view_server_options(0)

    assert await wf.remove_server() is False

    assert isinstance(wf.mode, ViewingOptions)
    assert len(h.persistence.state.ssh_connections) == 1
    assert h.persistence.updates == 0


@pytest.mark.asyncio
async def test_remove_server_skips_when_index_moved() -> None:
    h = make_workflow([server("a"), server("b")])
    wf = h.workflow
    wf.view_server_options(0)
    h.persistence.state = RegistryState(ssh_connections=(server("b"),))

    await wf.remove_server()

    assert [s.host for s in h.persistence.state.ssh_connections] == ["b"]


# -- opening folders and projects ---------------------------------------


@pytest.mark.asyncio
async def test_open_folder_saves_project_opens_it_and_closes() -> None:
    h = make_workflow([server("example.com", username="alice")], client=FakeClient(succeeding()))
    wf = h.workflow

    assert wf.open_folder(0)
    assert isinstance(wf.mode, DefaultState) and wf.mode.connection is not None
    await wf.settle()

    project = ProjectRecord.from_paths(["/home/alice/project"])
    assert h.persistence.state.ssh_connections[0].projects == frozenset({project})
    assert len(h.pool) == 1
    session = next(iter(h.pool))
    assert h.lister.sessions == [session]
    assert h.opener.opened == [(session, ["/home/alice/project"])]
    assert wf.terminated
    assert h.host.dismissed_count == 1


@pytest.mark.asyncio
async def test_open_folder_enters_project_picker() -> None:
    gate = asyncio.Event()

    class _SlowLister(FakeLister):
        async def select(self, session: object) -> list[str]:
            await gate.wait()
            return await super().select(session)

    h = make_workflow([server("a")], client=FakeClient(succeeding()), lister=_SlowLister(["/srv"]))
    wf = h.workflow

    wf.open_folder(0)
    await wait_for(lambda: isinstance(wf.mode, PickingProject))
    assert wf.mode.server.host == "a"

    gate.set()
    await wf.settle()
    assert wf.terminated


@pytest.mark.asyncio
async def test_open_folder_connect_failure_reopens_modal() -> None:
    h = make_workflow([server("a")], client=FakeClient(failing(HostUnreachable("timed out"))))
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert isinstance(wf.mode, DefaultState) and wf.mode.connection is None
    assert h.notifier.messages == [("Failed to connect", "error", "host unreachable: timed out")]
    assert h.host.reopened == 1
    assert not wf.terminated
    assert h.persistence.updates == 0


@pytest.mark.asyncio
async def test_open_folder_empty_selection_reopens_modal() -> None:
    h = make_workflow([server("a")], client=FakeClient(succeeding()), lister=FakeLister([]))
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert isinstance(wf.mode, DefaultState)
    assert h.host.reopened == 1
    assert h.persistence.state.ssh_connections[0].projects == frozenset()
    assert h.opener.opened == []
    assert len(h.pool) == 1


@pytest.mark.asyncio
async def test_open_failure_keeps_project_and_session() -> None:
    h = make_workflow(
        [server("a")],
        client=FakeClient(succeeding()),
        opener=FakeOpener(OpenError("/srv/app is not a directory")),
        lister=FakeLister(["/srv/app"]),
    )
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert h.persistence.state.ssh_connections[0].projects == frozenset({ProjectRecord.from_paths(["/srv/app"])})
    assert h.notifier.messages == [("Failed to open path", "error", "/srv/app is not a directory")]
    assert h.host.reopened == 1
    assert len(h.pool) == 1
    assert not wf.terminated
    assert isinstance(wf.mode, DefaultState)


@pytest.mark.asyncio
async def test_listing_failure_is_reported() -> None:
    h = make_workflow([server("a")], client=FakeClient(succeeding()), lister=FakeLister(error=OpenError("sftp refused")))
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert h.notifier.messages == [("Failed to list remote directories", "error", "sftp refused")]
    assert h.host.reopened == 1


@pytest.mark.asyncio
async def test_unexpected_listing_error_returns_to_listing() -> None:
    h = make_workflow([server("a")], client=FakeClient(succeeding()), lister=FakeLister(error=OSError("sftp channel closed")))
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert isinstance(wf.mode, DefaultState)
    assert h.notifier.messages == [("Failed to list remote directories", "error", "sftp channel closed")]
    assert h.host.reopened == 1
    assert not wf.terminated


@pytest.mark.asyncio
async def test_unexpected_open_error_returns_to_listing() -> None:
    class _BrokenOpener(FakeOpener):
        async def open(self, session, paths):
            raise OSError("connection reset")

    h = make_workflow([server("a")], client=FakeClient(succeeding()), opener=_BrokenOpener())
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert isinstance(wf.mode, DefaultState)
    assert h.notifier.messages == [("Failed to open path", "error", "connection reset")]
    assert h.host.reopened == 1
    assert len(h.pool) == 1


@pytest.mark.asyncio
async def test_relative_selection_is_reported_not_saved() -> None:
    h = make_workflow([server("a")], client=FakeClient(succeeding()), lister=FakeLister(["project"]))
    wf = h.workflow

    wf.open_folder(0)
    await wf.settle()

    assert isinstance(wf.mode, DefaultState)
    assert h.persistence.state.ssh_connections[0].projects == frozenset()
    assert h.opener.opened == []
    [(title, level, detail)] = h.notifier.messages
    assert (title, level) == ("Failed to open path", "error")
    assert "must be absolute" in detail
    assert h.host.reopened == 1


@pytest.mark.asyncio
async def test_second_action_is_refused_while_connecting() -> None:
    h = make_workflow([server("a")])
    wf = h.workflow

    assert wf.open_folder(0)
    await wait_for(lambda: len(h.client.calls) == 1)
    attempt = wf.mode.connection

    assert wf.open_folder(0) is False
    assert wf.start_create() is False
    assert wf.view_server_options(0) is False

    wf.cancel()
    assert isinstance(wf.mode, DefaultState) and wf.mode.connection is None
    assert not wf.terminated
    await wait_for(lambda: attempt.done)
    assert attempt.cancelled


@pytest.mark.asyncio
async def test_listing_refresh_does_not_orphan_open_folder() -> None:
    h = make_workflow([server("a")])
    wf = h.workflow

    wf.open_folder(0)
    await wait_for(lambda: len(h.client.calls) == 1)
    h.persistence.state = RegistryState(ssh_connections=(server("a"), server("b")))
    wf.render()

    h.client.release.set()
    await wf.settle()

    assert wf.terminated
    assert len(h.opener.opened) == 1


@pytest.mark.asyncio
async def test_open_saved_project() -> None:
    project = ProjectRecord.from_paths(["/srv/web", "/srv/api"])
    h = make_workflow([server("a", projects=frozenset({project}))], client=FakeClient(succeeding()))
    wf = h.workflow

    assert wf.open_project(0, project)
    await wf.settle()

    assert [paths for _session, paths in h.opener.opened] == [["/srv/api", "/srv/web"]]
    assert h.persistence.updates == 0
    assert h.lister.sessions == []
    assert wf.terminated


@pytest.mark.asyncio
async def test_open_unknown_project_is_refused() -> None:
    h = make_workflow([server("a")], client=FakeClient(succeeding()))

    assert h.workflow.open_project(0, ProjectRecord.from_paths(["/nowhere"])) is False
    assert h.client.calls == []


@pytest.mark.asyncio
async def test_delete_project() -> None:
    keep = ProjectRecord.from_paths(["/keep"])
    drop = ProjectRecord.from_paths(["/drop"])
    h = make_workflow([server("a", projects=frozenset({keep, drop}))])
    wf = h.workflow

    assert wf.delete_project(0, drop)
    assert wf.delete_project(3, drop) is False

    assert h.persistence.state.ssh_connections[0].projects == frozenset({keep})
    assert wf.render().servers[0].sorted_projects() == [keep]
