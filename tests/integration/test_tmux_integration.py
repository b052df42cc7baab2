"""Integration tests against a real tmux server.

Each test runs tmux on a private socket (TMUX_TMPDIR) so the developer's own
sessions are never listed or touched.
"""

import asyncio
import shutil

import pytest

from trinetra.core import tmux_bridge, tmux_io
from trinetra.core.errors import TargetNotFound
from trinetra.core.models import InputMode, SessionStatus, pane_target
from trinetra.core.session_lifecycle import SessionManager
from trinetra.core.subscriptions import SubscriptionRegistry

pytestmark = pytest.mark.skipif(shutil.which("tmux") is None, reason="tmux is not installed")


@pytest.fixture
def isolated_tmux(tmp_path, monkeypatch):
    socket_dir = tmp_path / "tmux"
    socket_dir.mkdir()
    monkeypatch.setenv("TMUX_TMPDIR", str(socket_dir))
    monkeypatch.delenv("TMUX", raising=False)
    yield socket_dir


@pytest.fixture
async def manager(test_db, data_dir, isolated_tmux):  # pylint: disable=unused-argument
    mgr = SessionManager(test_db)
    created = []
    original_create = mgr.create

    async def tracking_create(*args, **kwargs):
        session = await original_create(*args, **kwargs)
        created.append(session.session_id)
        return session

    mgr.create = tracking_create
    yield mgr
    for session_id in created:
        await mgr.kill(session_id)


async def _wait_for(predicate, timeout=5.0, interval=0.1):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = await predicate()
        if result or asyncio.get_running_loop().time() > deadline:
            return result
        await asyncio.sleep(interval)


@pytest.mark.asyncio
async def test_create_run_and_snapshot(manager, tmp_path):
    session = await manager.create(title="it", path_override=str(tmp_path))
    await asyncio.sleep(0.3)

    await tmux_io.send_input(manager.db, session.session_id, "0.0", "echo trinetra-hi", mode=InputMode.COMMAND)

    async def seen():
        text = await manager.snapshot(session.session_id, "0.0")
        return "trinetra-hi" in text.split("echo trinetra-hi", 1)[-1]

    assert await _wait_for(seen)


@pytest.mark.asyncio
async def test_kill_then_list_shows_exited(manager, tmp_path):
    session = await manager.create(title="it", path_override=str(tmp_path))
    listed = {s.session_id: s for s in await manager.list()}
    assert listed[session.session_id].status == SessionStatus.RUNNING

    await manager.kill(session.session_id)

    listed = {s.session_id: s for s in await manager.list()}
    assert listed[session.session_id].status == SessionStatus.EXITED


@pytest.mark.asyncio
async def test_output_log_receives_pane_output(manager, tmp_path, data_dir):
    session = await manager.create(title="it", path_override=str(tmp_path))
    await asyncio.sleep(0.3)
    await manager.snapshot(session.session_id, "0.0")

    await tmux_bridge.send_command(pane_target(session.tmux_session_name, "0.0"), "echo logged-line")
    log_path = data_dir / "logs" / session.session_id / "0.0.log"

    async def logged():
        return log_path.exists() and "logged-line" in log_path.read_text(encoding="utf-8", errors="replace")

    assert await _wait_for(logged)


@pytest.mark.asyncio
async def test_subscription_follows_output(manager, test_db, tmp_path):
    session = await manager.create(title="it", path_override=str(tmp_path))
    await asyncio.sleep(0.3)
    registry = SubscriptionRegistry(test_db, poll_interval=0.1)
    messages = []

    async def send(message):
        messages.append(message)

    conn = registry.open_connection(send)
    assert await registry.subscribe(conn, session.session_id, "0.0")

    await tmux_io.send_input(test_db, session.session_id, "0.0", "echo streamed-out", mode=InputMode.COMMAND)

    async def streamed():
        texts = [m["text"] for m in messages if m["type"] == "snapshot"]
        return any("streamed-out" in t.split("echo streamed-out", 1)[-1] for t in texts)

    try:
        assert await _wait_for(streamed)
    finally:
        await registry.close_connection(conn)

    assert registry.active_subscription_count() == 0


@pytest.mark.asyncio
async def test_workspace_path_is_session_directory(manager, test_db, tmp_path):
    project = tmp_path / "proj"
    project.mkdir()
    workspace = await test_db.create_workspace(name="proj", path=str(project))

    session = await manager.create(workspace_id=workspace.id)

    assert session.status == SessionStatus.RUNNING
    assert session.phase is not None and session.phase.value == "IDLE"
    details = await manager.get_details(session.session_id)
    assert details.windows[0].panes[0].current_path == str(project.resolve())


@pytest.mark.asyncio
async def test_capture_without_input_is_stable(manager, tmp_path):
    session = await manager.create(title="it", path_override=str(tmp_path))

    async def prompt_drawn():
        return (await manager.snapshot(session.session_id, "0.0")).strip()

    assert await _wait_for(prompt_drawn)
    await asyncio.sleep(0.3)

    first = await manager.snapshot(session.session_id, "0.0")
    second = await manager.snapshot(session.session_id, "0.0")

    assert first == second


@pytest.mark.asyncio
async def test_piping_twice_keeps_output_logged(manager, tmp_path, data_dir):
    session = await manager.create(title="it", path_override=str(tmp_path))
    target = pane_target(session.tmux_session_name, "0.0")
    log_path = data_dir / "logs" / session.session_id / "0.0.log"
    assert await tmux_bridge.is_pane_piped(target)

    assert await tmux_bridge.pipe_pane_to_file(target, log_path) is False
    assert await tmux_bridge.pipe_pane_to_file(target, log_path) is False

    assert await tmux_bridge.is_pane_piped(target)
    await tmux_bridge.send_command(target, "echo still-logged")

    async def logged():
        return log_path.exists() and "still-logged" in log_path.read_text(encoding="utf-8", errors="replace")

    assert await _wait_for(logged)


@pytest.mark.asyncio
async def test_kill_leaves_unowned_and_prefix_matched_sessions_alone(manager, tmp_path):
    await tmux_bridge.create_session("main", str(tmp_path))
    await tmux_bridge.create_session("ccp_1a2b3c4d", str(tmp_path))
    try:
        for session_id in ("main", "ccp_1"):
            with pytest.raises(TargetNotFound):
                await manager.kill(session_id)

        live = await tmux_bridge.list_sessions(owned_only=False)
        assert {"main", "ccp_1a2b3c4d"} <= set(live)
    finally:
        for name in ("main", "ccp_1a2b3c4d"):
            await tmux_bridge.kill_session(name)
