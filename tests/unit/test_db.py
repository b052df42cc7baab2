"""Unit tests for db.py."""

import sqlite3

import pytest

from trinetra.core.models import SessionPhase, SessionStatus


class TestSessions:
    """Tests for session registry operations."""

    @pytest.mark.asyncio
    async def test_create_session(self, test_db):
        session = await test_db.create_session(tmux_session_name="ccp_1a2b", title="api")

        assert session.session_id
        assert session.status == SessionStatus.RUNNING
        assert session.active_pane == "0.0"
        assert session.created_at is not None

    @pytest.mark.asyncio
    async def test_get_session(self, test_db):
        created = await test_db.create_session(tmux_session_name="ccp_1a2b", title="api", session_id="fixed-id")

        assert (await test_db.get_session("fixed-id")).title == "api"
        assert (await test_db.get_session_by_tmux_name("ccp_1a2b")).session_id == created.session_id
        assert await test_db.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_tmux_name_is_unique(self, test_db):
        await test_db.create_session(tmux_session_name="ccp_1a2b", title="one")
        with pytest.raises(sqlite3.IntegrityError):
            await test_db.create_session(tmux_session_name="ccp_1a2b", title="two")

    @pytest.mark.asyncio
    async def test_list_sessions_orders_by_last_activity(self, test_db):
        first = await test_db.create_session(tmux_session_name="ccp_aaaa", title="first")
        await test_db.create_session(tmux_session_name="ccp_bbbb", title="second")
        await test_db.update_last_activity(first.session_id)

        sessions = await test_db.list_sessions()

        assert [s.title for s in sessions] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_list_sessions_status_filter(self, test_db):
        await test_db.create_session(tmux_session_name="ccp_aaaa", title="a")
        await test_db.create_session(tmux_session_name="ccp_bbbb", title="b", status=SessionStatus.EXITED)

        exited = await test_db.list_sessions(status=SessionStatus.EXITED)

        assert [s.title for s in exited] == ["b"]

    @pytest.mark.asyncio
    async def test_update_session(self, test_db):
        session = await test_db.create_session(tmux_session_name="ccp_1a2b", title="api")

        await test_db.update_session(
            session.session_id, title="renamed", phase=SessionPhase.BUILDING, active_pane="1.0"
        )

        updated = await test_db.get_session(session.session_id)
        assert updated.title == "renamed"
        assert updated.phase == SessionPhase.BUILDING
        assert updated.active_pane == "1.0"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self, test_db):
        session = await test_db.create_session(tmux_session_name="ccp_1a2b", title="api")
        with pytest.raises(ValueError):
            await test_db.update_session(session.session_id, bogus="x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("column", ["tmux_session_name", "created_at"])
    async def test_set_once_columns_cannot_be_updated(self, test_db, column):
        session = await test_db.create_session(tmux_session_name="ccp_1a2b", title="api")

        with pytest.raises(ValueError, match=column):
            await test_db.update_session(session.session_id, **{column: "ccp_other"})

        assert (await test_db.get_session(session.session_id)).tmux_session_name == "ccp_1a2b"


class TestWorkspaces:
    @pytest.mark.asyncio
    async def test_crud(self, test_db):
        workspace = await test_db.create_workspace(name="api", path="/srv/api", env_hint="node 20")

        assert (await test_db.get_workspace(workspace.id)).path == "/srv/api"

        updated = await test_db.update_workspace(workspace.id, path="/srv/api-v2")
        assert updated.path == "/srv/api-v2"
        assert updated.env_hint == "node 20"
        assert updated.updated_at >= workspace.updated_at

        assert await test_db.delete_workspace(workspace.id) is True
        assert await test_db.get_workspace(workspace.id) is None

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, test_db):
        assert await test_db.update_workspace("missing", name="x") is None

    @pytest.mark.asyncio
    async def test_list_sorted_by_name(self, test_db):
        await test_db.create_workspace(name="zeta", path="/z")
        await test_db.create_workspace(name="alpha", path="/a")

        assert [w.name for w in await test_db.list_workspaces()] == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_deleting_workspace_detaches_sessions(self, test_db):
        workspace = await test_db.create_workspace(name="api", path="/srv/api")
        session = await test_db.create_session(tmux_session_name="ccp_1a2b", title="api", workspace_id=workspace.id)

        await test_db.delete_workspace(workspace.id)

        assert (await test_db.get_session(session.session_id)).workspace_id is None


class TestTemplates:
    @pytest.mark.asyncio
    async def test_lists_survive_storage(self, test_db):
        template = await test_db.create_template(
            name="node", command="npm run dev", auto_run=True, pre_commands=["nvm use", "npm ci"]
        )

        stored = await test_db.get_template(template.id)

        assert stored.auto_run is True
        assert stored.pre_commands == ["nvm use", "npm ci"]
        assert stored.post_commands == []
        assert stored.shell is None

    @pytest.mark.asyncio
    async def test_update_and_delete(self, test_db):
        template = await test_db.create_template(name="node", command="npm run dev")

        updated = await test_db.update_template(template.id, auto_run=True, pre_commands=["nvm use"])
        assert updated.auto_run is True
        assert updated.pre_commands == ["nvm use"]

        assert await test_db.delete_template(template.id) is True
        assert await test_db.update_template(template.id, name="x") is None
