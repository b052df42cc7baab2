"""Unit tests for reconciler.py."""

from unittest.mock import AsyncMock, patch

import pytest

from trinetra.core import tmux_bridge
from trinetra.core.models import SessionStatus
from trinetra.core.reconciler import reconcile_sessions


def _live(*names):
    return patch.object(tmux_bridge, "list_sessions", new=AsyncMock(return_value=list(names)))


@pytest.mark.asyncio
async def test_running_record_without_tmux_becomes_exited(test_db):
    session = await test_db.create_session(tmux_session_name="ccp_gone", title="gone")

    with _live():
        result = await reconcile_sessions(test_db)

    assert [s.status for s in result] == [SessionStatus.EXITED]
    assert (await test_db.get_session(session.session_id)).status == SessionStatus.EXITED


@pytest.mark.asyncio
async def test_exited_record_with_live_tmux_becomes_running(test_db):
    session = await test_db.create_session(tmux_session_name="ccp_back", title="back", status=SessionStatus.EXITED)

    with _live("ccp_back"):
        result = await reconcile_sessions(test_db)

    assert result[0].status == SessionStatus.RUNNING
    assert result[0].discovered is False
    assert (await test_db.get_session(session.session_id)).status == SessionStatus.RUNNING


@pytest.mark.asyncio
async def test_unowned_prefixed_sessions_are_discovered_sorted(test_db):
    await test_db.create_session(tmux_session_name="ccp_mine", title="mine")

    with _live("ccp_zzzz", "ccp_mine", "ccp_aaaa"):
        result = await reconcile_sessions(test_db)

    assert [(s.tmux_session_name, s.discovered) for s in result] == [
        ("ccp_mine", False),
        ("ccp_aaaa", True),
        ("ccp_zzzz", True),
    ]
    # discovered sessions are never persisted
    assert len(await test_db.list_sessions()) == 1


@pytest.mark.asyncio
async def test_second_call_issues_no_writes(test_db):
    await test_db.create_session(tmux_session_name="ccp_gone", title="gone")
    await test_db.create_session(tmux_session_name="ccp_live", title="live")

    with _live("ccp_live"):
        first = await reconcile_sessions(test_db)
        with patch.object(test_db, "update_session", wraps=test_db.update_session) as spy:
            second = await reconcile_sessions(test_db)

    spy.assert_not_called()
    assert [(s.session_id, s.status) for s in first] == [(s.session_id, s.status) for s in second]


@pytest.mark.asyncio
async def test_order_is_stable_across_reconciliation(test_db):
    older = await test_db.create_session(tmux_session_name="ccp_old", title="old")
    newer = await test_db.create_session(tmux_session_name="ccp_new", title="new")
    await test_db.update_last_activity(newer.session_id)

    with _live("ccp_old"):
        result = await reconcile_sessions(test_db)

    assert [s.session_id for s in result] == [newer.session_id, older.session_id]
