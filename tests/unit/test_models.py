"""Unit tests for models.py."""

from datetime import timezone

import pytest

from trinetra.core.errors import InvalidRequest
from trinetra.core.models import (
    PaneRef,
    Session,
    SessionPhase,
    SessionStatus,
    Template,
    UnifiedSession,
    exact_session,
    pane_target,
    utcnow,
)


class TestPaneRef:
    def test_parse_and_format(self):
        ref = PaneRef.parse("1.2")
        assert (ref.window, ref.pane) == (1, 2)
        assert ref.key == "1.2"
        assert ref.target("ccp_1a2b") == "=ccp_1a2b:1.2"

    def test_pane_target_helper(self):
        assert pane_target("ccp_1a2b", "0.0") == "=ccp_1a2b:0.0"

    def test_exact_session_is_not_doubled(self):
        assert exact_session("ccp_1") == "=ccp_1"
        assert exact_session("=ccp_1") == "=ccp_1"

    @pytest.mark.parametrize("bad", ["", "0", "a.b", "0.0.0", "0:0", "-1.0", " 0.0", "0.0\n"])
    def test_rejects_malformed_keys(self, bad):
        with pytest.raises(InvalidRequest):
            PaneRef.parse(bad)


class TestSessionSerialization:
    def test_round_trip_through_dict(self):
        now = utcnow()
        session = Session(
            session_id="abc",
            tmux_session_name="ccp_abc",
            title="api",
            status=SessionStatus.EXITED,
            phase=SessionPhase.TESTING,
            created_at=now,
            last_activity=now,
        )

        restored = Session.from_dict(session.to_dict())

        assert restored == session
        assert restored.last_activity.tzinfo == timezone.utc

    def test_missing_optional_fields_get_defaults(self):
        session = Session.from_dict({"session_id": "x", "tmux_session_name": "ccp_x", "title": "t"})
        assert session.status == SessionStatus.RUNNING
        assert session.phase is None
        assert session.active_pane == "0.0"


class TestTemplate:
    def test_lists_decoded_from_json_text(self):
        template = Template.from_dict(
            {"id": "t", "name": "node", "command": "npm run dev", "auto_run": 1, "pre_commands": '["nvm use"]'}
        )
        assert template.auto_run is True
        assert template.pre_commands == ["nvm use"]
        assert template.post_commands == []


class TestUnifiedSession:
    def test_discovered_entry(self):
        entry = UnifiedSession.discovered_from("work")
        assert entry.discovered is True
        assert entry.session_id == entry.tmux_session_name == entry.title == "work"
        assert entry.status == SessionStatus.RUNNING
        assert entry.to_dict()["discovered"] is True

    def test_from_session_is_not_discovered(self):
        session = Session(session_id="abc", tmux_session_name="ccp_abc", title="api")
        assert UnifiedSession.from_session(session).discovered is False
