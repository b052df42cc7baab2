"""Unit tests for the trinetra-doctor diagnostics."""

import json
import socket
from unittest.mock import AsyncMock, patch

import pytest

from trinetra.cli import doctor
from trinetra.cli.doctor import (
    CheckResult,
    check_server_port,
    check_tmux_available,
    check_tmux_list_sessions,
    check_writable_dir,
)
from trinetra.core import tmux_bridge
from trinetra.core.errors import ExternalToolUnavailable, TransientToolFailure


class TestTmuxChecks:
    @pytest.mark.asyncio
    async def test_tmux_available(self):
        with patch.object(tmux_bridge, "tmux_version", new=AsyncMock(return_value="tmux 3.4")):
            result = await check_tmux_available()

        assert result.passed
        assert "tmux 3.4" in result.message

    @pytest.mark.asyncio
    async def test_tmux_missing(self):
        with patch.object(
            tmux_bridge, "tmux_version", new=AsyncMock(side_effect=ExternalToolUnavailable("tmux is not available"))
        ):
            result = await check_tmux_available()

        assert not result.passed
        assert not result.warning
        assert result.suggestion

    @pytest.mark.asyncio
    async def test_no_sessions_is_fine(self):
        with patch.object(tmux_bridge, "list_sessions", new=AsyncMock(return_value=[])):
            result = await check_tmux_list_sessions()

        assert result.passed
        assert "no active sessions" in result.message

    @pytest.mark.asyncio
    async def test_counts_sessions(self):
        with patch.object(tmux_bridge, "list_sessions", new=AsyncMock(return_value=["a", "ccp_b"])):
            result = await check_tmux_list_sessions()

        assert result.message == "tmux server is running (2 sessions active)"

    @pytest.mark.asyncio
    async def test_list_failure(self):
        with patch.object(
            tmux_bridge,
            "list_sessions",
            new=AsyncMock(side_effect=TransientToolFailure("Failed to list tmux sessions", details="boom")),
        ):
            result = await check_tmux_list_sessions()

        assert not result.passed
        assert "boom" in result.message


class TestLocalChecks:
    def test_port_in_use_is_a_warning(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            result = check_server_port("127.0.0.1", port)

        assert not result.passed
        assert result.warning

    def test_free_port(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]

        assert check_server_port("127.0.0.1", port).passed

    def test_writable_dir_is_created(self, tmp_path):
        target = tmp_path / "data" / "logs"

        result = check_writable_dir("Logs directory", target)

        assert result.passed
        assert "created" in result.message
        assert target.is_dir()
        assert list(target.iterdir()) == []

    def test_existing_dir(self, tmp_path):
        result = check_writable_dir("Data directory", tmp_path)

        assert result.passed
        assert "writable" in result.message

    def test_path_blocked_by_file(self, tmp_path):
        blocker = tmp_path / "data"
        blocker.write_text("not a dir", encoding="utf-8")

        result = check_writable_dir("Data directory", blocker / "sub")

        assert not result.passed


class TestMain:
    def _results(self, *results):
        return patch.object(doctor, "run_checks", new=AsyncMock(return_value=list(results)))

    def test_exit_zero_with_only_warnings(self, capsys):
        with self._results(
            CheckResult(name="tmux available", passed=True, message="ok"),
            CheckResult(name="Server port", passed=False, warning=True, message="Port 3001 is already in use"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                doctor.main([])

        assert exc_info.value.code == 0
        assert "Trinetra Doctor" in capsys.readouterr().out

    def test_exit_one_on_failure(self):
        with self._results(CheckResult(name="tmux available", passed=False, message="missing")):
            with pytest.raises(SystemExit) as exc_info:
                doctor.main([])

        assert exc_info.value.code == 1

    def test_json_output(self, capsys):
        with self._results(CheckResult(name="tmux available", passed=True, message="ok")):
            with pytest.raises(SystemExit):
                doctor.main(["--json"])

        payload = json.loads(capsys.readouterr().out)
        assert payload == [
            {"name": "tmux available", "passed": True, "message": "ok", "warning": False, "suggestion": None}
        ]
