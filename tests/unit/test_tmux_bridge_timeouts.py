"""Unit tests for subprocess timeout handling in tmux_bridge."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from trinetra.core import tmux_bridge
from trinetra.core.errors import SubprocessTimeoutError, TransientToolFailure
from trinetra.core.tmux_bridge import communicate_with_timeout


@pytest.mark.asyncio
async def test_communicate_with_timeout_completes_normally():
    mock_process = MagicMock()
    mock_process.pid = 12345
    mock_process.communicate = AsyncMock(return_value=(b"out", b""))
    mock_process.kill = MagicMock()

    result = await communicate_with_timeout(mock_process, 1.0, "test operation")

    assert result == (b"out", b"")
    mock_process.kill.assert_not_called()


@pytest.mark.asyncio
async def test_communicate_with_timeout_kills_and_reaps_on_timeout():
    mock_process = MagicMock()
    mock_process.pid = 12345

    async def hang():
        await asyncio.Future()

    mock_process.communicate = AsyncMock(side_effect=hang)
    mock_process.kill = MagicMock()
    mock_process.wait = AsyncMock()

    with pytest.raises(SubprocessTimeoutError) as exc_info:
        await communicate_with_timeout(mock_process, 0.1, "test operation")

    assert exc_info.value.operation == "test operation"
    assert exc_info.value.timeout == 0.1
    assert exc_info.value.pid == 12345
    assert "test operation timed out after 0.1s" in str(exc_info.value)
    mock_process.kill.assert_called_once()
    mock_process.wait.assert_awaited_once()


@pytest.mark.asyncio
async def test_timeout_tolerates_process_already_gone():
    mock_process = MagicMock()
    mock_process.pid = 12345

    async def hang():
        await asyncio.Future()

    mock_process.communicate = AsyncMock(side_effect=hang)
    mock_process.kill = MagicMock(side_effect=ProcessLookupError())
    mock_process.wait = AsyncMock()

    with pytest.raises(SubprocessTimeoutError):
        await communicate_with_timeout(mock_process, 0.05, "test operation")


@pytest.mark.asyncio
async def test_capture_timeout_surfaces_as_transient_failure():
    """A hung tmux call becomes a TransientToolFailure callers can retry."""
    with patch.object(
        tmux_bridge,
        "communicate_with_timeout",
        new=AsyncMock(side_effect=SubprocessTimeoutError("capture pane", 5.0, 1)),
    ):
        with patch("asyncio.create_subprocess_exec", return_value=MagicMock()):
            with pytest.raises(TransientToolFailure):
                await tmux_bridge.capture_pane("ccp_1a2b:0.0", 500)
