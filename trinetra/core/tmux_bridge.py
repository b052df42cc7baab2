"""tmux bridge for Trinetra - every tmux interaction goes through here.

Each operation is a single tmux invocation built as an argument vector (never a
shell string). Text output is parsed into structured records here and nowhere
else; failures are raised as typed errors from trinetra.core.errors. There are no
retries at this layer - callers decide.
"""

import asyncio
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog

from trinetra.config import config
from trinetra.constants import (
    SUBPROCESS_TIMEOUT_QUICK,
    TMUX_NO_SERVER_MARKERS,
    TMUX_NOT_FOUND_MARKERS,
)
from trinetra.core.errors import (
    ExternalToolUnavailable,
    SubprocessTimeoutError,
    TargetNotFound,
    TransientToolFailure,
)
from trinetra.core.models import TmuxPane, TmuxWindow, exact_session

logger = structlog.get_logger(__name__)


@dataclass
class TmuxResult:
    """Decoded result of one tmux invocation."""

    stdout: str
    stderr: str
    returncode: int


async def communicate_with_timeout(
    process: asyncio.subprocess.Process, timeout: float, operation: str
) -> tuple[bytes, bytes]:
    """Collect process output, killing the process if it exceeds timeout.

    Raises:
        SubprocessTimeoutError: If the process did not finish in time
    """
    try:
        return await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("%s timed out after %.1fs (pid=%s), killing", operation, timeout, process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        raise SubprocessTimeoutError(operation, timeout, process.pid) from e


async def _run_tmux(args: List[str], operation: str, timeout: Optional[float] = None) -> TmuxResult:
    """Run tmux with the given arguments and return its decoded output.

    Raises:
        ExternalToolUnavailable: If the tmux binary cannot be executed
        SubprocessTimeoutError: If tmux did not finish in time
    """
    cmd = [config.tmux.binary, *args]
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ExternalToolUnavailable(f"tmux is not available ({config.tmux.binary})", details=str(e)) from e

    stdout, stderr = await communicate_with_timeout(process, timeout or config.tmux.command_timeout, operation)
    return TmuxResult(
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace").strip() if stderr else "",
        returncode=process.returncode if process.returncode is not None else 0,
    )


def _is_no_server(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in TMUX_NO_SERVER_MARKERS)


def _is_not_found(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in TMUX_NOT_FOUND_MARKERS)


def _raise_for_target(result: TmuxResult, operation: str, target: str) -> None:
    """Translate a failed invocation that addressed a target into a typed error.

    Without a running server no target can exist, so "no server" texts count as
    not-found here too.
    """
    if result.returncode == 0:
        return
    if _is_not_found(result.stderr) or _is_no_server(result.stderr):
        raise TargetNotFound(f"tmux target not found: {target}", details=result.stderr)
    raise TransientToolFailure(f"Failed to {operation}", details=result.stderr or f"exit code {result.returncode}")


async def create_session(name: str, working_dir: str, shell: Optional[str] = None) -> None:
    """Create a new detached tmux session.

    Args:
        name: Session name
        working_dir: Initial working directory
        shell: Optional initial command (tmux runs the default shell otherwise)

    Raises:
        TransientToolFailure: If tmux refused to create the session
    """
    cmd = ["new-session", "-d", "-s", name, "-c", working_dir]
    if shell:
        cmd.append(shell)

    result = await _run_tmux(cmd, "create tmux session")
    if result.returncode != 0:
        logger.error("Failed to create tmux session %s: %s", name, result.stderr)
        raise TransientToolFailure(f"Failed to create tmux session {name}", details=result.stderr)
    logger.info("Created tmux session %s in %s", name, working_dir)


async def list_sessions(owned_only: bool = True) -> List[str]:
    """List live tmux session names.

    tmux reports "no server running" the same way it reports real errors, so the
    known no-server texts are treated as an empty result.

    Args:
        owned_only: Only return sessions carrying the configured prefix

    Returns:
        List of session names
    """
    result = await _run_tmux(["list-sessions", "-F", "#{session_name}"], "list tmux sessions")
    if result.returncode != 0:
        if _is_no_server(result.stderr):
            return []
        raise TransientToolFailure("Failed to list tmux sessions", details=result.stderr)

    names = [line for line in result.stdout.strip().split("\n") if line]
    if owned_only:
        names = [name for name in names if name.startswith(config.tmux.session_prefix)]
    return names


async def list_windows(session: str) -> List[TmuxWindow]:
    """List windows of a session (panes are not filled in)."""
    result = await _run_tmux(
        ["list-windows", "-t", exact_session(session), "-F", "#{window_index}:#{window_name}"], "list tmux windows"
    )
    _raise_for_target(result, "list windows", session)

    windows: List[TmuxWindow] = []
    for line in result.stdout.strip().split("\n"):
        if not line:
            continue
        index_str, _, name = line.partition(":")
        windows.append(TmuxWindow(index=int(index_str), name=name))
    return windows


async def list_panes(session: str, window: int) -> List[TmuxPane]:
    """List panes in a window.

    The current path may itself contain ':' so only the first three fields are
    split off and the remainder is kept whole.
    """
    target = f"{exact_session(session)}:{window}"
    result = await _run_tmux(
        ["list-panes", "-t", target, "-F", "#{pane_index}:#{pane_id}:#{pane_active}:#{pane_current_path}"],
        "list tmux panes",
    )
    _raise_for_target(result, "list panes", target)

    panes: List[TmuxPane] = []
    for line in result.stdout.strip().split("\n"):
        if not line:
            continue
        parts = line.split(":", 3)
        panes.append(
            TmuxPane(
                index=int(parts[0]),
                pane_id=parts[1] if len(parts) > 1 else "",
                active=len(parts) > 2 and parts[2] == "1",
                current_path=parts[3] if len(parts) > 3 else "",
            )
        )
    return panes


async def get_session_info(session: str) -> List[TmuxWindow]:
    """Windows of a session with their panes filled in."""
    windows = await list_windows(session)
    pane_lists = await asyncio.gather(*(list_panes(session, window.index) for window in windows))
    for window, panes in zip(windows, pane_lists):
        window.panes = panes
    return windows


async def send_keys(target: str, keys: str) -> None:
    """Send keys to a tmux target; tmux key names (C-c, Enter) are interpreted."""
    result = await _run_tmux(["send-keys", "-t", target, keys], "send keys")
    _raise_for_target(result, "send keys", target)


async def send_literal(target: str, text: str) -> None:
    """Send text to a tmux target exactly as given (no key-name lookup)."""
    if not text:
        return
    cmd = ["send-keys", "-t", target, "-l"]
    if text.startswith("-"):
        cmd.append("--")
    cmd.append(text)
    result = await _run_tmux(cmd, "send text")
    _raise_for_target(result, "send text", target)


async def send_command(target: str, command: str) -> None:
    """Type a command line into a tmux target and press Enter."""
    await send_literal(target, command)
    await send_keys(target, "Enter")


async def send_interrupt(target: str) -> None:
    """Send C-c to a tmux target."""
    await send_keys(target, "C-c")


async def capture_pane(target: str, lines: int = 2000) -> str:
    """Capture visible content plus up to `lines` lines of scrollback.

    Args:
        target: tmux target ("session:window.pane")
        lines: Scrollback depth

    Returns:
        Captured text
    """
    result = await _run_tmux(["capture-pane", "-t", target, "-p", "-S", f"-{lines}"], "capture pane")
    _raise_for_target(result, "capture pane", target)
    return result.stdout


async def is_pane_piped(target: str) -> bool:
    """Whether the pane's output is already being piped somewhere."""
    result = await _run_tmux(
        ["display-message", "-p", "-t", target, "#{pane_pipe}"], "check pane pipe", timeout=SUBPROCESS_TIMEOUT_QUICK
    )
    _raise_for_target(result, "check pane pipe", target)
    return result.stdout.strip() == "1"


async def pipe_pane_to_file(target: str, log_path: Path) -> bool:
    """Append everything the pane prints to log_path.

    `pipe-pane -o` toggles: on a pane that is already piped it closes the pipe.
    An active pipe is therefore left alone, which makes a second call a no-op.

    Returns:
        True if a new pipe was opened, False if one was already active
    """
    if await is_pane_piped(target):
        logger.debug("Pane %s already piped, leaving it alone", target)
        return False
    shell_cmd = f"cat >> {shlex.quote(str(log_path))}"
    result = await _run_tmux(["pipe-pane", "-t", target, "-o", shell_cmd], "pipe pane")
    _raise_for_target(result, "pipe pane", target)
    return True


async def kill_session(name: str) -> None:
    """Kill a tmux session by its exact name.

    Raises:
        TargetNotFound: If the session is already gone
    """
    result = await _run_tmux(["kill-session", "-t", exact_session(name)], "kill tmux session")
    _raise_for_target(result, "kill session", name)
    logger.info("Killed tmux session %s", name)


async def tmux_version() -> str:
    """Return the tmux version string (e.g. "tmux 3.4").

    Raises:
        ExternalToolUnavailable: If tmux cannot be run
    """
    result = await _run_tmux(["-V"], "tmux version check", timeout=SUBPROCESS_TIMEOUT_QUICK)
    if result.returncode != 0:
        raise ExternalToolUnavailable("tmux -V failed", details=result.stderr)
    return result.stdout.strip()
