"""Session-aware tmux I/O routing: resolve a client's session id to a pane and deliver input."""

from __future__ import annotations

from typing import Optional

import structlog

from trinetra.config import config
from trinetra.core import tmux_bridge
from trinetra.core.db import Db
from trinetra.core.errors import TargetNotFound
from trinetra.core.models import InputMode, PaneRef, Session

logger = structlog.get_logger(__name__)

INTERRUPT_KEY = "C-c"

# Client key names -> tmux key names. Unknown keys are passed through verbatim.
KEY_MAP: dict[str, str] = {
    "C-c": "C-c",
    "C-z": "C-z",
    "C-d": "C-d",
    "Enter": "Enter",
    "Escape": "Escape",
    "Up": "Up",
    "Down": "Down",
    "Left": "Left",
    "Right": "Right",
    "Tab": "Tab",
    "BTab": "BTab",
    "Space": "Space",
    "Backspace": "BSpace",
    "1": "1",
    "2": "2",
    "3": "3",
    "4": "4",
    "5": "5",
    "y": "y",
    "n": "n",
    # aliases
    "ctrl+c": "C-c",
    "ctrl+z": "C-z",
    "ctrl+d": "C-d",
    "enter": "Enter",
    "esc": "Escape",
    "escape": "Escape",
    "up": "Up",
    "down": "Down",
    "left": "Left",
    "right": "Right",
    "tab": "Tab",
    "shift+tab": "BTab",
    "space": "Space",
    "backspace": "BSpace",
}


def map_key(key: str) -> str:
    return KEY_MAP.get(key, key)


async def find_record(db: Db, session_id: str) -> Optional[Session]:
    """Session record by id, or by tmux name for clients that only know the name."""
    session = await db.get_session(session_id)
    if session is None:
        session = await db.get_session_by_tmux_name(session_id)
    return session


async def resolve_session(db: Db, session_id: str) -> tuple[Optional[Session], str]:
    """Find the record behind a client-supplied id and the tmux session name to address.

    Clients use the record id for managed sessions and the tmux name itself for
    discovered ones. A raw id is only accepted when it is the exact name of a
    live session in the managed namespace.

    Raises:
        TargetNotFound: If the id is neither a record nor a live managed tmux session
    """
    session = await find_record(db, session_id)
    if session is not None:
        return session, session.tmux_session_name
    if session_id.startswith(config.tmux.session_prefix) and session_id in await tmux_bridge.list_sessions():
        return None, session_id
    raise TargetNotFound("Session not found", details=session_id)


async def resolve_target(db: Db, session_id: str, pane_key: str) -> tuple[Optional[Session], str]:
    """Resolve a (session id, pane key) pair to its record and full tmux target.

    Raises:
        InvalidRequest: If the pane key is malformed
        TargetNotFound: If the session is unknown
    """
    ref = PaneRef.parse(pane_key)
    session, tmux_name = await resolve_session(db, session_id)
    return session, ref.target(tmux_name)


async def send_input(db: Db, session_id: str, pane_key: str, text: str, mode: InputMode = InputMode.RAW) -> None:
    """Deliver client text to a pane.

    RAW sends the text literally; COMMAND types it and presses Enter.

    Raises:
        InvalidRequest: If the pane key is malformed
        TargetNotFound: If the pane does not exist
        TransientToolFailure: If tmux failed
    """
    session, target = await resolve_target(db, session_id, pane_key)
    if mode == InputMode.COMMAND:
        await tmux_bridge.send_command(target, text)
    else:
        await tmux_bridge.send_literal(target, text)

    logger.debug("Sent %s input (%d chars) to %s", mode.value, len(text), target)
    if session:
        await db.update_last_activity(session.session_id)


async def send_key(db: Db, session_id: str, pane_key: str, key: str) -> None:
    """Deliver a named key (C-c, Enter, Up, ...) to a pane."""
    session, target = await resolve_target(db, session_id, pane_key)
    tmux_key = map_key(key)
    if tmux_key == INTERRUPT_KEY:
        await tmux_bridge.send_interrupt(target)
    else:
        await tmux_bridge.send_keys(target, tmux_key)

    if session:
        await db.update_last_activity(session.session_id)
