"""Pane subscriptions - poll tmux panes and push full-replace snapshots to clients.

One asyncio task per (connection, pane key). Each task captures the pane every
poll interval and, when the text differs from what the client last received,
sends a `snapshot` message followed by a `status` message carrying the
classified phase. Steps within one task are strictly sequential, so a client
never sees a stale snapshot overtake a newer one.

Lifecycle guarantees:
- At most one task per (connection, pane key). The slot is reserved before the
  first await, so concurrent duplicate subscribes collapse into one.
- unsubscribe() and close_connection() cancel the tasks and wait for them, so
  no task outlives the call.
- A task that ends by itself (pane gone, repeated failures, dead client)
  removes its own slot.
- A failed registry write is reported to that client as one `error` message;
  it never tears down the connection's other subscriptions.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from trinetra.config import config
from trinetra.core import tmux_bridge
from trinetra.core.db import Db
from trinetra.core.errors import ExternalToolUnavailable, TargetNotFound, TrinetraError, TransientToolFailure
from trinetra.core.models import PaneRef, Session, SessionStatus, utcnow
from trinetra.core.phase_detector import detect_phase
from trinetra.core.tmux_io import find_record, resolve_session

logger = structlog.get_logger(__name__)

Message = dict[str, object]
SendFn = Callable[[Message], Awaitable[None]]


def subscription_key(session_id: str, pane_key: str) -> str:
    return f"{session_id}:{pane_key}"


def snapshot_message(session_id: str, pane_key: str, text: str) -> Message:
    return {"type": "snapshot", "sessionId": session_id, "paneKey": pane_key, "text": text}


def status_message(session_id: str, session: Optional[Session], phase: str, at: datetime) -> Message:
    status = session.status if session else SessionStatus.RUNNING
    return {
        "type": "status",
        "sessionId": session_id,
        "status": status.value,
        "phase": phase,
        "lastActivityAt": at.isoformat(),
    }


def error_message(message: str, details: Optional[str] = None) -> Message:
    return {"type": "error", "message": message, "details": details}


@dataclass
class PaneSubscription:
    """One connection watching one pane."""

    session_id: str
    pane_key: str
    target: Optional[str] = None
    last_content: Optional[str] = None
    task: Optional[asyncio.Task[None]] = None

    @property
    def key(self) -> str:
        return subscription_key(self.session_id, self.pane_key)


@dataclass
class ClientConnection:
    """A connected client and the panes it is watching."""

    send: SendFn
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    subscriptions: dict[str, PaneSubscription] = field(default_factory=dict)
    closed: bool = False


class SubscriptionRegistry:
    """Owns all client connections and their pane polling tasks.

    Example:
        registry = SubscriptionRegistry(db)
        conn = registry.open_connection(websocket.send_json)
        await registry.subscribe(conn, session_id, "0.0")
        ...
        await registry.close_connection(conn)
    """

    def __init__(
        self,
        db: Db,
        poll_interval: Optional[float] = None,
        snapshot_lines: Optional[int] = None,
        max_failures: Optional[int] = None,
    ) -> None:
        self.db = db
        self.poll_interval = poll_interval if poll_interval is not None else config.polling.interval
        self.snapshot_lines = snapshot_lines if snapshot_lines is not None else config.polling.snapshot_lines
        self.max_failures = max_failures if max_failures is not None else config.polling.max_consecutive_failures
        self._connections: dict[str, ClientConnection] = {}

    def open_connection(self, send: SendFn) -> ClientConnection:
        conn = ClientConnection(send=send)
        self._connections[conn.connection_id] = conn
        logger.debug("Connection %s opened", conn.connection_id[:8])
        return conn

    async def _send(self, conn: ClientConnection, message: Message) -> bool:
        """Send to a client; False if the client can no longer be reached."""
        if conn.closed:
            return False
        try:
            await conn.send(message)
        except Exception as e:  # noqa: BLE001 - any transport failure means the client is gone
            logger.warning("Send to connection %s failed: %s", conn.connection_id[:8], e)
            return False
        return True

    async def send_error(self, conn: ClientConnection, message: str, error: Optional[BaseException] = None) -> bool:
        details = None
        if isinstance(error, TrinetraError):
            details = error.details or error.message
        elif error is not None:
            details = str(error)
        return await self._send(conn, error_message(message, details))

    async def _deliver(
        self, conn: ClientConnection, sub: PaneSubscription, session: Optional[Session], content: str
    ) -> bool:
        """Send snapshot then status for new content, persisting the phase if it changed."""
        phase = detect_phase(content)
        now = utcnow()
        if session is not None and session.phase != phase:
            await self.db.update_session(session.session_id, phase=phase, last_activity=now)
            session.phase = phase
            session.last_activity = now

        if not await self._send(conn, snapshot_message(sub.session_id, sub.pane_key, content)):
            return False
        last_activity = session.last_activity if session and session.last_activity else now
        return await self._send(conn, status_message(sub.session_id, session, phase.value, last_activity))

    async def subscribe(self, conn: ClientConnection, session_id: str, pane_key: str) -> bool:
        """Start mirroring a pane to a connection.

        Returns:
            True if a new subscription was started, False if it already existed
            or the initial capture failed (the client gets an error message)

        Raises:
            InvalidRequest: If the pane key is malformed
        """
        ref = PaneRef.parse(pane_key)
        sub = PaneSubscription(session_id=session_id, pane_key=ref.key)
        if conn.closed or sub.key in conn.subscriptions:
            return False
        conn.subscriptions[sub.key] = sub

        try:
            session, tmux_name = await resolve_session(self.db, session_id)
            sub.target = ref.target(tmux_name)
            content = await tmux_bridge.capture_pane(sub.target, self.snapshot_lines)
        except (TrinetraError, OSError) as e:
            logger.warning("Initial capture for %s failed: %s", sub.key, e)
            self._release(conn, sub)
            await self.send_error(conn, "Failed to capture pane", e)
            return False

        if conn.subscriptions.get(sub.key) is not sub:
            # Unsubscribed or closed while the first capture was in flight
            return False

        try:
            delivered = await self._deliver(conn, sub, session, content)
        except asyncio.CancelledError:
            self._release(conn, sub)
            raise
        except Exception as e:  # noqa: BLE001 - a registry write failure must not drop the connection
            logger.error("Initial delivery for %s failed: %s", sub.key, e, exc_info=True)
            self._release(conn, sub)
            await self.send_error(conn, "Failed to start watching pane", e)
            return False
        if not delivered:
            self._release(conn, sub)
            return False

        if conn.subscriptions.get(sub.key) is not sub:
            return False

        sub.last_content = content
        sub.task = asyncio.create_task(self._poll(conn, sub), name=f"poll-{sub.key}")
        sub.task.add_done_callback(_on_task_done)
        logger.info("Connection %s subscribed to %s", conn.connection_id[:8], sub.target)
        return True

    async def _poll(self, conn: ClientConnection, sub: PaneSubscription) -> None:
        """Poll one pane until cancelled, the pane disappears or the client is gone."""
        assert sub.target is not None
        failures = 0
        try:
            while True:
                await asyncio.sleep(self.poll_interval)
                try:
                    content = await tmux_bridge.capture_pane(sub.target, self.snapshot_lines)
                except TargetNotFound:
                    logger.info("Pane %s is gone, ending subscription", sub.target)
                    return
                except (TransientToolFailure, ExternalToolUnavailable) as e:
                    failures += 1
                    logger.warning("Capture of %s failed (%d/%d): %s", sub.target, failures, self.max_failures, e)
                    if failures >= self.max_failures:
                        await self.send_error(conn, "Stopped watching pane after repeated capture failures", e)
                        return
                    continue

                failures = 0
                if content == sub.last_content:
                    continue

                try:
                    session = await find_record(self.db, sub.session_id)
                    delivered = await self._deliver(conn, sub, session, content)
                except Exception as e:  # noqa: BLE001 - reported to the client, then the subscription ends
                    logger.error("Delivery for %s failed: %s", sub.key, e, exc_info=True)
                    await self.send_error(conn, "Stopped watching pane", e)
                    return
                if not delivered:
                    return
                sub.last_content = content
        finally:
            self._release(conn, sub)

    @staticmethod
    def _release(conn: ClientConnection, sub: PaneSubscription) -> None:
        if conn.subscriptions.get(sub.key) is sub:
            del conn.subscriptions[sub.key]

    async def unsubscribe(self, conn: ClientConnection, session_id: str, pane_key: str) -> bool:
        """Stop mirroring a pane; returns once its polling task has finished.

        Returns:
            True if a subscription was removed
        """
        sub = conn.subscriptions.pop(subscription_key(session_id, PaneRef.parse(pane_key).key), None)
        if sub is None:
            return False
        await _cancel_and_wait([sub])
        logger.info("Connection %s unsubscribed from %s", conn.connection_id[:8], sub.key)
        return True

    async def close_connection(self, conn: ClientConnection) -> None:
        """Tear down every subscription of a connection."""
        conn.closed = True
        self._connections.pop(conn.connection_id, None)
        subs = list(conn.subscriptions.values())
        conn.subscriptions.clear()
        await _cancel_and_wait(subs)
        logger.debug("Connection %s closed (%d subscriptions torn down)", conn.connection_id[:8], len(subs))

    async def shutdown(self) -> None:
        connections = list(self._connections.values())
        if connections:
            logger.info("Closing %d client connection(s)", len(connections))
        for conn in connections:
            await self.close_connection(conn)

    def active_subscription_count(self, conn: Optional[ClientConnection] = None) -> int:
        if conn is not None:
            return len(conn.subscriptions)
        return sum(len(c.subscriptions) for c in self._connections.values())

    def is_subscribed(self, conn: ClientConnection, session_id: str, pane_key: str) -> bool:
        return subscription_key(session_id, pane_key) in conn.subscriptions

    def connection_count(self) -> int:
        return len(self._connections)


async def _cancel_and_wait(subs: list[PaneSubscription]) -> None:
    tasks = [sub.task for sub in subs if sub.task is not None]
    for task in tasks:
        if not task.done():
            task.cancel()
    if tasks:
        await asyncio.wait(tasks)


def _on_task_done(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("Polling task %s failed: %s", task.get_name(), exc, exc_info=exc)
