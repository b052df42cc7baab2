"""Registry reconciliation - align persisted session status with live tmux sessions.

tmux is the source of truth for liveness. Records are corrected lazily, on read:
a record marked RUNNING whose tmux session is gone becomes EXITED, and an EXITED
record whose tmux session is back becomes RUNNING. Only `status` is written, so
ordering by last activity is stable across calls and a second call with nothing
changed issues no writes at all.
"""

import structlog

from trinetra.core import tmux_bridge
from trinetra.core.db import Db
from trinetra.core.models import SessionStatus, UnifiedSession

logger = structlog.get_logger(__name__)


async def reconcile_sessions(db: Db) -> list[UnifiedSession]:
    """Return the unified session view, correcting stale statuses on the way.

    Args:
        db: Session registry

    Returns:
        Records ordered by last activity (most recent first), followed by live
        tmux sessions that have no record, marked discovered and sorted by name

    Raises:
        ExternalToolUnavailable: If tmux cannot be run
        TransientToolFailure: If listing tmux sessions failed
    """
    records = await db.list_sessions()
    live = set(await tmux_bridge.list_sessions())

    result: list[UnifiedSession] = []
    seen: set[str] = set()

    for record in records:
        seen.add(record.tmux_session_name)
        is_live = record.tmux_session_name in live

        if is_live and record.status == SessionStatus.EXITED:
            logger.info("Session %s is live again, marking RUNNING", record.session_id[:8])
            await db.update_session(record.session_id, status=SessionStatus.RUNNING)
            record.status = SessionStatus.RUNNING
        elif not is_live and record.status == SessionStatus.RUNNING:
            logger.info("Session %s no longer in tmux, marking EXITED", record.session_id[:8])
            await db.update_session(record.session_id, status=SessionStatus.EXITED)
            record.status = SessionStatus.EXITED

        result.append(UnifiedSession.from_session(record))

    for name in sorted(live - seen):
        result.append(UnifiedSession.discovered_from(name))

    return result
