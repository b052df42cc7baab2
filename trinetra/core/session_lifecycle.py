"""Session lifecycle management - create, kill, rename and inspect managed sessions.

Creation is all-or-nothing up to the tmux session: if tmux refuses, nothing is
persisted. Everything after that (output redirection, preamble commands) is
best-effort and only logged on failure, since the session itself is usable.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import structlog

from trinetra.config import config
from trinetra.constants import DEFAULT_PANE_KEY
from trinetra.core import tmux_bridge
from trinetra.core.db import Db
from trinetra.core.errors import InvalidRequest, TargetNotFound, TransientToolFailure
from trinetra.core.models import (
    PaneRef,
    Session,
    SessionDetails,
    SessionPhase,
    SessionStatus,
    Template,
    UnifiedSession,
    Workspace,
    pane_target,
)
from trinetra.core.reconciler import reconcile_sessions
from trinetra.core.tmux_io import resolve_session

logger = structlog.get_logger(__name__)

_MAX_NAME_ATTEMPTS = 5


class SessionManager:
    """Lifecycle operations on managed sessions, backed by the registry and tmux."""

    def __init__(self, db: Db) -> None:
        self.db = db

    async def _allocate_identity(self) -> tuple[str, str]:
        """Pick a fresh session id and a tmux name no record or live session uses."""
        live = set(await tmux_bridge.list_sessions(owned_only=False))
        for _ in range(_MAX_NAME_ATTEMPTS):
            session_id = str(uuid.uuid4())
            tmux_name = f"{config.tmux.session_prefix}{session_id.split('-')[0]}"
            if tmux_name in live or await self.db.get_session_by_tmux_name(tmux_name):
                logger.warning("tmux name %s already taken, retrying", tmux_name)
                continue
            return session_id, tmux_name
        raise TransientToolFailure("Could not allocate a unique tmux session name")

    async def _arm_output_log(self, session_id: str, tmux_name: str) -> None:
        """Append pane 0.0 output to logs/<session_id>/0.0.log unless already piped."""
        target = pane_target(tmux_name, DEFAULT_PANE_KEY)
        log_dir = config.logs_dir / session_id
        log_path = log_dir / f"{DEFAULT_PANE_KEY}.log"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            log_path.touch(exist_ok=True)
            await tmux_bridge.pipe_pane_to_file(target, log_path)
        except (OSError, TargetNotFound, TransientToolFailure) as e:
            logger.warning("Could not set up output log for %s: %s", target, e)

    async def _run_preamble(self, tmux_name: str, template: Template) -> None:
        target = pane_target(tmux_name, DEFAULT_PANE_KEY)
        try:
            for command in template.pre_commands:
                await tmux_bridge.send_command(target, command)
                await asyncio.sleep(config.sessions.preamble_delay)
            if template.auto_run and template.command:
                await tmux_bridge.send_command(target, template.command)
        except (TargetNotFound, TransientToolFailure) as e:
            logger.error("Preamble for %s failed: %s", tmux_name, e)

    async def create(
        self,
        workspace_id: Optional[str] = None,
        template_id: Optional[str] = None,
        title: Optional[str] = None,
        path_override: Optional[str] = None,
    ) -> Session:
        """Create a managed session.

        Args:
            workspace_id: Optional saved launch configuration to start from
            template_id: Optional launch preset (defaults to the workspace's)
            title: Optional display title
            path_override: Optional working directory (wins over the workspace path)

        Returns:
            The persisted session record

        Raises:
            InvalidRequest: If the workspace or template does not exist
            ExternalToolUnavailable: If tmux cannot be run
            TransientToolFailure: If tmux refused to create the session
        """
        workspace: Optional[Workspace] = None
        if workspace_id:
            workspace = await self.db.get_workspace(workspace_id)
            if workspace is None:
                raise InvalidRequest("Workspace not found", details=workspace_id)

        template_id = template_id or (workspace.default_template_id if workspace else None)
        template: Optional[Template] = None
        if template_id:
            template = await self.db.get_template(template_id)
            if template is None:
                raise InvalidRequest("Template not found", details=template_id)

        working_dir = path_override or (workspace.path if workspace else None) or config.default_session_path

        session_id, tmux_name = await self._allocate_identity()
        short_id = session_id.split("-")[0]
        session_title = (
            title
            or (template.name if template else None)
            or (workspace.name if workspace else None)
            or f"Session {short_id}"
        )

        await tmux_bridge.create_session(tmux_name, working_dir, shell=template.shell if template else None)
        await self._arm_output_log(session_id, tmux_name)

        session = await self.db.create_session(
            tmux_session_name=tmux_name,
            title=session_title,
            workspace_id=workspace.id if workspace else None,
            status=SessionStatus.RUNNING,
            phase=SessionPhase.IDLE,
            session_id=session_id,
        )
        logger.info("Created session %s (%s) in %s", session_id[:8], tmux_name, working_dir)

        if template:
            await self._run_preamble(tmux_name, template)

        return session

    async def kill(self, session_id: str) -> None:
        """Kill a session's tmux session and mark its record EXITED.

        A record whose tmux session is already gone is still marked EXITED.
        Sessions without a record (discovered) are killed by tmux name, but only
        live sessions carrying the managed prefix; anything else is not ours.

        Raises:
            TargetNotFound: If the id is neither a record nor a live managed tmux session
        """
        session, tmux_name = await resolve_session(self.db, session_id)
        if session is None:
            await tmux_bridge.kill_session(tmux_name)
            logger.info("Killed discovered session %s", tmux_name)
            return

        try:
            await tmux_bridge.kill_session(session.tmux_session_name)
        except (TargetNotFound, TransientToolFailure) as e:
            logger.info("tmux session %s already gone: %s", session.tmux_session_name, e)

        await self.db.update_session(session.session_id, status=SessionStatus.EXITED)
        logger.info("Session %s marked EXITED", session.session_id[:8])

    async def rename(self, session_id: str, title: str) -> Session:
        """Change a session's display title.

        Raises:
            InvalidRequest: If the title is empty
            TargetNotFound: If there is no record for session_id
        """
        if not title or not title.strip():
            raise InvalidRequest("Title is required")

        session = await self.db.get_session(session_id)
        if session is None:
            raise TargetNotFound("Session not found", details=session_id)

        await self.db.update_session(session_id, title=title)
        session.title = title
        return session

    async def snapshot(self, session_id: str, pane_key: str, max_lines: Optional[int] = None) -> str:
        """One-shot capture of a pane's content (visible screen plus scrollback).

        Raises:
            InvalidRequest: If the pane key is malformed or max_lines is out of range
            TargetNotFound: If the pane does not exist
        """
        lines = config.polling.capture_lines if max_lines is None else max_lines
        if not 1 <= lines <= config.polling.max_snapshot_lines:
            raise InvalidRequest(
                "Invalid line count", details=f"lines must be between 1 and {config.polling.max_snapshot_lines}"
            )

        ref = PaneRef.parse(pane_key)
        _, tmux_name = await resolve_session(self.db, session_id)
        return await tmux_bridge.capture_pane(ref.target(tmux_name), lines)

    async def list(self) -> list[UnifiedSession]:
        return await reconcile_sessions(self.db)

    async def get_details(self, session_id: str) -> SessionDetails:
        """Session record (or discovered entry) with its workspace and live layout.

        Raises:
            TargetNotFound: If the tmux session is not running
        """
        session, tmux_name = await resolve_session(self.db, session_id)
        if tmux_name not in await tmux_bridge.list_sessions(owned_only=False):
            raise TargetNotFound("Session not found or not running", details=session_id)

        windows = await tmux_bridge.get_session_info(tmux_name)

        if session is None:
            return SessionDetails(session=UnifiedSession.discovered_from(tmux_name), windows=windows)

        unified = UnifiedSession.from_session(session)
        unified.status = SessionStatus.RUNNING
        workspace = await self.db.get_workspace(session.workspace_id) if session.workspace_id else None
        return SessionDetails(session=unified, windows=windows, workspace=workspace)

    async def set_active_pane(self, session_id: str, pane_key: str) -> Session:
        """Remember which pane the client last focused.

        Raises:
            InvalidRequest: If the pane key is malformed
            TargetNotFound: If there is no record for session_id
        """
        ref = PaneRef.parse(pane_key)
        session = await self.db.get_session(session_id)
        if session is None:
            raise TargetNotFound("Session not found", details=session_id)

        await self.db.update_session(session_id, active_pane=ref.key)
        session.active_pane = ref.key
        return session
