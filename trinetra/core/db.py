"""Database manager for Trinetra - workspaces, templates and the session registry."""

import json
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import aiosqlite
import structlog

from trinetra.core.models import Session, SessionPhase, SessionStatus, Template, Workspace, utcnow

logger = structlog.get_logger(__name__)

# tmux_session_name and created_at are set once at insert
_SESSION_COLUMNS = frozenset({"workspace_id", "title", "status", "phase", "active_pane", "last_activity"})
_WORKSPACE_COLUMNS = frozenset({"name", "path", "default_template_id", "env_hint"})
_TEMPLATE_COLUMNS = frozenset({"name", "command", "auto_run", "shell", "pre_commands", "post_commands"})


def _to_column(value: object) -> object:
    """Convert a Python value to what sqlite stores for it."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return value


def _set_clause(fields: dict[str, object], allowed: frozenset[str]) -> tuple[str, list[object]]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown column(s): {', '.join(sorted(unknown))}")
    clause = ", ".join(f"{key} = ?" for key in fields)
    return clause, [_to_column(value) for value in fields.values()]


class Db:
    """Database interface for the session registry and saved launch configurations."""

    def __init__(self, db_path: str) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database and create tables if they do not exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()

        await self._db.executescript(schema_sql)
        await self._db.commit()
        logger.debug("Database ready at %s", self.db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get database connection, asserting it's initialized.

        Raises:
            RuntimeError: If database not initialized
        """
        if self._db is None:
            raise RuntimeError("Database not initialized - call initialize() first")
        return self._db

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # Workspaces

    async def list_workspaces(self) -> list[Workspace]:
        cursor = await self.conn.execute("SELECT * FROM workspaces ORDER BY name ASC")
        rows = await cursor.fetchall()
        return [Workspace.from_dict(dict(row)) for row in rows]

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        cursor = await self.conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,))
        row = await cursor.fetchone()
        return Workspace.from_dict(dict(row)) if row else None

    async def create_workspace(
        self,
        name: str,
        path: str,
        default_template_id: Optional[str] = None,
        env_hint: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> Workspace:
        now = utcnow()
        workspace = Workspace(
            id=workspace_id or str(uuid.uuid4()),
            name=name,
            path=path,
            default_template_id=default_template_id,
            env_hint=env_hint,
            created_at=now,
            updated_at=now,
        )
        await self.conn.execute(
            """
            INSERT INTO workspaces (id, name, path, default_template_id, env_hint, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                workspace.id,
                workspace.name,
                workspace.path,
                workspace.default_template_id,
                workspace.env_hint,
                now.isoformat(),
                now.isoformat(),
            ),
        )
        await self.conn.commit()
        return workspace

    async def update_workspace(self, workspace_id: str, **fields: object) -> Optional[Workspace]:
        """Update workspace fields; returns None if the workspace does not exist."""
        if await self.get_workspace(workspace_id) is None:
            return None
        if fields:
            clause, values = _set_clause(fields, _WORKSPACE_COLUMNS)
            await self.conn.execute(
                f"UPDATE workspaces SET {clause}, updated_at = ? WHERE id = ?",
                [*values, utcnow().isoformat(), workspace_id],
            )
            await self.conn.commit()
        return await self.get_workspace(workspace_id)

    async def delete_workspace(self, workspace_id: str) -> bool:
        cursor = await self.conn.execute("DELETE FROM workspaces WHERE id = ?", (workspace_id,))
        await self.conn.commit()
        return cursor.rowcount > 0

    # Templates

    async def list_templates(self) -> list[Template]:
        cursor = await self.conn.execute("SELECT * FROM templates ORDER BY name ASC")
        rows = await cursor.fetchall()
        return [Template.from_dict(dict(row)) for row in rows]

    async def get_template(self, template_id: str) -> Optional[Template]:
        cursor = await self.conn.execute("SELECT * FROM templates WHERE id = ?", (template_id,))
        row = await cursor.fetchone()
        return Template.from_dict(dict(row)) if row else None

    async def create_template(  # pylint: disable=too-many-arguments,too-many-positional-arguments  # Insert needs every template field
        self,
        name: str,
        command: str,
        auto_run: bool = False,
        shell: Optional[str] = None,
        pre_commands: Optional[list[str]] = None,
        post_commands: Optional[list[str]] = None,
        template_id: Optional[str] = None,
    ) -> Template:
        now = utcnow()
        template = Template(
            id=template_id or str(uuid.uuid4()),
            name=name,
            command=command,
            auto_run=auto_run,
            shell=shell or None,
            pre_commands=list(pre_commands or []),
            post_commands=list(post_commands or []),
            created_at=now,
            updated_at=now,
        )
        await self.conn.execute(
            """
            INSERT INTO templates (
                id, name, command, auto_run, shell, pre_commands, post_commands, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                template.id,
                template.name,
                template.command,
                1 if template.auto_run else 0,
                template.shell,
                json.dumps(template.pre_commands),
                json.dumps(template.post_commands),
                now.isoformat(),
                now.isoformat(),
            ),
        )
        await self.conn.commit()
        return template

    async def update_template(self, template_id: str, **fields: object) -> Optional[Template]:
        """Update template fields; returns None if the template does not exist."""
        if await self.get_template(template_id) is None:
            return None
        if fields:
            clause, values = _set_clause(fields, _TEMPLATE_COLUMNS)
            await self.conn.execute(
                f"UPDATE templates SET {clause}, updated_at = ? WHERE id = ?",
                [*values, utcnow().isoformat(), template_id],
            )
            await self.conn.commit()
        return await self.get_template(template_id)

    async def delete_template(self, template_id: str) -> bool:
        cursor = await self.conn.execute("DELETE FROM templates WHERE id = ?", (template_id,))
        await self.conn.commit()
        return cursor.rowcount > 0

    # Sessions

    async def create_session(  # pylint: disable=too-many-arguments,too-many-positional-arguments  # Database insert requires all session fields
        self,
        tmux_session_name: str,
        title: str,
        workspace_id: Optional[str] = None,
        status: SessionStatus = SessionStatus.RUNNING,
        phase: Optional[SessionPhase] = None,
        session_id: Optional[str] = None,
    ) -> Session:
        """Create a new session record.

        Args:
            tmux_session_name: Name of the tmux session backing this record
            title: Display title
            workspace_id: Optional workspace the session was launched from
            status: Initial status
            phase: Initial phase
            session_id: Optional explicit session ID

        Returns:
            Created Session object
        """
        now = utcnow()
        session = Session(
            session_id=session_id or str(uuid.uuid4()),
            tmux_session_name=tmux_session_name,
            title=title,
            status=status,
            phase=phase,
            workspace_id=workspace_id,
            created_at=now,
            last_activity=now,
        )

        data = session.to_dict()
        await self.conn.execute(
            """
            INSERT INTO sessions (
                session_id, tmux_session_name, workspace_id, title, status,
                phase, active_pane, created_at, last_activity
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["session_id"],
                data["tmux_session_name"],
                data["workspace_id"],
                data["title"],
                data["status"],
                data["phase"],
                data["active_pane"],
                data["created_at"],
                data["last_activity"],
            ),
        )
        await self.conn.commit()
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Get session by ID.

        Returns:
            Session object or None if not found
        """
        cursor = await self.conn.execute("SELECT * FROM sessions WHERE session_id = ?", (session_id,))
        row = await cursor.fetchone()

        if not row:
            return None

        return Session.from_dict(dict(row))

    async def get_session_by_tmux_name(self, tmux_session_name: str) -> Optional[Session]:
        cursor = await self.conn.execute(
            "SELECT * FROM sessions WHERE tmux_session_name = ?", (tmux_session_name,)
        )
        row = await cursor.fetchone()
        return Session.from_dict(dict(row)) if row else None

    async def list_sessions(self, status: Optional[SessionStatus] = None) -> list[Session]:
        """List session records, most recently active first.

        Args:
            status: Optional status filter
        """
        query = "SELECT * FROM sessions WHERE 1=1"
        params: list[object] = []

        if status is not None:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY last_activity DESC"

        cursor = await self.conn.execute(query, params)
        rows = await cursor.fetchall()

        return [Session.from_dict(dict(row)) for row in rows]

    async def update_session(self, session_id: str, **fields: object) -> None:
        """Update session fields.

        Args:
            session_id: Session ID
            **fields: Columns to update (title, status, phase, last_activity, ...)
        """
        if not fields:
            return

        clause, values = _set_clause(fields, _SESSION_COLUMNS)
        await self.conn.execute(f"UPDATE sessions SET {clause} WHERE session_id = ?", [*values, session_id])
        await self.conn.commit()

    async def update_last_activity(self, session_id: str) -> None:
        await self.conn.execute(
            "UPDATE sessions SET last_activity = ? WHERE session_id = ?",
            (utcnow().isoformat(), session_id),
        )
        await self.conn.commit()
