"""Data models for Trinetra sessions, workspaces and templates."""

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from trinetra.constants import DEFAULT_PANE_KEY, EXACT_MATCH_PREFIX, PANE_KEY_SEPARATOR, TARGET_SEPARATOR
from trinetra.core.errors import InvalidRequest

# JSON-serializable types for database storage
JsonPrimitive = Union[str, int, float, bool, None]
JsonValue = Union[JsonPrimitive, list["JsonValue"], dict[str, "JsonValue"]]
JsonDict = dict[str, JsonValue]

_PANE_KEY_RE = re.compile(r"^(\d+)\.(\d+)$")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_datetime(value: object) -> Optional[datetime]:
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    if isinstance(value, datetime):
        return value
    return None


class SessionStatus(str, Enum):
    """Registry status of a session."""

    RUNNING = "RUNNING"
    IDLE = "IDLE"
    EXITED = "EXITED"
    ERROR = "ERROR"


class SessionPhase(str, Enum):
    """Advisory classification of what a pane is currently doing."""

    BUILDING = "BUILDING"
    TESTING = "TESTING"
    CODING = "CODING"
    IDLE = "IDLE"
    WAITING = "WAITING"
    ERROR = "ERROR"


class InputMode(str, Enum):
    """How client text is delivered to a pane."""

    RAW = "raw"
    COMMAND = "command"


@dataclass(frozen=True)
class PaneRef:
    """A (window, pane) pair inside one tmux session.

    The string form ("<window>.<pane>") is what clients send as paneKey.
    """

    window: int
    pane: int

    @property
    def key(self) -> str:
        return f"{self.window}{PANE_KEY_SEPARATOR}{self.pane}"

    @classmethod
    def parse(cls, pane_key: str) -> "PaneRef":
        """Parse a pane key, rejecting anything that is not two indices.

        Raises:
            InvalidRequest: If the key is malformed
        """
        match = _PANE_KEY_RE.fullmatch(pane_key or "")
        if not match:
            raise InvalidRequest(f"Invalid pane key: {pane_key!r}", details="expected <window>.<pane>")
        return cls(window=int(match.group(1)), pane=int(match.group(2)))

    def target(self, tmux_session_name: str) -> str:
        """Full tmux target string for this pane, matching the session name exactly."""
        return f"{exact_session(tmux_session_name)}{TARGET_SEPARATOR}{self.key}"


def exact_session(tmux_session_name: str) -> str:
    """Session target that never matches a different session by prefix."""
    if tmux_session_name.startswith(EXACT_MATCH_PREFIX):
        return tmux_session_name
    return f"{EXACT_MATCH_PREFIX}{tmux_session_name}"


def pane_target(tmux_session_name: str, pane_key: str) -> str:
    """Validate pane_key and build the tmux target "=<session>:<window>.<pane>"."""
    return PaneRef.parse(pane_key).target(tmux_session_name)


@dataclass
class Workspace:
    """A saved launch configuration (a named working directory)."""

    id: str
    name: str
    path: str
    default_template_id: Optional[str] = None
    env_hint: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Workspace":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            path=str(data["path"]),
            default_template_id=data.get("default_template_id"),  # type: ignore[arg-type]
            env_hint=data.get("env_hint"),  # type: ignore[arg-type]
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class Template:
    """A launch preset: optional shell, preamble commands and a main command."""

    id: str
    name: str
    command: str
    auto_run: bool = False
    shell: Optional[str] = None
    pre_commands: list[str] = field(default_factory=list)
    post_commands: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Template":
        """Create template from a database row (lists stored as JSON text)."""

        def _as_list(raw: object) -> list[str]:
            if isinstance(raw, str):
                raw = json.loads(raw or "[]")
            return [str(item) for item in raw] if isinstance(raw, list) else []

        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            command=str(data["command"]),
            auto_run=bool(data.get("auto_run")),
            shell=data.get("shell") or None,  # type: ignore[arg-type]
            pre_commands=_as_list(data.get("pre_commands")),
            post_commands=_as_list(data.get("post_commands")),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class Session:  # pylint: disable=too-many-instance-attributes  # Data model for terminal sessions
    """Represents a terminal session record in the registry."""

    session_id: str
    tmux_session_name: str
    title: str
    status: SessionStatus = SessionStatus.RUNNING
    phase: Optional[SessionPhase] = None
    workspace_id: Optional[str] = None
    active_pane: str = DEFAULT_PANE_KEY
    created_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    def to_dict(self) -> dict[str, object]:
        """Convert session to dictionary for JSON serialization."""
        data: dict[str, object] = asdict(self)
        data["status"] = self.status.value
        data["phase"] = self.phase.value if self.phase else None
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["last_activity"] = self.last_activity.isoformat() if self.last_activity else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Session":
        """Create session from dictionary (from database/JSON)."""
        phase_raw = data.get("phase")
        return cls(
            session_id=str(data["session_id"]),
            tmux_session_name=str(data["tmux_session_name"]),
            title=str(data["title"]),
            status=SessionStatus(data.get("status") or SessionStatus.RUNNING.value),
            phase=SessionPhase(phase_raw) if phase_raw else None,
            workspace_id=data.get("workspace_id"),  # type: ignore[arg-type]
            active_pane=str(data.get("active_pane") or DEFAULT_PANE_KEY),
            created_at=_parse_datetime(data.get("created_at")),
            last_activity=_parse_datetime(data.get("last_activity")),
        )


@dataclass
class UnifiedSession(Session):
    """A session as shown to clients: registry record or discovered tmux session."""

    discovered: bool = False

    @classmethod
    def from_session(cls, session: Session) -> "UnifiedSession":
        return cls(**asdict(session))

    @classmethod
    def discovered_from(cls, tmux_session_name: str) -> "UnifiedSession":
        """Synthesize an entry for a live tmux session that has no record."""
        return cls(
            session_id=tmux_session_name,
            tmux_session_name=tmux_session_name,
            title=tmux_session_name,
            status=SessionStatus.RUNNING,
            discovered=True,
        )

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["discovered"] = self.discovered
        return data


@dataclass
class TmuxPane:
    index: int
    pane_id: str
    active: bool
    current_path: str


@dataclass
class TmuxWindow:
    index: int
    name: str
    panes: list[TmuxPane] = field(default_factory=list)


@dataclass
class SessionDetails:
    """A session together with its workspace and live window/pane layout."""

    session: UnifiedSession
    windows: list[TmuxWindow]
    workspace: Optional[Workspace] = None

    def to_dict(self) -> dict[str, object]:
        data = self.session.to_dict()
        data["workspace"] = self.workspace.to_dict() if self.workspace else None
        data["windows"] = [asdict(window) for window in self.windows]
        return data
