"""API request/response models for the HTTP and WebSocket transport.

Wire fields are camelCase (`sessionId`, `paneKey`, `lastActivityAt`); requests
also accept the snake_case names.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from trinetra.constants import DEFAULT_PANE_KEY
from trinetra.core.models import InputMode, Session, SessionDetails, Template, UnifiedSession, Workspace

_WIRE = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# HTTP requests


class CreateSessionRequest(BaseModel):  # type: ignore[explicit-any]
    """Request to create a new managed session."""

    model_config = _WIRE

    workspace_id: Optional[str] = None
    template_id: Optional[str] = None
    title: Optional[str] = None
    path_override: Optional[str] = None


class RenameSessionRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    # Empty titles are rejected by SessionManager.rename with a 400
    title: str = ""


class SetActivePaneRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    pane_key: str


class CreateWorkspaceRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    name: str = ""
    path: str = ""
    default_template_id: Optional[str] = None
    env_hint: Optional[str] = None


class UpdateWorkspaceRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    name: Optional[str] = Field(default=None, min_length=1)
    path: Optional[str] = Field(default=None, min_length=1)
    default_template_id: Optional[str] = None
    env_hint: Optional[str] = None


class CreateTemplateRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    name: str = ""
    command: str = ""
    auto_run: bool = False
    shell: Optional[str] = None
    pre_commands: list[str] = Field(default_factory=list)
    post_commands: list[str] = Field(default_factory=list)


class UpdateTemplateRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    name: Optional[str] = Field(default=None, min_length=1)
    command: Optional[str] = Field(default=None, min_length=1)
    auto_run: Optional[bool] = None
    shell: Optional[str] = None
    pre_commands: Optional[list[str]] = None
    post_commands: Optional[list[str]] = None


# HTTP responses


class WorkspaceDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    id: str
    name: str
    path: str
    default_template_id: Optional[str] = None
    env_hint: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_core(cls, workspace: Workspace) -> "WorkspaceDTO":
        return cls(
            id=workspace.id,
            name=workspace.name,
            path=workspace.path,
            default_template_id=workspace.default_template_id,
            env_hint=workspace.env_hint,
            created_at=workspace.created_at.isoformat() if workspace.created_at else None,
            updated_at=workspace.updated_at.isoformat() if workspace.updated_at else None,
        )


class TemplateDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    id: str
    name: str
    command: str
    auto_run: bool
    shell: Optional[str] = None
    pre_commands: list[str]
    post_commands: list[str]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_core(cls, template: Template) -> "TemplateDTO":
        return cls(
            id=template.id,
            name=template.name,
            command=template.command,
            auto_run=template.auto_run,
            shell=template.shell,
            pre_commands=template.pre_commands,
            post_commands=template.post_commands,
            created_at=template.created_at.isoformat() if template.created_at else None,
            updated_at=template.updated_at.isoformat() if template.updated_at else None,
        )


class SessionDTO(BaseModel):  # type: ignore[explicit-any]
    """Session as seen by clients (registry record or discovered tmux session)."""

    model_config = _WIRE

    id: str
    tmux_session: str
    workspace_id: Optional[str] = None
    title: str
    status: str
    phase: Optional[str] = None
    active_pane: str
    created_at: Optional[str] = None
    last_activity_at: Optional[str] = None
    discovered: bool = False

    @classmethod
    def from_core(cls, session: Session) -> "SessionDTO":
        return cls(
            id=session.session_id,
            tmux_session=session.tmux_session_name,
            workspace_id=session.workspace_id,
            title=session.title,
            status=session.status.value,
            phase=session.phase.value if session.phase else None,
            active_pane=session.active_pane,
            created_at=session.created_at.isoformat() if session.created_at else None,
            last_activity_at=session.last_activity.isoformat() if session.last_activity else None,
            discovered=session.discovered if isinstance(session, UnifiedSession) else False,
        )


class PaneDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    index: int
    id: str
    active: bool
    current_path: str


class WindowDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    index: int
    name: str
    panes: list[PaneDTO]


class SessionDetailsDTO(SessionDTO):  # type: ignore[explicit-any]
    workspace: Optional[WorkspaceDTO] = None
    windows: list[WindowDTO] = Field(default_factory=list)

    @classmethod
    def from_details(cls, details: SessionDetails) -> "SessionDetailsDTO":
        base = SessionDTO.from_core(details.session).model_dump()
        return cls(
            **base,
            workspace=WorkspaceDTO.from_core(details.workspace) if details.workspace else None,
            windows=[
                WindowDTO(
                    index=window.index,
                    name=window.name,
                    panes=[
                        PaneDTO(index=pane.index, id=pane.pane_id, active=pane.active, current_path=pane.current_path)
                        for pane in window.panes
                    ],
                )
                for window in details.windows
            ],
        )


class SnapshotDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    session_id: str
    pane_key: str
    text: str


# WebSocket inbound messages


class WsSubscribeMessage(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    type: Literal["subscribe"]
    session_id: str = Field(..., min_length=1)
    pane_key: str = DEFAULT_PANE_KEY


class WsUnsubscribeMessage(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    type: Literal["unsubscribe"]
    session_id: str = Field(..., min_length=1)
    pane_key: str = DEFAULT_PANE_KEY


class WsInputMessage(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    type: Literal["input"]
    session_id: str = Field(..., min_length=1)
    pane_key: str = DEFAULT_PANE_KEY
    data: str
    mode: InputMode = InputMode.RAW


class WsKeyMessage(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE

    type: Literal["key"]
    session_id: str = Field(..., min_length=1)
    pane_key: str = DEFAULT_PANE_KEY
    key: str = Field(..., min_length=1)


class WsResizeMessage(BaseModel):  # type: ignore[explicit-any]
    """Accepted for protocol compatibility; panes are not resized."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: Literal["resize"]


WsClientMessage = Annotated[
    Union[WsSubscribeMessage, WsUnsubscribeMessage, WsInputMessage, WsKeyMessage, WsResizeMessage],
    Field(discriminator="type"),
]

ws_message_adapter: TypeAdapter[WsClientMessage] = TypeAdapter(WsClientMessage)
