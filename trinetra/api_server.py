"""API server for HTTP and WebSocket access.

HTTP routes live under /api and answer with the envelope
`{"success": bool, "data": ..., "error": ...}`. The /ws endpoint carries the
live pane mirroring protocol (subscribe, unsubscribe, input, key, resize).
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from trinetra.api_models import (
    CreateSessionRequest,
    CreateTemplateRequest,
    CreateWorkspaceRequest,
    RenameSessionRequest,
    SessionDetailsDTO,
    SessionDTO,
    SetActivePaneRequest,
    SnapshotDTO,
    TemplateDTO,
    UpdateTemplateRequest,
    UpdateWorkspaceRequest,
    WorkspaceDTO,
    WsInputMessage,
    WsKeyMessage,
    WsResizeMessage,
    WsSubscribeMessage,
    WsUnsubscribeMessage,
    ws_message_adapter,
)
from trinetra.config import config
from trinetra.core import tmux_io
from trinetra.core.db import Db
from trinetra.core.errors import InvalidRequest, TargetNotFound, TrinetraError
from trinetra.core.models import utcnow
from trinetra.core.session_lifecycle import SessionManager
from trinetra.core.subscriptions import ClientConnection, Message, SubscriptionRegistry

logger = structlog.get_logger(__name__)

API_WS_PING_INTERVAL_S = 20.0
API_WS_PING_TIMEOUT_S = 20.0
API_TIMEOUT_KEEP_ALIVE_S = 5
API_STOP_TIMEOUT_S = 5.0


def _ok(data: object = None, status_code: int = 200) -> JSONResponse:
    body: dict[str, object] = {"success": True}
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=body)


def _fail(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body: dict[str, object] = {"success": False, "error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _dump(model: object) -> object:
    """Serialize a DTO (or list of DTOs) with wire (camelCase) field names."""
    if isinstance(model, list):
        return [_dump(item) for item in model]
    return model.model_dump(mode="json", by_alias=True)  # type: ignore[attr-defined]


class APIServer:
    """HTTP + WebSocket API server."""

    def __init__(
        self,
        db: Db,
        session_manager: Optional[SessionManager] = None,
        subscriptions: Optional[SubscriptionRegistry] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        self.db = db
        self.session_manager = session_manager or SessionManager(db)
        self.subscriptions = subscriptions or SubscriptionRegistry(db)
        self.host = host or config.server.host
        self.port = port or config.server.port
        self.app = FastAPI(title="Trinetra API", version="0.1.0")
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=config.server.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.server: uvicorn.Server | None = None
        self.server_task: asyncio.Task[object] | None = None
        self._setup_exception_handlers()
        self._setup_routes()

    def _setup_exception_handlers(self) -> None:
        @self.app.exception_handler(TrinetraError)
        async def trinetra_error_handler(_request: Request, exc: TrinetraError) -> JSONResponse:  # pyright: ignore
            if exc.http_status >= 500:
                logger.error("Request failed: %s (%s)", exc.message, exc.details)
            return _fail(exc.http_status, exc.message, exc.details)

        @self.app.exception_handler(RequestValidationError)
        async def validation_error_handler(  # pyright: ignore
            _request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            return _fail(400, "Invalid request", str(exc.errors()))

        @self.app.exception_handler(Exception)
        async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:  # pyright: ignore
            logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
            return _fail(500, "Internal server error", str(exc))

    def _setup_routes(self) -> None:
        """Set up all HTTP endpoints."""

        @self.app.get("/health")
        async def health() -> dict[str, str]:  # pyright: ignore
            """Health check endpoint."""
            return {"status": "ok", "timestamp": utcnow().isoformat()}

        # Sessions

        @self.app.get("/api/sessions")
        async def list_sessions() -> JSONResponse:  # pyright: ignore
            """List registry sessions merged with discovered tmux sessions."""
            sessions = await self.session_manager.list()
            return _ok(_dump([SessionDTO.from_core(s) for s in sessions]))

        @self.app.post("/api/sessions")
        async def create_session(request: CreateSessionRequest) -> JSONResponse:  # pyright: ignore
            session = await self.session_manager.create(
                workspace_id=request.workspace_id,
                template_id=request.template_id,
                title=request.title,
                path_override=request.path_override,
            )
            return _ok(_dump(SessionDTO.from_core(session)), status_code=201)

        @self.app.get("/api/sessions/{session_id}")
        async def get_session(session_id: str) -> JSONResponse:  # pyright: ignore
            details = await self.session_manager.get_details(session_id)
            return _ok(_dump(SessionDetailsDTO.from_details(details)))

        @self.app.post("/api/sessions/{session_id}/kill")
        async def kill_session(session_id: str) -> JSONResponse:  # pyright: ignore
            await self.session_manager.kill(session_id)
            return _ok()

        @self.app.post("/api/sessions/{session_id}/rename")
        async def rename_session(session_id: str, request: RenameSessionRequest) -> JSONResponse:  # pyright: ignore
            session = await self.session_manager.rename(session_id, request.title)
            return _ok(_dump(SessionDTO.from_core(session)))

        @self.app.post("/api/sessions/{session_id}/active-pane")
        async def set_active_pane(session_id: str, request: SetActivePaneRequest) -> JSONResponse:  # pyright: ignore
            session = await self.session_manager.set_active_pane(session_id, request.pane_key)
            return _ok(_dump(SessionDTO.from_core(session)))

        @self.app.get("/api/sessions/{session_id}/panes/{pane_key}/snapshot")
        async def pane_snapshot(  # pyright: ignore
            session_id: str,
            pane_key: str,
            lines: Optional[int] = Query(default=None),
        ) -> JSONResponse:
            text = await self.session_manager.snapshot(session_id, pane_key, lines)
            return _ok(_dump(SnapshotDTO(session_id=session_id, pane_key=pane_key, text=text)))

        # Workspaces

        @self.app.get("/api/workspaces")
        async def list_workspaces() -> JSONResponse:  # pyright: ignore
            workspaces = await self.db.list_workspaces()
            return _ok(_dump([WorkspaceDTO.from_core(w) for w in workspaces]))

        @self.app.get("/api/workspaces/{workspace_id}")
        async def get_workspace(workspace_id: str) -> JSONResponse:  # pyright: ignore
            workspace = await self.db.get_workspace(workspace_id)
            if workspace is None:
                raise TargetNotFound("Workspace not found", details=workspace_id)
            return _ok(_dump(WorkspaceDTO.from_core(workspace)))

        @self.app.post("/api/workspaces")
        async def create_workspace(request: CreateWorkspaceRequest) -> JSONResponse:  # pyright: ignore
            if not request.name or not request.path:
                raise InvalidRequest("Name and path are required")
            workspace = await self.db.create_workspace(
                name=request.name,
                path=request.path,
                default_template_id=request.default_template_id,
                env_hint=request.env_hint,
            )
            return _ok(_dump(WorkspaceDTO.from_core(workspace)), status_code=201)

        @self.app.put("/api/workspaces/{workspace_id}")
        async def update_workspace(workspace_id: str, request: UpdateWorkspaceRequest) -> JSONResponse:  # pyright: ignore
            workspace = await self.db.update_workspace(workspace_id, **request.model_dump(exclude_unset=True))
            if workspace is None:
                raise TargetNotFound("Workspace not found", details=workspace_id)
            return _ok(_dump(WorkspaceDTO.from_core(workspace)))

        @self.app.delete("/api/workspaces/{workspace_id}")
        async def delete_workspace(workspace_id: str) -> JSONResponse:  # pyright: ignore
            if not await self.db.delete_workspace(workspace_id):
                raise TargetNotFound("Workspace not found", details=workspace_id)
            return _ok()

        # Templates

        @self.app.get("/api/templates")
        async def list_templates() -> JSONResponse:  # pyright: ignore
            templates = await self.db.list_templates()
            return _ok(_dump([TemplateDTO.from_core(t) for t in templates]))

        @self.app.get("/api/templates/{template_id}")
        async def get_template(template_id: str) -> JSONResponse:  # pyright: ignore
            template = await self.db.get_template(template_id)
            if template is None:
                raise TargetNotFound("Template not found", details=template_id)
            return _ok(_dump(TemplateDTO.from_core(template)))

        @self.app.post("/api/templates")
        async def create_template(request: CreateTemplateRequest) -> JSONResponse:  # pyright: ignore
            if not request.name or not request.command:
                raise InvalidRequest("Name and command are required")
            template = await self.db.create_template(
                name=request.name,
                command=request.command,
                auto_run=request.auto_run,
                shell=request.shell,
                pre_commands=request.pre_commands,
                post_commands=request.post_commands,
            )
            return _ok(_dump(TemplateDTO.from_core(template)), status_code=201)

        @self.app.put("/api/templates/{template_id}")
        async def update_template(template_id: str, request: UpdateTemplateRequest) -> JSONResponse:  # pyright: ignore
            template = await self.db.update_template(template_id, **request.model_dump(exclude_unset=True))
            if template is None:
                raise TargetNotFound("Template not found", details=template_id)
            return _ok(_dump(TemplateDTO.from_core(template)))

        @self.app.delete("/api/templates/{template_id}")
        async def delete_template(template_id: str) -> JSONResponse:  # pyright: ignore
            if not await self.db.delete_template(template_id):
                raise TargetNotFound("Template not found", details=template_id)
            return _ok()

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket) -> None:  # pyright: ignore
            """WebSocket endpoint for live pane mirroring."""
            await self._handle_websocket(websocket)

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle one WebSocket client until it disconnects.

        Args:
            websocket: WebSocket connection
        """
        await websocket.accept()
        send_lock = asyncio.Lock()

        async def send(message: Message) -> None:
            # Poll tasks and the receive loop share the socket
            async with send_lock:
                await websocket.send_text(json.dumps(message))

        conn = self.subscriptions.open_connection(send)
        logger.info("WebSocket client connected (%s)", conn.connection_id[:8])

        try:
            while True:
                raw = await websocket.receive_text()
                await self._handle_ws_message(conn, raw)
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected (%s)", conn.connection_id[:8])
        finally:
            await self.subscriptions.close_connection(conn)

    async def _handle_ws_message(self, conn: ClientConnection, raw: str) -> None:
        """Dispatch one client message; failures are reported back, never raised."""
        try:
            message = ws_message_adapter.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Invalid WebSocket message: %s", e)
            await self.subscriptions.send_error(conn, "Invalid message format", e)
            return

        if isinstance(message, WsSubscribeMessage):
            try:
                await self.subscriptions.subscribe(conn, message.session_id, message.pane_key)
            except TrinetraError as e:
                await self.subscriptions.send_error(conn, "Failed to subscribe", e)

        elif isinstance(message, WsUnsubscribeMessage):
            try:
                await self.subscriptions.unsubscribe(conn, message.session_id, message.pane_key)
            except TrinetraError as e:
                await self.subscriptions.send_error(conn, "Failed to unsubscribe", e)

        elif isinstance(message, WsInputMessage):
            try:
                await tmux_io.send_input(self.db, message.session_id, message.pane_key, message.data, message.mode)
            except TrinetraError as e:
                logger.error("Failed to send input to %s: %s", message.session_id, e)
                await self.subscriptions.send_error(conn, "Failed to send input", e)

        elif isinstance(message, WsKeyMessage):
            try:
                await tmux_io.send_key(self.db, message.session_id, message.pane_key, message.key)
            except TrinetraError as e:
                logger.error("Failed to send key to %s: %s", message.session_id, e)
                await self.subscriptions.send_error(conn, "Failed to send key", e)

        elif isinstance(message, WsResizeMessage):
            logger.debug("Ignoring resize request from %s", conn.connection_id[:8])

    async def start(self) -> None:
        """Start uvicorn in a background task and wait until it is listening."""
        if self.server_task and not self.server_task.done():
            logger.warning("API server already running; skipping start")
            return

        uv_config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            ws_ping_interval=API_WS_PING_INTERVAL_S,
            ws_ping_timeout=API_WS_PING_TIMEOUT_S,
            timeout_keep_alive=API_TIMEOUT_KEEP_ALIVE_S,
        )
        self.server = uvicorn.Server(uv_config)
        server = self.server

        # Run server in background task; the daemon owns signal handling
        serve_coro = server._serve() if hasattr(server, "_serve") else server.serve()
        self.server_task = asyncio.create_task(serve_coro)

        max_retries = 50  # 5 seconds total
        for _ in range(max_retries):
            if server.started:
                break
            if self.server_task.done():
                exc = self.server_task.exception()
                raise RuntimeError("API server exited during startup") from exc
            await asyncio.sleep(0.1)
        if not server.started:
            raise TimeoutError("API server failed to start within timeout")

        logger.info("API server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Tear down subscriptions, then stop uvicorn."""
        logger.info("API server stopping")
        await self.subscriptions.shutdown()

        server = self.server
        if server:
            if server.started:
                server.should_exit = True
            elif self.server_task:
                self.server_task.cancel()

        if self.server_task:
            try:
                await asyncio.wait_for(self.server_task, timeout=API_STOP_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("Timed out stopping API server; cancelling task")
                self.server_task.cancel()
                try:
                    await self.server_task
                except asyncio.CancelledError:
                    pass
            except asyncio.CancelledError:
                pass

        logger.info("API server stopped")
