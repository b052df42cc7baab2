from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from trinetra.constants import (
    DEFAULT_CAPTURE_LINES,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_PORT,
    DEFAULT_SNAPSHOT_LINES,
    MAX_CAPTURE_LINES,
    PREAMBLE_COMMAND_DELAY_S,
    SUBPROCESS_TIMEOUT_DEFAULT,
    TMUX_SESSION_PREFIX,
)


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    cors_origins: list[str] = ["*"]


class TmuxConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    binary: str = "tmux"
    session_prefix: str = TMUX_SESSION_PREFIX
    command_timeout: float = Field(default=SUBPROCESS_TIMEOUT_DEFAULT, gt=0)


class PollingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    interval: float = Field(default=DEFAULT_POLL_INTERVAL_S, gt=0)
    snapshot_lines: int = Field(default=DEFAULT_SNAPSHOT_LINES, ge=1)
    capture_lines: int = Field(default=DEFAULT_CAPTURE_LINES, ge=1)
    max_snapshot_lines: int = Field(default=MAX_CAPTURE_LINES, ge=1)
    max_consecutive_failures: int = Field(default=DEFAULT_MAX_CONSECUTIVE_FAILURES, ge=1)


class SessionsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    default_path: Optional[str] = None  # Falls back to $HOME, then /tmp
    preamble_delay: float = Field(default=PREAMBLE_COMMAND_DELAY_S, ge=0)


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    path: Optional[str] = None  # Defaults to <data_dir>/ccp.sqlite


class GlobalConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    data_dir: str = DEFAULT_DATA_DIR
    server: ServerConfig = ServerConfig()
    tmux: TmuxConfig = TmuxConfig()
    polling: PollingConfig = PollingConfig()
    sessions: SessionsConfig = SessionsConfig()
    database: DatabaseConfig = DatabaseConfig()
