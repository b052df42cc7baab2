"""Global configuration management.

Config is loaded at module import time and available globally via:
    from trinetra.config import config
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from trinetra.config.loader import load_global_config
from trinetra.config.schema import GlobalConfig, PollingConfig, ServerConfig, SessionsConfig, TmuxConfig
from trinetra.constants import DATABASE_FILENAME, LOGS_DIRNAME

# Project root (relative to this file)
_project_root = Path(__file__).parent.parent.parent

# Load .env (allow override for tests)
_env_path = os.getenv("TRINETRA_ENV_PATH")
_dotenv_path = Path(_env_path).expanduser() if _env_path else _project_root / ".env"
if not _dotenv_path.is_absolute():
    _dotenv_path = (_project_root / _dotenv_path).resolve()

load_dotenv(_dotenv_path)


@dataclass
class Config:
    """Resolved runtime configuration (YAML values with environment overrides applied)."""

    data_dir: Path
    server: ServerConfig
    tmux: TmuxConfig
    polling: PollingConfig
    sessions: SessionsConfig
    _configured_db_path: Optional[str] = None

    @property
    def database_path(self) -> str:
        """Get database path (lazy-loaded from env var for test compatibility)."""
        env_path = os.getenv("TRINETRA_DB_PATH")
        if env_path:
            return env_path
        if self._configured_db_path:
            return self._configured_db_path
        return str(self.data_dir / DATABASE_FILENAME)

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / LOGS_DIRNAME

    @property
    def default_session_path(self) -> str:
        """Working directory for sessions created without a workspace or override."""
        return self.sessions.default_path or os.getenv("HOME") or "/tmp"


def _resolve_data_dir(raw: str) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (_project_root / path).resolve()
    return path


def build_config(global_config: GlobalConfig) -> Config:
    """Apply environment overrides on top of the validated YAML config."""
    server = global_config.server.model_copy()
    if os.getenv("TRINETRA_HOST"):
        server.host = os.environ["TRINETRA_HOST"]
    if os.getenv("TRINETRA_PORT"):
        server.port = int(os.environ["TRINETRA_PORT"])

    data_dir = _resolve_data_dir(os.getenv("TRINETRA_DATA_DIR") or global_config.data_dir)

    return Config(
        data_dir=data_dir,
        server=server,
        tmux=global_config.tmux,
        polling=global_config.polling,
        sessions=global_config.sessions,
        _configured_db_path=global_config.database.path,
    )


_config_path = os.getenv("TRINETRA_CONFIG_PATH")
config = build_config(load_global_config(Path(_config_path).expanduser() if _config_path else None))
