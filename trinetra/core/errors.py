"""Error taxonomy for Trinetra.

The tmux layer raises these; HTTP handlers map them to status codes and the
subscription engine uses them to decide between retrying and tearing down.
"""

from __future__ import annotations

from typing import Optional


class TrinetraError(Exception):
    """Base class for all domain errors."""

    http_status = 500

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ExternalToolUnavailable(TrinetraError):
    """tmux cannot be invoked at all (missing binary, permissions)."""

    http_status = 503


class TargetNotFound(TrinetraError):
    """The requested session, window or pane does not exist."""

    http_status = 404


class InvalidRequest(TrinetraError):
    """Request rejected before reaching tmux (missing or malformed fields)."""

    http_status = 400


class TransientToolFailure(TrinetraError):
    """tmux failed without a clear semantic meaning (nonzero exit, timeout)."""

    http_status = 502


class SubprocessTimeoutError(TransientToolFailure):
    """A tmux invocation exceeded its timeout and was killed."""

    def __init__(self, operation: str, timeout: float, pid: Optional[int] = None) -> None:
        super().__init__(f"{operation} timed out after {timeout}s")
        self.operation = operation
        self.timeout = timeout
        self.pid = pid
