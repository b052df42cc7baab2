"""Trinetra: mirror and drive tmux sessions from remote clients."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"
_UNKNOWN_VERSION = "0.0.0"


def _source_tree_version() -> str | None:
    """Version declared in a neighbouring pyproject.toml, if this is a checkout."""
    try:
        project = tomllib.loads(_PYPROJECT.read_text(encoding="utf-8")).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return None
    declared = project.get("version") if isinstance(project, dict) else None
    return declared if isinstance(declared, str) else None


def _resolve_version() -> str:
    # A checkout wins over stale metadata from an older editable install
    declared = _source_tree_version()
    if declared:
        return declared
    try:
        return version("trinetra")
    except PackageNotFoundError:
        return _UNKNOWN_VERSION


__version__ = _resolve_version()

__all__ = ["__version__"]
