"""Pytest configuration for Trinetra tests."""

import os
import tempfile
from pathlib import Path

import pytest

# Isolate tests from the developer's own config, .env and data directory.
# Must happen before anything imports trinetra.config.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="trinetra-tests-")
os.environ["TRINETRA_CONFIG_PATH"] = str(Path(_TEST_DATA_DIR) / "missing-trinetra.yml")
os.environ["TRINETRA_ENV_PATH"] = str(Path(_TEST_DATA_DIR) / "missing.env")
os.environ["TRINETRA_DATA_DIR"] = _TEST_DATA_DIR
os.environ.pop("TRINETRA_DB_PATH", None)

from trinetra.config import config  # noqa: E402
from trinetra.core.db import Db  # noqa: E402


def pytest_collection_modifyitems(config, items):  # pylint: disable=redefined-outer-name
    """Set per-marker timeouts: unit=5s, integration=20s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(20))


@pytest.fixture
async def test_db(tmp_path):
    """Fresh on-disk database per test."""
    db = Db(str(tmp_path / "ccp.sqlite"))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point the configured data directory (and therefore logs/) at tmp_path."""
    monkeypatch.setattr(config, "data_dir", tmp_path / "data")
    return tmp_path / "data"
