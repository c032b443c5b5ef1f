"""Shared fixtures for vangraph tests."""

import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the repo root (vangraph/, vangraph_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from vangraph.projects import ProjectService
from vangraph.store import MemoryStore, SQLiteStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sqlite_store():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    try:
        yield SQLiteStore(db_path)
    finally:
        for suffix in ("", "-wal", "-shm"):
            Path(db_path + suffix).unlink(missing_ok=True)


@pytest.fixture
def project(store):
    return ProjectService(store).create_project("ws-1", "Vangraph", "VAN")
