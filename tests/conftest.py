"""Pytest configuration and fixtures for memlink tests.

Provides parametrized fixtures to run tests against both SQLite and FalkorDB backends.
"""

import os

# Add src to path for imports
import sys
import uuid

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from memlink.core.config import DEFAULT_CONFIG, merge_config
from memlink.core.db_interface import DatabaseInterface
from memlink.core.db_sqlite import SQLiteDatabase
from memlink.core.tools import MemoryGraph


def get_falkordb_config():
    """Get FalkorDB connection config from environment or defaults."""
    return {
        "host": os.environ.get("MEMLINK_FALKORDB_HOST", "localhost"),
        "port": int(os.environ.get("MEMLINK_FALKORDB_PORT", "6379")),
    }


def falkordb_available() -> bool:
    """Check if FalkorDB is available for testing."""
    try:
        from falkordb import FalkorDB
        from redis.exceptions import RedisError

        config = get_falkordb_config()
        client = FalkorDB(host=config["host"], port=config["port"])
        client.list_graphs()  # Quick connectivity check
        return True
    except (ImportError, RedisError, OSError):
        return False


def get_backends():
    """Get list of backends to test based on availability."""
    backends = ["sqlite"]

    if os.environ.get("MEMLINK_TEST_FALKORDB", "").lower() in ("1", "true", "yes"):
        if falkordb_available():
            backends.append("falkordb")
        else:
            print("Warning: MEMLINK_TEST_FALKORDB enabled but FalkorDB not available")

    return backends


def make_falkordb_storage():
    from memlink.core.db_falkordb import FalkorDBDatabase

    config = get_falkordb_config()
    # Unique graph name per test to avoid conflicts
    return FalkorDBDatabase(
        host=config["host"],
        port=config["port"],
        graph_name=f"memlink_test_{uuid.uuid4().hex[:8]}",
    )


@pytest.fixture(params=get_backends())
def storage(request, tmp_path) -> DatabaseInterface:
    """
    Parametrized fixture providing a storage backend.

    Runs each test once per available backend (SQLite, and optionally FalkorDB).

    Environment variables:
        MEMLINK_TEST_FALKORDB=1  - Enable FalkorDB testing
        MEMLINK_FALKORDB_HOST    - FalkorDB host (default: localhost)
        MEMLINK_FALKORDB_PORT    - FalkorDB port (default: 6379)
    """
    if request.param == "sqlite":
        db = SQLiteDatabase(str(tmp_path / "test.db"))
        yield db
        db.close()

    elif request.param == "falkordb":
        db = make_falkordb_storage()
        yield db
        db.drop()
        db.close()


@pytest.fixture
def sqlite_storage(tmp_path) -> SQLiteDatabase:
    """Fixture for tests that specifically need SQLite only."""
    db = SQLiteDatabase(str(tmp_path / "test.db"))
    yield db
    db.close()


@pytest.fixture
def graph(storage) -> MemoryGraph:
    """Operation facade over the parametrized storage with default config."""
    return MemoryGraph(storage, DEFAULT_CONFIG)


@pytest.fixture
def config(tmp_path) -> dict:
    """Default config pointing at a throwaway SQLite file."""
    return merge_config(DEFAULT_CONFIG, {"storage": {"db_path": str(tmp_path / "memlink.db")}})
