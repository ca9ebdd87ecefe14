"""Tests for the storage backends: upsert, tags, cascade delete, relationships"""

import sqlite3

import pytest

from memlink.core.db_sqlite import SQLiteDatabase
from memlink.core.errors import MemoryNotFoundError, StorageError, ValidationError


def test_save_creates_memory(storage):
    """A new key gets a fresh id and created_at == updated_at"""
    memory = storage.save_memory("auth-bug", "Token refresh races on logout", tags=["bug", "auth"])

    assert memory.id.startswith("mem_")
    assert memory.created_at == memory.updated_at

    fetched = storage.get_memory_by_key("auth-bug")
    assert fetched.id == memory.id
    assert fetched.content == "Token refresh races on logout"
    assert fetched.tags == ["bug", "auth"]
    assert fetched.metadata == {}


def test_upsert_keeps_identity(storage):
    """Saving an existing key keeps id and created_at, replaces content"""
    first = storage.save_memory("k", "v1", metadata={"source": "chat"})
    second = storage.save_memory("k", "v2", metadata={"source": "email"})

    assert first.created is True
    assert second.created is False

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at

    fetched = storage.get_memory_by_key("k")
    assert fetched.content == "v2"
    assert fetched.metadata == {"source": "email"}
    assert storage.compute_stats().memory_count == 1


def test_upsert_keeps_relationships(storage):
    storage.save_memory("a", "alpha")
    storage.save_memory("b", "beta")
    storage.create_relationship("a", "b", "relates_to")

    storage.save_memory("a", "alpha, revised")

    assert storage.compute_stats().relationship_count == 1


def test_tags_replaced_on_save(storage):
    storage.save_memory("k", "v", tags=["x", "y"])
    storage.save_memory("k", "v", tags=["z"])
    assert storage.get_memory_by_key("k").tags == ["z"]

    # Empty tag list clears tags
    storage.save_memory("k", "v", tags=[])
    assert storage.get_memory_by_key("k").tags == []


def test_duplicate_tags_collapsed(storage):
    memory = storage.save_memory("k", "v", tags=["x", "y", "x"])
    assert memory.tags == ["x", "y"]
    assert storage.get_memory_by_key("k").tags == ["x", "y"]


def test_blank_tag_rejected(storage):
    with pytest.raises(ValidationError):
        storage.save_memory("k", "v", tags=["ok", "  "])
    assert storage.get_memory_by_key("k") is None


def test_keys_are_case_sensitive(storage):
    storage.save_memory("Key", "upper")
    storage.save_memory("key", "lower")

    assert storage.get_memory_by_key("Key").content == "upper"
    assert storage.get_memory_by_key("key").content == "lower"
    assert storage.get_memory_by_key("KEY") is None


def test_get_missing_key(storage):
    assert storage.get_memory_by_key("nope") is None


def test_get_memories_by_ids(storage):
    a = storage.save_memory("a", "alpha")
    b = storage.save_memory("b", "beta")

    found = storage.get_memories_by_ids([a.id, b.id, a.id, "mem_missing"])
    assert set(found) == {a.id, b.id}
    assert found[b.id].key == "b"
    assert storage.get_memories_by_ids([]) == {}


def test_delete_cascades(storage):
    """Deleting a memory removes its tags and every relationship touching it"""
    storage.save_memory("a", "alpha", tags=["t1"])
    storage.save_memory("b", "beta", tags=["t2"])
    storage.save_memory("c", "gamma")
    storage.create_relationship("a", "b", "relates_to")
    storage.create_relationship("c", "a", "caused_by")
    storage.create_relationship("b", "c", "relates_to")

    assert storage.delete_memory("a") is True

    assert storage.get_memory_by_key("a") is None
    stats = storage.compute_stats()
    assert stats.memory_count == 2
    assert stats.relationship_count == 1
    assert stats.distinct_tag_count == 1

    b = storage.get_memory_by_key("b")
    remaining = storage.get_adjacent_relationships([b.id])
    assert len(remaining) == 1
    assert remaining[0].relationship_type == "relates_to"


def test_delete_missing_key(storage):
    assert storage.delete_memory("nope") is False


def test_create_relationship(storage):
    a = storage.save_memory("a", "alpha")
    b = storage.save_memory("b", "beta")

    edge = storage.create_relationship("a", "b", "depends_on", 0.5)

    assert edge.id.startswith("rel_")
    assert edge.from_id == a.id
    assert edge.to_id == b.id
    assert edge.relationship_type == "depends_on"
    assert edge.strength == 0.5
    assert edge.to_dict("a", "b")["from_key"] == "a"


def test_parallel_relationships_allowed(storage):
    """Same endpoints and type may be linked more than once"""
    storage.save_memory("a", "alpha")
    storage.save_memory("b", "beta")
    storage.create_relationship("a", "b", "relates_to")
    storage.create_relationship("a", "b", "relates_to")

    assert storage.compute_stats().relationship_count == 2


def test_relationship_missing_endpoints(storage):
    storage.save_memory("a", "alpha")

    with pytest.raises(MemoryNotFoundError) as excinfo:
        storage.create_relationship("a", "ghost", "relates_to")
    assert excinfo.value.keys == ["ghost"]

    with pytest.raises(MemoryNotFoundError) as excinfo:
        storage.create_relationship("ghost1", "ghost2", "relates_to")
    assert excinfo.value.keys == ["ghost1", "ghost2"]
    assert "ghost1" in str(excinfo.value)

    assert storage.compute_stats().relationship_count == 0


def test_relationship_invalid_strength(storage):
    storage.save_memory("a", "alpha")
    storage.save_memory("b", "beta")

    with pytest.raises(ValidationError):
        storage.create_relationship("a", "b", "relates_to", float("nan"))
    with pytest.raises(ValidationError):
        storage.create_relationship("a", "b", "   ")

    assert storage.compute_stats().relationship_count == 0


def test_adjacent_relationships_filter_and_order(storage):
    a = storage.save_memory("a", "alpha")
    storage.save_memory("b", "beta")
    storage.save_memory("c", "gamma")
    first = storage.create_relationship("a", "b", "relates_to")
    storage.create_relationship("c", "a", "depends_on")
    third = storage.create_relationship("b", "a", "relates_to")

    # Both directions, creation order
    edges = storage.get_adjacent_relationships([a.id])
    assert len(edges) == 3
    assert edges[0].id == first.id
    assert edges[-1].id == third.id

    typed = storage.get_adjacent_relationships([a.id], "relates_to")
    assert [edge.id for edge in typed] == [first.id, third.id]


def test_stats(storage):
    empty = storage.compute_stats()
    assert empty.to_dict() == {"memory_count": 0, "relationship_count": 0, "distinct_tag_count": 0}

    storage.save_memory("a", "alpha", tags=["x", "y"])
    storage.save_memory("b", "beta", tags=["y", "z"])
    storage.create_relationship("a", "b", "relates_to")

    stats = storage.compute_stats()
    assert stats.memory_count == 2
    assert stats.relationship_count == 1
    assert stats.distinct_tag_count == 3


# =============================================================================
# SQLite specifics
# =============================================================================


def test_sqlite_rolls_back_failed_transaction(sqlite_storage):
    """Nothing written inside a failed transaction survives"""
    sqlite_storage.save_memory("a", "alpha")

    with pytest.raises(RuntimeError, match="boom"):
        with sqlite_storage.transaction() as conn:
            conn.execute("DELETE FROM tags")
            conn.execute("DELETE FROM memories")
            raise RuntimeError("boom")

    assert sqlite_storage.get_memory_by_key("a") is not None


def test_sqlite_errors_become_storage_errors(sqlite_storage):
    with pytest.raises(StorageError):
        with sqlite_storage.transaction() as conn:
            conn.execute("INSERT INTO no_such_table VALUES (1)")

    # Connection is usable afterwards
    sqlite_storage.save_memory("a", "alpha")
    assert sqlite_storage.compute_stats().memory_count == 1


def test_sqlite_nested_transaction_joins_outer(sqlite_storage):
    with pytest.raises(RuntimeError):
        with sqlite_storage.transaction():
            sqlite_storage.save_memory("a", "alpha")
            raise RuntimeError("abort outer")

    assert sqlite_storage.get_memory_by_key("a") is None


def test_sqlite_persists_across_reopen(tmp_path):
    db_path = str(tmp_path / "reopen.db")
    db = SQLiteDatabase(db_path)
    db.save_memory("a", "alpha", tags=["x"])
    db.save_memory("b", "beta")
    db.create_relationship("a", "b", "relates_to")
    db.close()

    db = SQLiteDatabase(db_path)
    assert db.get_memory_by_key("a").tags == ["x"]
    assert db.compute_stats().relationship_count == 1
    db.close()


def test_sqlite_schema_created(sqlite_storage):
    tables = {
        row[0]
        for row in sqlite_storage.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
    }
    assert {"memories", "tags", "relationships"} <= tables

    indexes = {
        row[0]
        for row in sqlite_storage.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='index'"
        ).fetchall()
    }
    assert "idx_memories_key" in indexes
    assert "idx_relationships_from" in indexes


def test_sqlite_incompatible_schema_rejected(tmp_path):
    """An existing database missing required columns fails loudly"""
    db_path = tmp_path / "old.db"
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE memories (id TEXT PRIMARY KEY, content TEXT)")
    conn.commit()
    conn.close()

    with pytest.raises(RuntimeError, match="Schema validation failed"):
        SQLiteDatabase(str(db_path))


def test_sqlite_location(tmp_path):
    db = SQLiteDatabase(str(tmp_path / "nested" / "dir" / "store.db"))
    assert db.location.endswith("store.db")
    db.close()


def test_unencodable_key_rejected(storage):
    with pytest.raises(ValidationError, match="UTF-8"):
        storage.save_memory("\ud800", "content")
    assert storage.compute_stats().memory_count == 0


def test_sqlite_overflow_becomes_storage_error(sqlite_storage):
    with pytest.raises(StorageError):
        sqlite_storage.list_memories(limit=10, offset=2**63)
