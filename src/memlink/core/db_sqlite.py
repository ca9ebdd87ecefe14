"""SQLite storage backend for memlink.

Owns the memories, tags and relationships tables. Every multi-row mutation
runs inside a single BEGIN IMMEDIATE transaction; reads run in autocommit
mode. One connection is shared across threads and guarded by a lock.
"""

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from memlink.core.db_interface import DatabaseInterface
from memlink.core.errors import MemoryNotFoundError, StorageError
from memlink.core.models import (
    MemoryRecord,
    MemoryStats,
    RelationshipRecord,
    dump_metadata,
    load_metadata,
)

logger = logging.getLogger(__name__)

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on old builds
MAX_PARAMS_PER_QUERY = 400

MEMORY_COLUMNS = "m.id, m.key, m.content, m.metadata, m.created_at, m.updated_at"


def _chunks(items: list, size: int = MAX_PARAMS_PER_QUERY):
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SQLiteDatabase(DatabaseInterface):
    """SQLite storage for memories, tags and relationships"""

    def __init__(self, db_path: str):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            # isolation_level=None: we issue BEGIN/COMMIT ourselves
            self.conn = sqlite3.connect(
                str(db_path), isolation_level=None, check_same_thread=False
            )
            self.conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageError(f"Could not open SQLite database {db_path}: {e}") from e

        self._init_schema()
        self._validate_schema()
        logger.debug("SQLite store ready at %s", db_path)

    # =========================================================================
    # Schema
    # =========================================================================

    def _is_fresh_database(self) -> bool:
        """Check if database is empty (no memories table)"""
        cursor = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='memories'"
        )
        return cursor.fetchone() is None

    def _init_schema(self) -> None:
        """Apply schema.sql to a fresh database

        Raises:
            FileNotFoundError: If schema.sql is not found
        """
        if not self._is_fresh_database():
            return

        schema_path = Path(__file__).parent / "schema.sql"
        if not schema_path.exists():
            raise FileNotFoundError(f"schema.sql not found at {schema_path}")

        with self._lock:
            self.conn.executescript(schema_path.read_text())
        logger.info("Applied schema.sql to fresh database %s", self.db_path)

    def _validate_schema(self) -> None:
        """Validate database schema matches expectations (fail loudly on mismatch)

        Raises:
            RuntimeError: If required tables or columns are missing
        """
        cursor = self.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}

        required_tables = {"memories", "tags", "relationships"}
        missing_tables = required_tables - tables
        if missing_tables:
            raise RuntimeError(f"Schema validation failed: Missing tables: {missing_tables}")

        required_columns = {
            "memories": {"id", "key", "content", "metadata", "created_at", "updated_at"},
            "tags": {"id", "memory_id", "tag"},
            "relationships": {
                "id",
                "from_memory_id",
                "to_memory_id",
                "relationship_type",
                "strength",
                "created_at",
            },
        }
        for table, expected in required_columns.items():
            cursor = self.conn.execute(f"PRAGMA table_info({table})")
            columns = {row[1] for row in cursor.fetchall()}
            missing = expected - columns
            if missing:
                raise RuntimeError(
                    f"Schema validation failed: Missing columns in {table} table: {missing}. "
                    f"Database schema is incompatible with this version of memlink."
                )

    # =========================================================================
    # Transaction and Lifecycle Management
    # =========================================================================

    @contextmanager
    def transaction(self):
        """Run the block in one write transaction.

        Nested use joins the outer transaction. sqlite3 errors are re-raised
        as StorageError after rollback; other exceptions roll back and
        propagate unchanged.
        """
        with self._lock:
            if self.conn.in_transaction:
                yield self.conn
                return

            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Could not begin transaction: {e}") from e

            try:
                yield self.conn
            except (sqlite3.Error, OverflowError) as e:
                self._rollback()
                raise StorageError(f"Transaction rolled back: {e}") from e
            except BaseException:
                self._rollback()
                raise

            try:
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise StorageError(f"Commit failed, transaction rolled back: {e}") from e

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[tuple]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except (sqlite3.Error, OverflowError) as e:
                raise StorageError(f"Query failed: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()

    @property
    def location(self) -> str:
        return str(self.db_path)

    # =========================================================================
    # Row Mapping
    # =========================================================================

    def _load_tags(self, memory_ids: list[str]) -> dict[str, list[str]]:
        tags: dict[str, list[str]] = {memory_id: [] for memory_id in memory_ids}
        for chunk in _chunks(memory_ids):
            rows = self._fetchall(
                f"SELECT memory_id, tag FROM tags WHERE memory_id IN ({_placeholders(len(chunk))}) "
                f"ORDER BY rowid",
                chunk,
            )
            for memory_id, tag in rows:
                tags[memory_id].append(tag)
        return tags

    def _rows_to_memories(self, rows: list[tuple]) -> list[MemoryRecord]:
        tags = self._load_tags([row[0] for row in rows])
        return [
            MemoryRecord(
                id=row[0],
                key=row[1],
                content=row[2],
                metadata=load_metadata(row[3]),
                created_at=row[4],
                updated_at=row[5],
                tags=tags[row[0]],
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_relationship(row: tuple) -> RelationshipRecord:
        return RelationshipRecord(
            id=row[0],
            from_id=row[1],
            to_id=row[2],
            relationship_type=row[3],
            strength=row[4],
            created_at=row[5],
        )

    # =========================================================================
    # Memory Operations
    # =========================================================================

    def save_memory(
        self,
        key: str,
        content: str,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryRecord:
        node = MemoryRecord.create(key, content, tags=tags, metadata=metadata)
        metadata_json = dump_metadata(node.metadata)

        with self.transaction() as conn:
            # Upsert keeps the existing id, so relationships stay attached
            conn.execute(
                """
                INSERT INTO memories (id, key, content, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    content = excluded.content,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (node.id, node.key, node.content, metadata_json, node.created_at, node.updated_at),
            )
            memory_id, created_at = conn.execute(
                "SELECT id, created_at FROM memories WHERE key = ?", (node.key,)
            ).fetchone()

            conn.execute("DELETE FROM tags WHERE memory_id = ?", (memory_id,))
            conn.executemany(
                "INSERT INTO tags (id, memory_id, tag) VALUES (?, ?, ?)",
                [(f"tag_{uuid.uuid4()}", memory_id, tag) for tag in node.tags],
            )

        created = memory_id == node.id
        node.id = memory_id
        node.created_at = created_at
        node.created = created
        logger.info("%s memory %r (%s)", "Created" if created else "Updated", key, memory_id)
        return node

    def get_memory_by_key(self, key: str) -> MemoryRecord | None:
        rows = self._fetchall(f"SELECT {MEMORY_COLUMNS} FROM memories m WHERE m.key = ?", (key,))
        if not rows:
            return None
        return self._rows_to_memories(rows)[0]

    def get_memories_by_ids(self, memory_ids: list[str]) -> dict[str, MemoryRecord]:
        rows = []
        for chunk in _chunks(list(dict.fromkeys(memory_ids))):
            rows.extend(
                self._fetchall(
                    f"SELECT {MEMORY_COLUMNS} FROM memories m "
                    f"WHERE m.id IN ({_placeholders(len(chunk))})",
                    chunk,
                )
            )
        return {memory.id: memory for memory in self._rows_to_memories(rows)}

    def delete_memory(self, key: str) -> bool:
        with self.transaction() as conn:
            row = conn.execute("SELECT id FROM memories WHERE key = ?", (key,)).fetchone()
            if row is None:
                return False

            memory_id = row[0]
            removed = conn.execute(
                "DELETE FROM relationships WHERE from_memory_id = ? OR to_memory_id = ?",
                (memory_id, memory_id),
            ).rowcount
            conn.execute("DELETE FROM tags WHERE memory_id = ?", (memory_id,))
            conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))

        logger.info("Deleted memory %r and %d relationship(s)", key, removed)
        return True

    # =========================================================================
    # Relationship Operations
    # =========================================================================

    def create_relationship(
        self,
        from_key: str,
        to_key: str,
        relationship_type: str,
        strength: float = 1.0,
    ) -> RelationshipRecord:
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT key, id FROM memories WHERE key IN (?, ?)", (from_key, to_key)
            ).fetchall()
            ids = dict(rows)
            missing = [key for key in dict.fromkeys((from_key, to_key)) if key not in ids]
            if missing:
                raise MemoryNotFoundError(missing)

            edge = RelationshipRecord.create(
                from_id=ids[from_key],
                to_id=ids[to_key],
                relationship_type=relationship_type,
                strength=strength,
            )
            conn.execute(
                """
                INSERT INTO relationships (
                    id, from_memory_id, to_memory_id, relationship_type, strength, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    edge.id,
                    edge.from_id,
                    edge.to_id,
                    edge.relationship_type,
                    edge.strength,
                    edge.created_at,
                ),
            )

        logger.info("Linked %r --[%s]--> %r", from_key, relationship_type, to_key)
        return edge

    def get_adjacent_relationships(
        self,
        memory_ids: list[str],
        relationship_type: str | None = None,
    ) -> list[RelationshipRecord]:
        found: dict[str, tuple] = {}
        for chunk in _chunks(list(dict.fromkeys(memory_ids))):
            marks = _placeholders(len(chunk))
            query = (
                "SELECT id, from_memory_id, to_memory_id, relationship_type, strength, "
                "created_at, rowid FROM relationships "
                f"WHERE (from_memory_id IN ({marks}) OR to_memory_id IN ({marks}))"
            )
            params: list[Any] = [*chunk, *chunk]
            if relationship_type is not None:
                query += " AND relationship_type = ?"
                params.append(relationship_type)

            for row in self._fetchall(query, params):
                found[row[0]] = row

        ordered = sorted(found.values(), key=lambda row: (row[5], row[6]))
        return [self._row_to_relationship(row) for row in ordered]

    # =========================================================================
    # Query Operations
    # =========================================================================

    def find_memories(
        self,
        query: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list[MemoryRecord]:
        sql = f"SELECT {MEMORY_COLUMNS} FROM memories m"
        conditions = []
        params: list[Any] = []

        if tags:
            # Subquery rather than JOIN: a memory matching several tags appears once
            conditions.append(
                f"m.id IN (SELECT memory_id FROM tags WHERE tag IN ({_placeholders(len(tags))}))"
            )
            params.extend(tags)

        if query:
            # instr() is case-sensitive, unlike LIKE
            conditions.append("(instr(m.content, ?) > 0 OR instr(m.key, ?) > 0)")
            params.extend([query, query])

        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        sql += " ORDER BY m.updated_at DESC, m.rowid DESC LIMIT ?"
        params.append(limit)

        logger.debug("Searching memories: query=%r tags=%r limit=%d", query, tags, limit)
        return self._rows_to_memories(self._fetchall(sql, params))

    def list_memories(self, limit: int = 50, offset: int = 0) -> list[MemoryRecord]:
        rows = self._fetchall(
            f"SELECT {MEMORY_COLUMNS} FROM memories m "
            "ORDER BY m.updated_at DESC, m.rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return self._rows_to_memories(rows)

    # =========================================================================
    # Count and Statistics Operations
    # =========================================================================

    def compute_stats(self) -> MemoryStats:
        row = self._fetchall(
            """
            SELECT
                (SELECT COUNT(*) FROM memories),
                (SELECT COUNT(*) FROM relationships),
                (SELECT COUNT(DISTINCT tag) FROM tags)
            """
        )[0]
        return MemoryStats(
            memory_count=row[0],
            relationship_count=row[1],
            distinct_tag_count=row[2],
        )

