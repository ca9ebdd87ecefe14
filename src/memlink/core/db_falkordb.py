"""FalkorDB database adapter implementing DatabaseInterface.

Memories are :Memory nodes carrying their tags as a list property, and
relationships are :RELATES edges. Every mutation is a single Cypher query,
which FalkorDB executes atomically.
"""

import logging
from contextlib import contextmanager
from typing import Any

from falkordb import FalkorDB
from redis.exceptions import RedisError

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

MEMORY_RETURN = "m.id, m.key, m.content, m.metadata, m.created_at, m.updated_at, m.tags"
RELATIONSHIP_RETURN = "r.id, a.id, b.id, r.relationship_type, r.strength, r.created_at"


class FalkorDBDatabase(DatabaseInterface):
    """FalkorDB graph database adapter.

    Provides native graph operations using Cypher queries.
    """

    def __init__(self, host: str, port: int, graph_name: str):
        """Initialize FalkorDB connection.

        Args:
            host: FalkorDB server host
            port: FalkorDB server port
            graph_name: Name of the graph to use
        """
        try:
            self._client = FalkorDB(host=host, port=port)
            self._graph = self._client.select_graph(graph_name)
        except RedisError as e:
            raise StorageError(f"Could not connect to FalkorDB at {host}:{port}: {e}") from e

        self._host = host
        self._port = port
        self._graph_name = graph_name
        self._init_schema()

    def _init_schema(self) -> None:
        """Create indexes backing key lookups and traversal."""
        for prop in ("key", "id", "updated_at"):
            try:
                self._graph.create_node_range_index("Memory", prop)
            except RedisError as e:
                logger.debug("Index on Memory.%s not created: %s", prop, e)

        try:
            self._graph.create_node_unique_constraint("Memory", "key")
        except RedisError as e:
            logger.debug("Unique constraint on Memory.key not created: %s", e)

    def _query(self, query: str, params: dict[str, Any] | None = None, read_only: bool = False):
        try:
            if read_only:
                return self._graph.ro_query(query, params or {}).result_set
            return self._graph.query(query, params or {}).result_set
        except RedisError as e:
            raise StorageError(f"FalkorDB query failed: {e}") from e

    @staticmethod
    def _row_to_memory(row) -> MemoryRecord:
        return MemoryRecord(
            id=row[0],
            key=row[1],
            content=row[2],
            metadata=load_metadata(row[3]),
            created_at=row[4],
            updated_at=row[5],
            tags=list(row[6] or []),
        )

    @staticmethod
    def _row_to_relationship(row) -> RelationshipRecord:
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
        rows = self._query(
            f"""
            MERGE (m:Memory {{key: $key}})
            ON CREATE SET m.id = $id, m.created_at = $now
            SET m.content = $content,
                m.metadata = $metadata,
                m.tags = $tags,
                m.updated_at = $now
            RETURN {MEMORY_RETURN}
            """,
            {
                "key": node.key,
                "id": node.id,
                "now": node.created_at,
                "content": node.content,
                "metadata": dump_metadata(node.metadata),
                "tags": node.tags,
            },
        )
        saved = self._row_to_memory(rows[0])
        saved.created = saved.id == node.id
        logger.info("%s memory %r (%s)", "Created" if saved.created else "Updated", key, saved.id)
        return saved

    def get_memory_by_key(self, key: str) -> MemoryRecord | None:
        rows = self._query(
            f"MATCH (m:Memory {{key: $key}}) RETURN {MEMORY_RETURN}",
            {"key": key},
            read_only=True,
        )
        return self._row_to_memory(rows[0]) if rows else None

    def get_memories_by_ids(self, memory_ids: list[str]) -> dict[str, MemoryRecord]:
        rows = self._query(
            f"MATCH (m:Memory) WHERE m.id IN $ids RETURN {MEMORY_RETURN}",
            {"ids": list(dict.fromkeys(memory_ids))},
            read_only=True,
        )
        return {row[0]: self._row_to_memory(row) for row in rows}

    def delete_memory(self, key: str) -> bool:
        rows = self._query(
            """
            MATCH (m:Memory {key: $key})
            OPTIONAL MATCH (m)-[r:RELATES]-()
            WITH m, count(DISTINCT r) AS removed
            DETACH DELETE m
            RETURN removed
            """,
            {"key": key},
        )
        if not rows:
            return False

        logger.info("Deleted memory %r and %d relationship(s)", key, rows[0][0])
        return True

    # =========================================================================
    # Relationship Operations
    # =========================================================================

    def _resolve_keys(self, keys: list[str]) -> dict[str, str]:
        rows = self._query(
            "MATCH (m:Memory) WHERE m.key IN $keys RETURN m.key, m.id",
            {"keys": keys},
            read_only=True,
        )
        return {row[0]: row[1] for row in rows}

    def create_relationship(
        self,
        from_key: str,
        to_key: str,
        relationship_type: str,
        strength: float = 1.0,
    ) -> RelationshipRecord:
        keys = list(dict.fromkeys((from_key, to_key)))
        ids = self._resolve_keys(keys)
        missing = [key for key in keys if key not in ids]
        if missing:
            raise MemoryNotFoundError(missing)

        edge = RelationshipRecord.create(
            from_id=ids[from_key],
            to_id=ids[to_key],
            relationship_type=relationship_type,
            strength=strength,
        )
        rows = self._query(
            """
            MATCH (a:Memory {id: $from_id}), (b:Memory {id: $to_id})
            CREATE (a)-[r:RELATES {
                id: $id,
                relationship_type: $relationship_type,
                strength: $strength,
                created_at: $created_at
            }]->(b)
            RETURN r.id
            """,
            {
                "from_id": edge.from_id,
                "to_id": edge.to_id,
                "id": edge.id,
                "relationship_type": edge.relationship_type,
                "strength": edge.strength,
                "created_at": edge.created_at,
            },
        )
        if not rows:
            # An endpoint was deleted between resolution and creation
            ids = self._resolve_keys(keys)
            raise MemoryNotFoundError([key for key in keys if key not in ids] or keys)

        logger.info("Linked %r --[%s]--> %r", from_key, relationship_type, to_key)
        return edge

    def get_adjacent_relationships(
        self,
        memory_ids: list[str],
        relationship_type: str | None = None,
    ) -> list[RelationshipRecord]:
        query = "MATCH (a:Memory)-[r:RELATES]->(b:Memory) WHERE (a.id IN $ids OR b.id IN $ids)"
        params: dict[str, Any] = {"ids": list(dict.fromkeys(memory_ids))}
        if relationship_type is not None:
            query += " AND r.relationship_type = $relationship_type"
            params["relationship_type"] = relationship_type
        query += f" RETURN {RELATIONSHIP_RETURN} ORDER BY r.created_at, r.id"

        return [self._row_to_relationship(row) for row in self._query(query, params, read_only=True)]

    # =========================================================================
    # Query Operations
    # =========================================================================

    def find_memories(
        self,
        query: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list[MemoryRecord]:
        cypher = "MATCH (m:Memory)"
        conditions = []
        params: dict[str, Any] = {"limit": limit}

        if tags:
            conditions.append("any(t IN m.tags WHERE t IN $tags)")
            params["tags"] = list(tags)

        if query:
            # CONTAINS is case-sensitive
            conditions.append("(m.content CONTAINS $query OR m.key CONTAINS $query)")
            params["query"] = query

        if conditions:
            cypher += " WHERE " + " AND ".join(conditions)

        cypher += f" RETURN {MEMORY_RETURN} ORDER BY m.updated_at DESC, m.key LIMIT $limit"

        logger.debug("Searching memories: query=%r tags=%r limit=%d", query, tags, limit)
        return [self._row_to_memory(row) for row in self._query(cypher, params, read_only=True)]

    def list_memories(self, limit: int = 50, offset: int = 0) -> list[MemoryRecord]:
        rows = self._query(
            f"MATCH (m:Memory) RETURN {MEMORY_RETURN} "
            "ORDER BY m.updated_at DESC, m.key SKIP $offset LIMIT $limit",
            {"limit": limit, "offset": offset},
            read_only=True,
        )
        return [self._row_to_memory(row) for row in rows]

    # =========================================================================
    # Count and Statistics Operations
    # =========================================================================

    def compute_stats(self) -> MemoryStats:
        memories = self._query("MATCH (m:Memory) RETURN count(m)", read_only=True)
        relationships = self._query(
            "MATCH (:Memory)-[r:RELATES]->(:Memory) RETURN count(r)", read_only=True
        )
        tags = self._query(
            "MATCH (m:Memory) UNWIND m.tags AS tag RETURN count(DISTINCT tag)", read_only=True
        )
        return MemoryStats(
            memory_count=memories[0][0] if memories else 0,
            relationship_count=relationships[0][0] if relationships else 0,
            distinct_tag_count=tags[0][0] if tags else 0,
        )

    # =========================================================================
    # Transaction and Lifecycle Management
    # =========================================================================

    @contextmanager
    def transaction(self):
        """Context manager for transactions.

        FalkorDB has no multi-query transactions; each query is atomic and
        every mutation here is a single query.
        """
        yield self._graph

    def close(self) -> None:
        """Close database connection."""
        # FalkorDB uses connection pooling, no explicit close needed
        pass

    def drop(self) -> None:
        """Delete the whole graph (used by tests)."""
        try:
            self._graph.delete()
        except RedisError as e:
            raise StorageError(f"Could not delete graph {self._graph_name}: {e}") from e

    @property
    def location(self) -> str:
        return f"falkordb://{self._host}:{self._port}/{self._graph_name}"
