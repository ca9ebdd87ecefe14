"""Database abstraction layer for memlink storage backends.

Both backends (SQLite, FalkorDB) implement this interface, and the search,
traversal and facade layers only talk to it.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from memlink.core.models import MemoryRecord, MemoryStats, RelationshipRecord


class DatabaseInterface(ABC):
    """Abstract interface for memlink storage backends.

    Implementations own the memory, tag and relationship tables exclusively.
    Multi-row mutations must be all-or-nothing, and driver errors must be
    re-raised as StorageError.
    """

    # =========================================================================
    # Memory Operations
    # =========================================================================

    @abstractmethod
    def save_memory(
        self,
        key: str,
        content: str,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "MemoryRecord":
        """Create a memory, or update the existing one with this key in place.

        The tag set is replaced as a whole. An existing memory keeps its id
        and created_at, so its relationships survive.
        The returned record has created=True only when the key was new.

        Raises:
            ValidationError: If key or content is empty
        """
        ...

    @abstractmethod
    def get_memory_by_key(self, key: str) -> "MemoryRecord | None":
        """Retrieve memory by key."""
        ...

    @abstractmethod
    def get_memories_by_ids(self, memory_ids: list[str]) -> dict[str, "MemoryRecord"]:
        """Retrieve memories by id; missing ids are absent from the result."""
        ...

    @abstractmethod
    def delete_memory(self, key: str) -> bool:
        """Delete a memory with its tags and every relationship touching it.

        Returns:
            True if deleted, False if the key does not exist
        """
        ...

    # =========================================================================
    # Relationship Operations
    # =========================================================================

    @abstractmethod
    def create_relationship(
        self,
        from_key: str,
        to_key: str,
        relationship_type: str,
        strength: float = 1.0,
    ) -> "RelationshipRecord":
        """Link two memories by key.

        Raises:
            MemoryNotFoundError: Naming every key that did not resolve
        """
        ...

    @abstractmethod
    def get_adjacent_relationships(
        self,
        memory_ids: list[str],
        relationship_type: str | None = None,
    ) -> list["RelationshipRecord"]:
        """Edges touching any of memory_ids in either direction.

        Ordered by created_at, then id. Each edge appears once.
        """
        ...

    # =========================================================================
    # Query Operations
    # =========================================================================

    @abstractmethod
    def find_memories(
        self,
        query: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list["MemoryRecord"]:
        """Filter by case-sensitive substring on content/key and by any-of tags.

        Ordered by updated_at descending, de-duplicated, truncated to limit.
        """
        ...

    @abstractmethod
    def list_memories(self, limit: int = 50, offset: int = 0) -> list["MemoryRecord"]:
        """All memories, newest updated first, offset-paginated."""
        ...

    # =========================================================================
    # Count and Statistics Operations
    # =========================================================================

    @abstractmethod
    def compute_stats(self) -> "MemoryStats":
        """Memory, relationship and distinct tag counts."""
        ...

    # =========================================================================
    # Transaction and Lifecycle Management
    # =========================================================================

    @abstractmethod
    @contextmanager
    def transaction(self):
        """Context manager: commit on success, roll back on any exception."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        ...

    @property
    @abstractmethod
    def location(self) -> str:
        """Human readable description of where data lives (for /health)."""
        ...
