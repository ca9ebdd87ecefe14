"""Data models for memlink"""

import json
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from memlink.core.errors import ValidationError


def utc_now() -> str:
    """Current UTC time as ISO 8601 with fixed microsecond precision.

    Fixed precision keeps lexical order equal to chronological order, which
    the storage backends rely on for ``ORDER BY updated_at``.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def require_encodable(value: str, field_name: str) -> str:
    """Reject strings that cannot be stored as UTF-8 (e.g. lone surrogates)."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValidationError(f"{field_name} is not valid UTF-8 text: {e.reason}", field=field_name) from e
    return value


def require_text(value: Any, field_name: str) -> str:
    """Return value unchanged if it is a non-blank string, else raise."""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)
    if not value.strip():
        raise ValidationError(f"{field_name} must not be empty", field=field_name)
    return require_encodable(value, field_name)


def dump_metadata(metadata: Dict[str, Any]) -> str:
    """Serialize metadata to JSON text, raising ValidationError if it can't be."""
    try:
        return json.dumps(metadata)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"metadata is not JSON serializable: {e}", field="metadata") from e


def load_metadata(raw: Optional[str]) -> Dict[str, Any]:
    return json.loads(raw) if raw else {}


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """
    Validate and de-duplicate a tag list, preserving first occurrence.

    Args:
        tags: Tag strings (None means no tags)

    Returns:
        List of unique tags in supplied order

    Raises:
        ValidationError: If any tag is not a non-blank string
    """
    if tags is None:
        return []

    seen = set()
    result = []
    for tag in tags:
        require_text(tag, "tags")
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


@dataclass
class MemoryRecord:
    """A stored memory addressed externally by its unique key"""

    id: str  # mem_<uuid>, immutable
    key: str  # unique, case-sensitive
    content: str
    created_at: str  # ISO 8601
    updated_at: str  # ISO 8601
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    # True only on the record returned by a save that inserted it
    created: bool = field(default=False, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        key: str,
        content: str,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        memory_id: Optional[str] = None,
    ) -> "MemoryRecord":
        """
        Build a new memory with a fresh identifier and timestamps.

        Args:
            key: External handle (must be non-empty)
            content: Memory content (must be non-empty)
            tags: Optional tags
            metadata: Optional metadata dict
            memory_id: Optional identifier (generated if not provided)

        Returns:
            MemoryRecord instance

        Raises:
            ValidationError: If key, content, tags or metadata are invalid
        """
        require_text(key, "key")
        require_text(content, "content")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object", field="metadata")

        if memory_id is None:
            memory_id = f"mem_{uuid.uuid4()}"

        now = utc_now()
        return cls(
            id=memory_id,
            key=key,
            content=content,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
            tags=normalize_tags(tags),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "content": self.content,
            "tags": list(self.tags),
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RelationshipRecord:
    """Directed, typed, weighted edge between two memories.

    Stored in the direction it was created; traversal ignores direction.
    """

    id: str  # rel_<uuid>
    from_id: str
    to_id: str
    relationship_type: str
    strength: float
    created_at: str

    @classmethod
    def create(
        cls,
        from_id: str,
        to_id: str,
        relationship_type: str,
        strength: float = 1.0,
        relationship_id: Optional[str] = None,
    ) -> "RelationshipRecord":
        require_text(relationship_type, "relationship_type")
        if isinstance(strength, bool) or not isinstance(strength, (int, float)):
            raise ValidationError("strength must be a number", field="strength")
        if not math.isfinite(strength):
            raise ValidationError("strength must be finite", field="strength")

        if relationship_id is None:
            relationship_id = f"rel_{uuid.uuid4()}"

        return cls(
            id=relationship_id,
            from_id=from_id,
            to_id=to_id,
            relationship_type=relationship_type,
            strength=float(strength),
            created_at=utc_now(),
        )

    def other_end(self, memory_id: str) -> str:
        """Endpoint opposite to memory_id (memory_id itself for self-loops)."""
        return self.to_id if self.from_id == memory_id else self.from_id

    def to_dict(self, from_key: str, to_key: str) -> Dict[str, Any]:
        return {
            "from_key": from_key,
            "to_key": to_key,
            "relationship_type": self.relationship_type,
            "strength": self.strength,
            "created_at": self.created_at,
        }


@dataclass
class RelatedMemory:
    """A memory reached by traversal, with the edge and path that reached it"""

    memory: MemoryRecord
    relationship: RelationshipRecord
    depth: int
    path: List[str]  # keys from source to this memory, inclusive
    from_key: str  # stored direction of the reaching edge
    to_key: str

    @property
    def relationship_type(self) -> str:
        return self.relationship.relationship_type

    @property
    def strength(self) -> float:
        return self.relationship.strength

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.memory.key,
            "content": self.memory.content,
            "relationship_type": self.relationship_type,
            "strength": self.strength,
            "depth": self.depth,
            "path": list(self.path),
            "from_key": self.from_key,
            "to_key": self.to_key,
        }


@dataclass
class MemoryStats:
    """Aggregate counts over the store"""

    memory_count: int
    relationship_count: int
    distinct_tag_count: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "memory_count": self.memory_count,
            "relationship_count": self.relationship_count,
            "distinct_tag_count": self.distinct_tag_count,
        }
