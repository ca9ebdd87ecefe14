"""Search and listing over stored memories"""

import logging

from memlink.core.db_interface import DatabaseInterface
from memlink.core.errors import ValidationError
from memlink.core.models import MemoryRecord, normalize_tags

logger = logging.getLogger(__name__)


def _require_count(value: int, name: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(f"{name} must be an integer >= {minimum}", field=name)
    return value


def search_memories(
    storage: DatabaseInterface,
    query: str | None = None,
    tags: list[str] | None = None,
    limit: int = 10,
) -> list[MemoryRecord]:
    """
    Search memories by content/key substring and tag membership.

    Tags match with OR semantics (any supplied tag). The query is a
    case-sensitive substring of content or key. When both are given a memory
    must satisfy both. Empty query and empty tag list mean no filter.

    Args:
        storage: Storage backend
        query: Optional substring to look for
        tags: Optional tags, any of which must be present
        limit: Maximum number of results

    Returns:
        Matching memories, most recently updated first

    Raises:
        ValidationError: If limit or tags are invalid
    """
    _require_count(limit, "limit", 1)
    if query is not None and not isinstance(query, str):
        raise ValidationError("query must be a string", field="query")

    results = storage.find_memories(
        query=query or None,
        tags=normalize_tags(tags) or None,
        limit=limit,
    )
    logger.debug("Search returned %d memories", len(results))
    return results


def list_all_memories(
    storage: DatabaseInterface,
    limit: int = 50,
    offset: int = 0,
) -> list[MemoryRecord]:
    """
    Page through every memory, most recently updated first.

    No snapshot is held between pages, so concurrent writes can shift rows
    across page boundaries.
    """
    _require_count(limit, "limit", 1)
    _require_count(offset, "offset", 0)
    return storage.list_memories(limit=limit, offset=offset)
