"""Relationship traversal over the memory graph"""

import logging
from typing import Dict, List, Optional

from memlink.core.db_interface import DatabaseInterface
from memlink.core.errors import MemoryNotFoundError, ValidationError
from memlink.core.models import RelatedMemory, RelationshipRecord

logger = logging.getLogger(__name__)


def get_related_memories(
    storage: DatabaseInterface,
    key: str,
    relationship_type: Optional[str] = None,
    max_depth: int = 1,
) -> List[RelatedMemory]:
    """
    Breadth-first walk of the relationship graph from one memory.

    Edges are followed in both directions regardless of how they were
    created. Each level fetches every edge touching the current frontier in
    one storage call. A memory is reported once, at the depth where it was
    first reached, through the first edge that reached it (frontier order,
    then edge creation order). The source memory is never reported.

    When relationship_type is given, only edges of that type are followed,
    so every reported path consists solely of that type.

    Args:
        storage: Storage backend
        key: Key of the source memory
        relationship_type: Optional edge type filter (applies to traversal and results)
        max_depth: Maximum number of hops (>= 1)

    Returns:
        List of RelatedMemory ordered by depth, then discovery order.
        Empty if the source has no (matching) relationships.

    Raises:
        MemoryNotFoundError: If key does not resolve
        ValidationError: If max_depth < 1
    """
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 1:
        raise ValidationError("max_depth must be an integer >= 1", field="max_depth")

    source = storage.get_memory_by_key(key)
    if source is None:
        raise MemoryNotFoundError([key])

    # memory_id -> (reaching edge, depth, path of ids)
    reached: Dict[str, tuple[RelationshipRecord, int, List[str]]] = {}
    paths: Dict[str, List[str]] = {source.id: [source.id]}
    visited = {source.id}
    frontier = [source.id]

    for depth in range(1, max_depth + 1):
        if not frontier:
            break

        adjacency: Dict[str, List[RelationshipRecord]] = {node_id: [] for node_id in frontier}
        for edge in storage.get_adjacent_relationships(frontier, relationship_type):
            # An edge between two frontier nodes is listed under both; a
            # self-loop only once
            for end in dict.fromkeys((edge.from_id, edge.to_id)):
                if end in adjacency:
                    adjacency[end].append(edge)

        next_frontier = []
        for node_id in frontier:
            for edge in adjacency[node_id]:
                neighbour = edge.other_end(node_id)
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                paths[neighbour] = paths[node_id] + [neighbour]
                reached[neighbour] = (edge, depth, paths[neighbour])
                next_frontier.append(neighbour)

        frontier = next_frontier

    if not reached:
        return []

    memories = storage.get_memories_by_ids([source.id, *reached])
    memories[source.id] = source

    results = []
    for memory_id, (edge, depth, path) in reached.items():
        if any(node_id not in memories for node_id in path):
            # Deleted between levels; nothing to report for it
            continue
        results.append(
            RelatedMemory(
                memory=memories[memory_id],
                relationship=edge,
                depth=depth,
                path=[memories[node_id].key for node_id in path],
                from_key=memories[edge.from_id].key,
                to_key=memories[edge.to_id].key,
            )
        )

    logger.debug(
        "Traversal from %r (type=%r, max_depth=%d) reached %d memories",
        key,
        relationship_type,
        max_depth,
        len(results),
    )
    return results
