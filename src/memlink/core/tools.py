"""Store facade: the eight memory graph operations.

Every operation validates its arguments with a pydantic model, applies
defaults from configuration, delegates to the storage, search and traversal
layers, and returns a ToolOutcome. This is the only place where engine
exceptions become caller-facing results.
"""

import logging
from typing import Annotated, Any, Callable, Optional

import pydantic
from pydantic import AfterValidator, BaseModel, Field, field_validator

from memlink.core.config import DEFAULT_CONFIG
from memlink.core.db_interface import DatabaseInterface
from memlink.core.errors import (
    MemoryNotFoundError,
    StorageError,
    UnknownOperationError,
    ValidationError,
)
from memlink.core.graph import get_related_memories
from memlink.core.outcomes import ToolOutcome
from memlink.core.retrieval import list_all_memories, search_memories

logger = logging.getLogger(__name__)


# =============================================================================
# Argument schemas
# =============================================================================


def _encodable(value: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"not valid UTF-8 text: {e.reason}") from e
    return value


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value


Text = Annotated[str, AfterValidator(_encodable)]
NonBlankStr = Annotated[str, AfterValidator(_not_blank), AfterValidator(_encodable)]


class SaveMemoryArgs(BaseModel):
    """Save a memory with a key and content"""

    key: NonBlankStr = Field(description="Unique key for the memory")
    content: NonBlankStr = Field(description="Content to store")
    tags: list[Text] = Field(default_factory=list, description="Optional tags for categorization")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Optional metadata object")

    @field_validator("tags", mode="before")
    @classmethod
    def tags_default(cls, value):
        return [] if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, value):
        return {} if value is None else value


class RecallMemoryArgs(BaseModel):
    """Retrieve a memory by key"""

    key: NonBlankStr = Field(description="Key of the memory to retrieve")
    include_related: bool = Field(default=False, description="Include related memories")

    @field_validator("include_related", mode="before")
    @classmethod
    def include_default(cls, value):
        return False if value is None else value


class SearchMemoriesArgs(BaseModel):
    """Search memories by content or tags"""

    query: Optional[Text] = Field(
        default=None, description="Case-sensitive substring of content or key"
    )
    tags: list[Text] = Field(
        default_factory=list, description="Filter by tags (a memory matches if it has any)"
    )
    limit: Optional[int] = Field(default=None, ge=1, description="Maximum results to return (default 10)")

    @field_validator("tags", mode="before")
    @classmethod
    def tags_default(cls, value):
        return [] if value is None else value


class LinkMemoriesArgs(BaseModel):
    """Create a relationship between two memories"""

    from_key: NonBlankStr = Field(description="Source memory key")
    to_key: NonBlankStr = Field(description="Target memory key")
    relationship_type: NonBlankStr = Field(
        description='Type of relationship (e.g., "relates_to", "depends_on", "caused_by")'
    )
    strength: Optional[float] = Field(
        default=None,
        allow_inf_nan=False,
        description="Relationship strength, expected 0.0 to 1.0 (default 1.0)",
    )


class GetRelatedMemoriesArgs(BaseModel):
    """Get memories related to a given memory"""

    key: NonBlankStr = Field(description="Key of the source memory")
    relationship_type: Optional[Text] = Field(
        default=None, description="Only follow relationships of this type"
    )
    max_depth: Optional[int] = Field(
        default=None, ge=1, description="Maximum relationship depth to traverse (default 1)"
    )

    @field_validator("relationship_type", mode="before")
    @classmethod
    def empty_type_is_none(cls, value):
        return None if value == "" else value


class ListAllMemoriesArgs(BaseModel):
    """List all stored memories"""

    limit: Optional[int] = Field(default=None, ge=1, description="Maximum results to return (default 50)")
    offset: int = Field(default=0, ge=0, description="Offset for pagination")

    @field_validator("offset", mode="before")
    @classmethod
    def offset_default(cls, value):
        return 0 if value is None else value


class DeleteMemoryArgs(BaseModel):
    """Delete a memory and its relationships"""

    key: NonBlankStr = Field(description="Key of the memory to delete")


class GetMemoryStatsArgs(BaseModel):
    """Get statistics about the memory graph: memory_count, relationship_count and distinct_tag_count"""


ARGUMENT_MODELS: dict[str, type[BaseModel]] = {
    "save_memory": SaveMemoryArgs,
    "recall_memory": RecallMemoryArgs,
    "search_memories": SearchMemoriesArgs,
    "link_memories": LinkMemoriesArgs,
    "get_related_memories": GetRelatedMemoriesArgs,
    "list_all_memories": ListAllMemoriesArgs,
    "delete_memory": DeleteMemoryArgs,
    "get_memory_stats": GetMemoryStatsArgs,
}

OPERATIONS = tuple(ARGUMENT_MODELS)


def tool_definitions() -> list[dict[str, Any]]:
    """Name, description and JSON input schema for each operation."""
    definitions = []
    for name, model in ARGUMENT_MODELS.items():
        schema = model.model_json_schema()
        schema.pop("title", None)
        schema.pop("description", None)
        definitions.append(
            {
                "name": name,
                "description": (model.__doc__ or name).strip(),
                "input_schema": schema,
            }
        )
    return definitions


def _format_validation_error(operation: str, error: pydantic.ValidationError) -> ValidationError:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        problems.append(f"{location}: {item['msg']}")
    first_field = str(error.errors()[0]["loc"][0]) if error.errors() and error.errors()[0]["loc"] else None
    return ValidationError(f"Invalid arguments for {operation}: {'; '.join(problems)}", field=first_field)


# =============================================================================
# Facade
# =============================================================================


class MemoryGraph:
    """The eight store operations over one storage backend"""

    def __init__(self, storage: DatabaseInterface, config: dict[str, Any] | None = None):
        """
        Args:
            storage: Storage backend, owned by the caller
            config: Configuration dict (defaults and limits sections are used)
        """
        config = config or DEFAULT_CONFIG
        self.storage = storage
        self.defaults = {**DEFAULT_CONFIG["defaults"], **config.get("defaults", {})}
        self.limits = {**DEFAULT_CONFIG["limits"], **config.get("limits", {})}
        self._handlers: dict[str, Callable[[Any], ToolOutcome]] = {
            "save_memory": self._save_memory,
            "recall_memory": self._recall_memory,
            "search_memories": self._search_memories,
            "link_memories": self._link_memories,
            "get_related_memories": self._get_related_memories,
            "list_all_memories": self._list_all_memories,
            "delete_memory": self._delete_memory,
            "get_memory_stats": self._get_memory_stats,
        }

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def call(self, operation: str, arguments: dict[str, Any] | None = None) -> ToolOutcome:
        """
        Run one operation by name.

        Args:
            operation: One of OPERATIONS
            arguments: Operation arguments (None means no arguments)

        Returns:
            ToolOutcome; never raises for validation, not-found, storage or
            unknown-operation failures
        """
        try:
            if not isinstance(operation, str) or operation not in self._handlers:
                raise UnknownOperationError(operation)
            if arguments is None:
                arguments = {}
            if not isinstance(arguments, dict):
                raise ValidationError(f"Arguments for {operation} must be an object", field="arguments")

            try:
                args = ARGUMENT_MODELS[operation].model_validate(arguments)
            except pydantic.ValidationError as e:
                raise _format_validation_error(operation, e) from e

            return self._handlers[operation](args)

        except UnknownOperationError as e:
            logger.warning("%s", e)
            return ToolOutcome.error("unknown_operation", str(e))
        except ValidationError as e:
            logger.info("Rejected %s: %s", operation, e)
            return ToolOutcome.error("validation_error", str(e))
        except StorageError as e:
            logger.exception("Storage failure during %s", operation)
            return ToolOutcome.error("storage_error", str(e))

    def save_memory(
        self,
        key: str,
        content: str,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ToolOutcome:
        return self.call(
            "save_memory", {"key": key, "content": content, "tags": tags, "metadata": metadata}
        )

    def recall_memory(self, key: str, include_related: bool = False) -> ToolOutcome:
        return self.call("recall_memory", {"key": key, "include_related": include_related})

    def search_memories(
        self,
        query: str | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
    ) -> ToolOutcome:
        return self.call("search_memories", {"query": query, "tags": tags, "limit": limit})

    def link_memories(
        self,
        from_key: str,
        to_key: str,
        relationship_type: str,
        strength: float | None = None,
    ) -> ToolOutcome:
        return self.call(
            "link_memories",
            {
                "from_key": from_key,
                "to_key": to_key,
                "relationship_type": relationship_type,
                "strength": strength,
            },
        )

    def get_related_memories(
        self,
        key: str,
        relationship_type: str | None = None,
        max_depth: int | None = None,
    ) -> ToolOutcome:
        return self.call(
            "get_related_memories",
            {"key": key, "relationship_type": relationship_type, "max_depth": max_depth},
        )

    def list_all_memories(self, limit: int | None = None, offset: int = 0) -> ToolOutcome:
        return self.call("list_all_memories", {"limit": limit, "offset": offset})

    def delete_memory(self, key: str) -> ToolOutcome:
        return self.call("delete_memory", {"key": key})

    def get_memory_stats(self) -> ToolOutcome:
        return self.call("get_memory_stats", {})

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _check_ceiling(self, value: int, limit_name: str, field: str) -> int:
        ceiling = self.limits[limit_name]
        if value > ceiling:
            raise ValidationError(f"{field} must be <= {ceiling}", field=field)
        return value

    def _save_memory(self, args: SaveMemoryArgs) -> ToolOutcome:
        memory = self.storage.save_memory(
            args.key, args.content, tags=args.tags, metadata=args.metadata
        )
        created = memory.created
        return ToolOutcome.ok(
            f"Memory saved successfully with key: {memory.key}",
            {"key": memory.key, "created": created, "memory": memory.to_dict()},
        )

    def _recall_memory(self, args: RecallMemoryArgs) -> ToolOutcome:
        memory = self.storage.get_memory_by_key(args.key)
        if memory is None:
            return ToolOutcome.not_found(f"No memory found with key: {args.key}", {"key": args.key})

        data: dict[str, Any] = {"memory": memory.to_dict()}
        if args.include_related:
            try:
                related = get_related_memories(
                    self.storage, args.key, max_depth=self.defaults["max_depth"]
                )
            except MemoryNotFoundError:
                return ToolOutcome.not_found(
                    f"No memory found with key: {args.key}", {"key": args.key}
                )
            data["related_memories"] = [item.to_dict() for item in related]

        return ToolOutcome.ok(f"Memory recalled: {args.key}", data)

    def _search_memories(self, args: SearchMemoriesArgs) -> ToolOutcome:
        limit = self._check_ceiling(
            args.limit or self.defaults["search_limit"], "max_limit", "limit"
        )
        memories = search_memories(self.storage, query=args.query, tags=args.tags, limit=limit)
        return ToolOutcome.ok(
            f"Found {len(memories)} memories",
            {"memories": [memory.to_dict() for memory in memories], "count": len(memories)},
        )

    def _link_memories(self, args: LinkMemoriesArgs) -> ToolOutcome:
        strength = self.defaults["strength"] if args.strength is None else args.strength
        try:
            edge = self.storage.create_relationship(
                args.from_key, args.to_key, args.relationship_type, strength
            )
        except MemoryNotFoundError as e:
            return ToolOutcome.not_found(
                f"One or both memories not found ({args.from_key}, {args.to_key}); "
                f"missing: {', '.join(e.keys)}",
                {"missing_keys": e.keys},
            )

        return ToolOutcome.ok(
            f"Relationship created: {args.from_key} --[{args.relationship_type}]--> {args.to_key}",
            {"relationship": edge.to_dict(args.from_key, args.to_key)},
        )

    def _get_related_memories(self, args: GetRelatedMemoriesArgs) -> ToolOutcome:
        max_depth = self._check_ceiling(
            args.max_depth or self.defaults["max_depth"], "max_depth", "max_depth"
        )
        try:
            related = get_related_memories(
                self.storage, args.key, relationship_type=args.relationship_type, max_depth=max_depth
            )
        except MemoryNotFoundError:
            return ToolOutcome.not_found(f"No memory found with key: {args.key}", {"key": args.key})

        return ToolOutcome.ok(
            f"Found {len(related)} related memories",
            {
                "key": args.key,
                "related_memories": [item.to_dict() for item in related],
                "count": len(related),
            },
        )

    def _list_all_memories(self, args: ListAllMemoriesArgs) -> ToolOutcome:
        limit = self._check_ceiling(args.limit or self.defaults["list_limit"], "max_limit", "limit")
        memories = list_all_memories(self.storage, limit=limit, offset=args.offset)
        return ToolOutcome.ok(
            f"Listed {len(memories)} memories",
            {
                "memories": [memory.to_dict() for memory in memories],
                "count": len(memories),
                "limit": limit,
                "offset": args.offset,
            },
        )

    def _delete_memory(self, args: DeleteMemoryArgs) -> ToolOutcome:
        if not self.storage.delete_memory(args.key):
            return ToolOutcome.not_found(f"No memory found with key: {args.key}", {"key": args.key})
        return ToolOutcome.ok(f"Memory deleted: {args.key}", {"key": args.key})

    def _get_memory_stats(self, args: GetMemoryStatsArgs) -> ToolOutcome:
        stats = self.storage.compute_stats()
        return ToolOutcome.ok("Memory graph statistics", stats.to_dict())
