"""CLI entry point for the memlink memory graph"""

import argparse
import json
import logging
import sys
from typing import Any

from memlink.core.config import load_config
from memlink.core.db_interface import DatabaseInterface
from memlink.core.errors import StorageError
from memlink.core.outcomes import ToolOutcome
from memlink.core.tools import MemoryGraph

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: dict[str, Any]) -> None:
    """Send log records to stderr at the configured level (stdout carries results)."""
    level_name = str(config.get("logging", {}).get("level", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Invalid config: logging.level {level_name!r} is not a logging level")
    logging.basicConfig(stream=sys.stderr, level=level, format=LOG_FORMAT, force=True)


def open_storage(config: dict[str, Any]) -> DatabaseInterface:
    """
    Open the storage backend named by storage.backend.

    Args:
        config: Configuration dictionary

    Returns:
        DatabaseInterface implementation
    """
    storage_config = config["storage"]
    backend = storage_config.get("backend", "sqlite")

    if backend == "falkordb":
        from memlink.core.db_falkordb import FalkorDBDatabase

        falkor = storage_config["falkordb"]
        return FalkorDBDatabase(
            host=falkor["host"],
            port=int(falkor["port"]),
            graph_name=falkor["graph_name"],
        )

    from memlink.core.db_sqlite import SQLiteDatabase

    return SQLiteDatabase(storage_config["db_path"])


def build_runtime(config: dict[str, Any]) -> tuple[DatabaseInterface, MemoryGraph]:
    """
    Build storage and the operation facade from config.

    The caller owns the storage and must close it.

    Returns:
        Tuple of (storage, graph)
    """
    storage = open_storage(config)
    return storage, MemoryGraph(storage, config)


def print_outcome(outcome: ToolOutcome) -> None:
    """Print outcome JSON; exit non-zero on ERROR."""
    print(json.dumps(outcome.to_dict(), indent=2))
    if outcome.is_error:
        sys.exit(1)


def parse_tags(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def run_operation(args, operation: str, arguments: dict[str, Any]) -> None:
    """Open the store, run one operation, print its outcome, close the store."""
    try:
        storage, graph = build_runtime(args.config_dict)
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        outcome = graph.call(operation, arguments)
    finally:
        storage.close()
    print_outcome(outcome)


def cmd_save(args):
    """Handle 'memlink memory save' command"""
    metadata = None
    if args.metadata:
        try:
            metadata = json.loads(args.metadata)
        except json.JSONDecodeError as e:
            print(f"Error: --metadata is not valid JSON: {e}", file=sys.stderr)
            sys.exit(1)

    run_operation(
        args,
        "save_memory",
        {
            "key": args.key,
            "content": args.content,
            "tags": parse_tags(args.tags),
            "metadata": metadata,
        },
    )


def cmd_recall(args):
    """Handle 'memlink memory recall' command"""
    run_operation(args, "recall_memory", {"key": args.key, "include_related": args.related})


def cmd_search(args):
    """Handle 'memlink memory search' command"""
    run_operation(
        args,
        "search_memories",
        {"query": args.query, "tags": parse_tags(args.tags), "limit": args.limit},
    )


def cmd_link(args):
    """Handle 'memlink memory link' command"""
    run_operation(
        args,
        "link_memories",
        {
            "from_key": args.from_key,
            "to_key": args.to_key,
            "relationship_type": args.relationship_type,
            "strength": args.strength,
        },
    )


def cmd_related(args):
    """Handle 'memlink memory related' command"""
    run_operation(
        args,
        "get_related_memories",
        {"key": args.key, "relationship_type": args.type, "max_depth": args.max_depth},
    )


def cmd_list(args):
    """Handle 'memlink memory list' command"""
    run_operation(args, "list_all_memories", {"limit": args.limit, "offset": args.offset})


def cmd_delete(args):
    """Handle 'memlink memory delete' command"""
    run_operation(args, "delete_memory", {"key": args.key})


def cmd_stats(args):
    """Handle 'memlink memory stats' command"""
    run_operation(args, "get_memory_stats", {})


def cmd_memory(args):
    """Handle 'memlink memory' subcommand routing"""
    # Only reached without a memory subcommand
    args.memory_parser.print_help()
    sys.exit(1)


def cmd_serve(args):
    """Handle 'memlink serve' command"""
    from memlink.core.server import MemlinkServer

    config = args.config_dict
    host = args.host or config["server"]["host"]
    port = args.port or config["server"]["port"]
    MemlinkServer(config, host=host, port=port).start()


def cmd_mcp(args):
    """Handle 'memlink mcp' command"""
    import asyncio

    from memlink.core.mcp_server import serve_stdio

    asyncio.run(serve_stdio(args.config_dict))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memlink",
        description="memlink: persistent memory graph",
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # memlink serve
    parser_serve = subparsers.add_parser("serve", help="Run the HTTP JSON endpoint")
    parser_serve.add_argument("--host", help="Bind address (overrides config)")
    parser_serve.add_argument("--port", type=int, help="Port (overrides config)")
    parser_serve.set_defaults(func=cmd_serve)

    # memlink mcp
    parser_mcp = subparsers.add_parser("mcp", help="Run the MCP server on stdio")
    parser_mcp.set_defaults(func=cmd_mcp)

    # memlink memory
    parser_memory = subparsers.add_parser("memory", help="Memory operations")
    memory_subparsers = parser_memory.add_subparsers(
        dest="memory_command", help="Memory commands"
    )

    parser_save = memory_subparsers.add_parser("save", help="Save or update a memory")
    parser_save.add_argument("key", help="Unique memory key")
    parser_save.add_argument("content", help="Memory content")
    parser_save.add_argument("--tags", help="Comma-separated tags (e.g., bug,auth,fix)")
    parser_save.add_argument("--metadata", help="Metadata as a JSON object")
    parser_save.set_defaults(func=cmd_save)

    parser_recall = memory_subparsers.add_parser("recall", help="Show a memory by key")
    parser_recall.add_argument("key", help="Memory key")
    parser_recall.add_argument(
        "--related", action="store_true", help="Include related memories"
    )
    parser_recall.set_defaults(func=cmd_recall)

    parser_search = memory_subparsers.add_parser(
        "search", help="Search memories by content/key substring and tags"
    )
    parser_search.add_argument("query", nargs="?", help="Substring to search for")
    parser_search.add_argument("--tags", help="Comma-separated tags (any may match)")
    parser_search.add_argument("--limit", type=int, help="Number of results (default from config)")
    parser_search.set_defaults(func=cmd_search)

    parser_link = memory_subparsers.add_parser("link", help="Link two memories")
    parser_link.add_argument("from_key", help="Source memory key")
    parser_link.add_argument("to_key", help="Target memory key")
    parser_link.add_argument("relationship_type", help="Relationship type (e.g., depends_on)")
    parser_link.add_argument("--strength", type=float, help="Relationship strength (default 1.0)")
    parser_link.set_defaults(func=cmd_link)

    parser_related = memory_subparsers.add_parser(
        "related", help="Show memories reachable through relationships"
    )
    parser_related.add_argument("key", help="Source memory key")
    parser_related.add_argument("--type", help="Only follow this relationship type")
    parser_related.add_argument("--max-depth", type=int, help="Maximum hops (default from config)")
    parser_related.set_defaults(func=cmd_related)

    parser_list = memory_subparsers.add_parser("list", help="List memories")
    parser_list.add_argument("--limit", type=int, help="Page size (default from config)")
    parser_list.add_argument("--offset", type=int, default=0, help="Page offset (default: 0)")
    parser_list.set_defaults(func=cmd_list)

    parser_delete = memory_subparsers.add_parser(
        "delete", help="Delete a memory and its relationships"
    )
    parser_delete.add_argument("key", help="Memory key")
    parser_delete.set_defaults(func=cmd_delete)

    parser_stats = memory_subparsers.add_parser("stats", help="Show memory graph statistics")
    parser_stats.set_defaults(func=cmd_stats)

    # Show help if no memory subcommand
    parser_memory.set_defaults(func=cmd_memory, memory_parser=parser_memory)

    return parser


def main(argv: list[str] | None = None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Show help if no command provided
    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load config with minimal error handling (fail hard on other errors)
    try:
        config = load_config(args.config)
        configure_logging(config)
        args.config_dict = config
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Dispatch to subcommand handler
    args.func(args)


if __name__ == "__main__":
    main()
