"""CLI entry point for Shelfsync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config
from .exceptions import ShelfsyncError


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _format_book(book) -> str:
    year = f", {book.published_year}" if book.published_year else ""
    isbn = f" [{book.isbn}]" if book.isbn else ""
    return f"{book.id}  {book.title} by {book.author}{year}{isbn}"


def _fields_from_args(args: argparse.Namespace) -> dict:
    return {
        "title": args.title,
        "author": args.author,
        "isbn": args.isbn,
        "published_year": args.year,
        "genre": args.genre,
    }


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the catalog server."""
    config = load_config(args.config)

    import uvicorn

    from .catalog import SEED_BOOKS, RecordStore
    from .server import ConnectionRegistry, MutationBroadcaster, create_app

    host = args.host or config.server.host
    port = args.port or config.server.port

    # Composition root: one store, registry and broadcaster per process
    store = RecordStore()
    if config.server.seed:
        store.seed(SEED_BOOKS)
    registry = ConnectionRegistry(
        store, max_pending_messages=config.server.max_pending_messages
    )
    broadcaster = MutationBroadcaster(registry)

    app = create_app(config, store, registry=registry, broadcaster=broadcaster)

    print("Starting Shelfsync server")
    print(f"Book API: http://{host}:{port}/api")
    print(f"Real-time channel: ws://{host}:{port}/ws")

    verbose = getattr(args, "verbose", False)
    config_uvicorn = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info" if verbose else "warning",
    )
    server = uvicorn.Server(config_uvicorn)
    await server.serve()
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Follow the catalog in real time."""
    config = load_config(args.config)
    if args.server:
        config.client.server_url = args.server

    from .client import ConnectionState, SyncClient

    client = SyncClient.from_config(config.client)

    def on_snapshot(records) -> None:
        print(f"Snapshot: {len(records)} books")
        for book in records:
            print(f"  {_format_book(book)}")

    def on_notification(note) -> None:
        print(f"[{note['type']}] {note['message']} ({len(client.replica)} books)")

    def on_connection_change(change) -> None:
        print(f"Connection: {change['state']}")

    client.on("snapshot", on_snapshot)
    client.on("notification", on_notification)
    client.on("connection_change", on_connection_change)

    print(f"Watching {config.client.ws_url}")
    client.start()
    try:
        await client.wait_for_state(ConnectionState.RECONNECT_FAILED)
        print("Failed to reconnect. Giving up.", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
        return 0
    finally:
        await client.close()


async def cmd_status(args: argparse.Namespace) -> int:
    """Check server health."""
    config = load_config(args.config)

    from .client import CatalogClient

    async with CatalogClient(
        config.client.api_url, timeout=config.client.request_timeout_seconds
    ) as api:
        try:
            health = await api.health()
        except ShelfsyncError as e:
            if args.json:
                print(json.dumps({"connected": False, "error": str(e)}, indent=2))
            else:
                print(f"Server: {config.client.api_url} \033[91m✗ unreachable\033[0m ({e})")
            return 1

    if args.json:
        print(json.dumps({"connected": True, **health}, indent=2))
    else:
        print(f"Server: {config.client.api_url} \033[92m✓ {health.get('message')}\033[0m")
        print(f"  Connected clients: {health.get('connected_clients')}")
        print(f"  Books: {health.get('books')}")
    return 0


async def cmd_list(args: argparse.Namespace) -> int:
    """List all books."""
    config = load_config(args.config)

    from .client import CatalogClient

    async with CatalogClient(
        config.client.api_url, timeout=config.client.request_timeout_seconds
    ) as api:
        books = await api.list_books()

    print(f"{len(books)} {'book' if len(books) == 1 else 'books'}")
    for book in books:
        print(f"  {_format_book(book)}")
    return 0


async def cmd_add(args: argparse.Namespace) -> int:
    """Add a book."""
    config = load_config(args.config)

    from .client import CatalogClient

    async with CatalogClient(
        config.client.api_url, timeout=config.client.request_timeout_seconds
    ) as api:
        book = await api.create_book(_fields_from_args(args))

    print(f"Added: {_format_book(book)}")
    return 0


async def cmd_update(args: argparse.Namespace) -> int:
    """Replace a book's fields."""
    config = load_config(args.config)

    from .client import CatalogClient

    async with CatalogClient(
        config.client.api_url, timeout=config.client.request_timeout_seconds
    ) as api:
        book = await api.update_book(args.id, _fields_from_args(args))

    print(f"Updated: {_format_book(book)}")
    return 0


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a book."""
    config = load_config(args.config)

    from .client import CatalogClient

    async with CatalogClient(
        config.client.api_url, timeout=config.client.request_timeout_seconds
    ) as api:
        book = await api.delete_book(args.id)

    print(f"Deleted: {_format_book(book)}")
    return 0


def _add_field_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--title", required=True, help="Book title")
    parser.add_argument("--author", required=True, help="Book author")
    parser.add_argument("--isbn", default=None, help="ISBN (must be unique)")
    parser.add_argument("--year", type=int, default=None, help="Year published")
    parser.add_argument("--genre", default=None, help="Genre")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="shelfsync",
        description="Real-time synchronized book catalog",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the catalog server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: from config, 5000)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config, 0.0.0.0)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Follow the catalog in real time")
    watch_parser.add_argument(
        "--server",
        type=str,
        default=None,
        help="Server URL (default: from config)",
    )
    watch_parser.set_defaults(func=cmd_watch)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check server health")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Book commands
    list_parser = subparsers.add_parser("list", help="List all books")
    list_parser.set_defaults(func=cmd_list)

    add_parser = subparsers.add_parser("add", help="Add a book")
    _add_field_arguments(add_parser)
    add_parser.set_defaults(func=cmd_add)

    update_parser = subparsers.add_parser("update", help="Replace a book's fields")
    update_parser.add_argument("id", help="Book id")
    _add_field_arguments(update_parser)
    update_parser.set_defaults(func=cmd_update)

    delete_parser = subparsers.add_parser("delete", help="Delete a book")
    delete_parser.add_argument("id", help="Book id")
    delete_parser.set_defaults(func=cmd_delete)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except ShelfsyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
