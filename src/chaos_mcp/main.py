#!/usr/bin/env python
"""Command line entry point for the chaos note store and its MCP server."""
import argparse
import atexit
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from chaos_mcp import __version__
from chaos_mcp.config import config
from chaos_mcp.exceptions import ChaosError, ConfigurationError
from chaos_mcp.observability import configure_logging, metrics
from chaos_mcp.services.note_service import NoteService
from chaos_mcp.storage.git_wrapper import GitError, GitWrapper
from chaos_mcp.storage.header_codec import format_value
from chaos_mcp.storage.note_repository import UNSET

logger = logging.getLogger(__name__)

# Commands that read or write notes pull the latest history first
NOTE_COMMANDS = ("new", "update", "rename", "delete", "append", "show", "search", "init")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="chaos", description="Plain-text notes with an MCP server"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--data-dir",
        help="Data directory holding notes/ and assets/ (default: ~/.chaos)",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("CHAOS_LOG_LEVEL", "INFO"),
    )
    sub = parser.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    p = sub.add_parser("new", help="Create a new note")
    p.add_argument("title")

    p = sub.add_parser("update", help="Update a note")
    p.add_argument("id")
    p.add_argument("content", nargs="?", default=None, help="New body text")
    p.add_argument("--status", default=None, help="building|done|clear (empty clears)")
    p.add_argument("--tags", default=None, help="tag1,tag2 (empty clears)")

    p = sub.add_parser("rename", help="Rename a note")
    p.add_argument("id")
    p.add_argument("title")

    p = sub.add_parser("delete", help="Delete a note")
    p.add_argument("id")

    p = sub.add_parser("append", help="Append text to a note body")
    p.add_argument("id")
    p.add_argument("text")

    p = sub.add_parser("show", help="Show a note")
    p.add_argument("id")
    p.add_argument("--json", action="store_true", help="Print as JSON")
    p.add_argument("--raw", action="store_true", help="Print the file text as stored")

    p = sub.add_parser("search", help="Search notes (prints JSON)")
    p.add_argument("query")
    p.add_argument("--ranked", action="store_true", help="Title matches first, newest first")

    p = sub.add_parser("validate-prd", help="Validate a prd.json file")
    p.add_argument("path")

    p = sub.add_parser("parse", help="Parse the header of a note file")
    p.add_argument("file")
    p.add_argument("field", nargs="?", default=None, help="Print one field ('body' for the body)")
    p.add_argument("--json", action="store_true", help="Print fields and body as JSON")

    p = sub.add_parser("init", help="Create the data directory")
    p.add_argument("--git", action="store_true", help="Also initialize a git repository")

    sub.add_parser("serve", help="Run the MCP server on stdio")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.data_dir:
        data_dir = Path(args.data_dir).expanduser()
        if data_dir.exists() and not data_dir.is_dir():
            raise ConfigurationError(
                f"data directory is not a directory: {data_dir}", config_key="data_dir"
            )
        config.data_dir = data_dir


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def _setup_logging(args: argparse.Namespace) -> None:
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        # stdout carries command output (and the MCP transport for serve)
        configure_logging(
            log_dir=config.get_log_dir(),
            level=log_level,
            console=args.command == "serve",
        )
    except OSError as e:
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")


def _split_tags(value: str) -> Optional[List[str]]:
    tags = [t.strip() for t in value.split(",") if t.strip()]
    return tags or None


def _print_fields(service: NoteService, fields: dict) -> None:
    for line in service.format_fields(fields):
        print(line)


def run_command(args: argparse.Namespace, service: NoteService) -> int:
    """Execute one parsed subcommand.

    Returns:
        Process exit code.
    """
    command = args.command

    if command == "new":
        note = service.create_note(args.title)
        print(note.path)

    elif command == "update":
        path = service.update_note(
            args.id,
            status=UNSET if args.status is None else args.status,
            tags=UNSET if args.tags is None else _split_tags(args.tags),
            content=UNSET if args.content is None else args.content,
        )
        print(f"updated {path}")

    elif command == "rename":
        print(service.rename_note(args.id, args.title))

    elif command == "delete":
        print(f"deleted {service.delete_note(args.id)}")

    elif command == "append":
        print(f"appended to {service.append_to_note(args.id, args.text)}")

    elif command == "show":
        view = service.get_note(args.id)
        if args.raw:
            print(view.content, end="" if view.content.endswith("\n") else "\n")
        elif args.json:
            data = view.note.header_fields()
            data["filename"] = view.filename
            data["body"] = view.note.body
            data["resolved_body"] = view.resolved_body
            print(json.dumps(data, indent=2))
        else:
            _print_fields(service, view.note.header_fields())
            if view.resolved_body:
                print()
                print(view.resolved_body)

    elif command == "search":
        hits = service.search_notes(args.query, ranked=args.ranked)
        print(json.dumps([hit.model_dump() for hit in hits], indent=2))

    elif command == "validate-prd":
        result = service.validate_prd(args.path)
        print(json.dumps(result.model_dump(), indent=2))
        return 0 if result.valid else 1

    elif command == "parse":
        fields, body = service.parse_file(args.file)
        if args.json:
            print(json.dumps({**fields, "body": body}))
        elif args.field == "body":
            print(body)
        elif args.field:
            if args.field in fields:
                print(format_value(fields[args.field]))
        else:
            _print_fields(service, fields)

    elif command == "init":
        if args.git:
            git = GitWrapper(config.data_dir)
            if git.init_repo():
                print(f"initialized git repository in {git.repo_path}")
        print(config.data_dir)

    return 0


def _serve() -> int:
    from chaos_mcp.server.mcp_server import ChaosMcpServer

    metrics.load_metrics()
    atexit.register(_save_metrics_on_exit)
    try:
        logger.info("Starting chaos MCP server")
        server = ChaosMcpServer()
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the chaos command line."""
    args = parse_args(argv)
    try:
        update_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    _setup_logging(args)

    if args.command == "serve":
        return _serve()

    service = NoteService()
    try:
        if args.command in NOTE_COMMANDS:
            service.initialize()
        return run_command(args, service)
    except ChaosError as e:
        logger.debug(f"{args.command} failed: {e}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except (GitError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
