"""MCP server exposing the chaos note store."""

import atexit
import json
import logging
import uuid
from typing import Optional

from mcp.server.fastmcp import FastMCP

from chaos_mcp.config import config
from chaos_mcp.exceptions import ChaosError
from chaos_mcp.models.schema import SearchHit
from chaos_mcp.observability import metrics, timed_operation
from chaos_mcp.services.note_service import NoteService
from chaos_mcp.storage.note_repository import UNSET

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 1_000_000  # 1 MB

INSTRUCTIONS = (
    "Plain-text note store. Notes have a 21-character id, a title, an "
    "optional status (building/done), tags and a markdown body. Use "
    "chaos_search_notes to find ids before updating, renaming or deleting."
)


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


def _format_hit(hit: SearchHit) -> str:
    line = f"- {hit.id}: {hit.title}"
    if hit.status:
        line += f" [{hit.status}]"
    if hit.tags:
        line += f" ({', '.join(hit.tags)})"
    return line


class ChaosMcpServer:
    """MCP server for the chaos note store."""

    def __init__(self, note_service: Optional[NoteService] = None):
        """Initialize the MCP server.

        Args:
            note_service: Service to expose. Created from the global
                config when None.
        """
        self.mcp = FastMCP(config.server_name, instructions=INSTRUCTIONS)
        self.note_service = note_service or NoteService()
        self.initialize()
        atexit.register(self._shutdown)
        self._register_tools()

    def initialize(self) -> None:
        """Initialize services."""
        self.note_service.initialize()
        logger.info("Chaos MCP server initialized")

    def _shutdown(self) -> None:
        """Flush pending sync jobs on server exit."""
        self.note_service.shutdown()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, ChaosError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, (IOError, OSError)):
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="chaos_new_note")
        def chaos_new_note(title: str) -> str:
            """Create a new, empty note.
            Args:
                title: The title of the note (also names the file)
            """
            with timed_operation("chaos_new_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title)
                    note = self.note_service.create_note(title)
                    op["note_id"] = note.id
                    return f"Note created successfully with ID: {note.id}\nPath: {note.path}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_get_note")
        def chaos_get_note(note_id: str, format: str = "summary") -> str:
            """Retrieve a note by ID.
            Args:
                note_id: The ID of the note
                format: Output format:
                    - "summary" (default): header fields and body with [[id]] links titled
                    - "raw": the file text exactly as stored
            """
            with timed_operation("chaos_get_note", note_id=note_id) as op:
                try:
                    view = self.note_service.get_note(str(note_id))
                    op["found"] = True
                    if format == "raw":
                        return view.content

                    note = view.note
                    result = f"# {note.title}\n"
                    result += f"ID: {note.id}\n"
                    result += f"File: {view.filename}\n"
                    if note.status:
                        result += f"Status: {note.status}\n"
                    if note.tags:
                        result += f"Tags: {', '.join(note.tags)}\n"
                    if note.project:
                        result += f"Project: {note.project}\n"
                    for key, value in note.extra.items():
                        result += f"{key}: {value}\n"
                    result += f"\n{view.resolved_body}\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_update_note")
        def chaos_update_note(
            note_id: str,
            status: Optional[str] = None,
            tags: Optional[str] = None,
            content: Optional[str] = None,
        ) -> str:
            """Update the status, tags and/or body of a note.

            Omitted arguments leave the field unchanged.

            Args:
                note_id: The ID of the note
                status: "building", "done" or "clear" (removes the status)
                tags: Comma-separated tags (lowercase, digits and hyphens,
                    max 20 chars each); an empty string clears all tags
                content: New body text, replacing the old body
            """
            with timed_operation("chaos_update_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(content=content)
                    tag_arg = UNSET
                    if tags is not None:
                        tag_arg = [t.strip() for t in tags.split(",") if t.strip()]
                    path = self.note_service.update_note(
                        str(note_id),
                        status=UNSET if status is None else status,
                        tags=tag_arg,
                        content=UNSET if content is None else content,
                    )
                    op["updated"] = True
                    return f"Note {note_id} updated: {path.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_rename_note")
        def chaos_rename_note(note_id: str, title: str) -> str:
            """Change the title of a note; its file is renamed to the new slug.
            Args:
                note_id: The ID of the note
                title: The new title
            """
            with timed_operation("chaos_rename_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(title=title)
                    path = self.note_service.rename_note(str(note_id), title)
                    op["renamed"] = True
                    return f"Note {note_id} renamed: {path.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_delete_note")
        def chaos_delete_note(note_id: str) -> str:
            """Delete a note.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("chaos_delete_note", note_id=note_id) as op:
                try:
                    path = self.note_service.delete_note(str(note_id))
                    op["deleted"] = True
                    return f"Note {note_id} deleted: {path.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_append_note")
        def chaos_append_note(note_id: str, text: str) -> str:
            """Append text to the end of a note body.
            Args:
                note_id: The ID of the note
                text: Text to append (separated from the body by a blank line)
            """
            with timed_operation("chaos_append_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(content=text)
                    path = self.note_service.append_to_note(str(note_id), text)
                    op["appended"] = True
                    return f"Appended to note {note_id}: {path.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_search_notes")
        def chaos_search_notes(query: str, ranked: bool = True) -> str:
            """Search notes by case-insensitive substring of title, body or tags.
            Args:
                query: Text to look for
                ranked: Put title matches first, newest first within each group
                    (default True); False returns filename order
            """
            with timed_operation("chaos_search_notes", query=query[:30]) as op:
                try:
                    hits = self.note_service.search_notes(query, ranked=ranked)
                    op["result_count"] = len(hits)
                    if not hits:
                        return f"No notes found matching '{query}'."
                    output = f"Found {len(hits)} matching notes:\n"
                    output += "\n".join(_format_hit(hit) for hit in hits)
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_list_notes")
        def chaos_list_notes(query: str = "", page: int = 1, limit: int = 20) -> str:
            """List notes one page at a time, newest first.
            Args:
                query: Optional search text (title matches first)
                page: 1-based page number (default 1)
                limit: Notes per page (default 20)
            """
            with timed_operation("chaos_list_notes", page=page) as op:
                try:
                    result = self.note_service.list_notes(query, page=page, limit=limit)
                    op["result_count"] = len(result.notes)
                    output = f"Page {result.page} ({len(result.notes)} of {result.total} notes)\n"
                    output += "\n".join(_format_hit(hit) for hit in result.notes)
                    if result.has_more:
                        output += f"\n\nMore notes available: page={result.page + 1}"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_validate_prd")
        def chaos_validate_prd(path: Optional[str] = None, document: Optional[str] = None) -> str:
            """Validate a PRD story document (prd.json).

            Checks story fields, unique ids, that dependencies exist and that
            the dependency graph has no cycle.

            Args:
                path: Path of a prd.json file
                document: The JSON text itself (used when path is not given)
            """
            with timed_operation("chaos_validate_prd") as op:
                try:
                    if path:
                        result = self.note_service.validate_prd(path)
                    elif document is not None:
                        try:
                            parsed = json.loads(document)
                        except json.JSONDecodeError as e:
                            return f"Error: document is not valid JSON: {e.msg}"
                        result = self.note_service.validate_prd(parsed)
                    else:
                        return "Error: provide either path or document"
                    op["valid"] = result.valid
                    return json.dumps(result.model_dump(), indent=2)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="chaos_status")
        def chaos_status() -> str:
            """Show store location, note count, git sync state and server metrics."""
            with timed_operation("chaos_status"):
                try:
                    status = self.note_service.get_status()
                    output = "# Chaos Status\n\n"
                    output += f"**Data directory:** {status['data_dir']}\n"
                    output += f"**Notes:** {status['note_count']}\n\n"

                    sync = status.get("sync")
                    output += "## Git Sync\n"
                    if sync is None:
                        output += "Disabled\n\n"
                    else:
                        output += f"**Enabled:** {'Yes' if sync['enabled'] else 'No'}\n"
                        output += f"**Repository:** {'Yes' if sync['is_repo'] else 'No'}\n"
                        output += f"**Commits:** {sync['commits']} | **Failures:** {sync['failures']}\n"
                        if sync.get("last_error"):
                            output += f"**Last error:** {sync['last_error']}\n"
                        output += "\n"

                    summary = metrics.get_summary()
                    output += "## Server Metrics\n"
                    output += f"**Uptime:** {summary['uptime_seconds']:.0f} seconds\n"
                    output += f"**Operations:** {summary['total_operations']}\n"
                    output += f"**Success Rate:** {summary['overall_success_rate']:.1%}\n"
                    output += f"**Errors:** {summary['total_errors']}\n"
                    for name, op in summary["operations"].items():
                        output += (
                            f"- {name}: {op['count']} calls, "
                            f"{op['avg_duration_ms']:.1f}ms avg, {op['error_count']} errors\n"
                        )
                    return output
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
