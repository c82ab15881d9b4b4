"""Service layer for chaos note operations.

Composes the note repository, search and the advisory git sync into the
operations the CLI and the MCP server expose.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from chaos_mcp.config import ChaosConfig, config as default_config
from chaos_mcp.exceptions import StorageError
from chaos_mcp.models.schema import (
    ID_LENGTH,
    Note,
    NotePage,
    NoteView,
    PrdValidation,
    SearchHit,
)
from chaos_mcp.observability import traced
from chaos_mcp.services.git_sync_service import GitSyncService
from chaos_mcp.services.prd_validator import validate_prd, validate_prd_file
from chaos_mcp.services.search_service import SearchService
from chaos_mcp.storage.header_codec import decode_or_degrade, parse_note
from chaos_mcp.storage.header_codec import format_fields as _format_fields
from chaos_mcp.storage.note_repository import UNSET, NoteRepository

logger = logging.getLogger(__name__)

# [[id]] or [[id|custom title]]
LINK_PATTERN = re.compile(r"\[\[([a-z0-9]{%d})(?:\|([^\]]+))?\]\]" % ID_LENGTH)


class NoteService:
    """Service for managing chaos notes."""

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        sync: Optional[GitSyncService] = None,
        settings: Optional[ChaosConfig] = None,
    ):
        """Initialize the service.

        Args:
            repository: Note storage backend. Created from settings if None.
            sync: Advisory git sync. Created from settings if None and
                no repository is given; a given repository keeps its own.
            settings: Configuration (defaults to the global config).
        """
        self.settings = settings or default_config
        if repository is not None:
            self.repository = repository
            self.sync = sync if sync is not None else repository.sync
        else:
            self.sync = sync or GitSyncService(
                self.settings.data_dir,
                enabled=self.settings.git_sync_enabled,
                push=self.settings.git_push_enabled,
                background=self.settings.sync_in_background,
            )
            self.repository = NoteRepository(
                notes_dir=self.settings.get_notes_dir(),
                assets_dir=self.settings.get_assets_dir(),
                sync=self.sync,
                extension=self.settings.note_extension,
            )
        self.search_service = SearchService(self.repository)

    def initialize(self) -> None:
        """Prepare the data directory and pull the latest history."""
        self.settings.get_notes_dir()
        self.settings.get_assets_dir()
        if self.sync is not None and self.settings.git_pull_on_start:
            self.sync.pull_latest()

    def shutdown(self) -> None:
        """Wait for queued sync jobs and stop the sync worker."""
        if self.sync is not None:
            self.sync.shutdown()

    # =========================================================================
    # Note CRUD
    # =========================================================================

    @traced("new_note")
    def create_note(self, title: str) -> Note:
        """Create an empty note and return it."""
        return self.repository.create(title)

    def get_note(self, note_id: str, resolve: bool = True) -> NoteView:
        """Read a note for display.

        Args:
            note_id: Id of the note.
            resolve: Rewrite ``[[id]]`` links in the body with note titles.
        """
        path, content = self.repository.read_file(note_id)
        note = parse_note(content, path=path, extension=self.repository.extension)
        body = self.resolve_links(note.body) if resolve else note.body
        return NoteView(note=note, filename=path.name, content=content, resolved_body=body)

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        status: Any = UNSET,
        tags: Any = UNSET,
        content: Any = UNSET,
    ) -> Path:
        """Update status, tags and/or body. See NoteRepository.update."""
        return self.repository.update(note_id, status=status, tags=tags, content=content)

    @traced("rename_note")
    def rename_note(self, note_id: str, new_title: str) -> Path:
        """Retitle a note and move its file to the new slug."""
        return self.repository.rename(note_id, new_title)

    @traced("delete_note")
    def delete_note(self, note_id: str) -> Path:
        """Delete a note's file."""
        return self.repository.delete(note_id)

    @traced("append_note")
    def append_to_note(self, note_id: str, text: str) -> Path:
        """Append text (for example an asset reference) to a note body."""
        return self.repository.append(note_id, text)

    def note_path(self, note_id: str) -> Path:
        """Locate the file of a note."""
        return self.repository.find(note_id)

    # =========================================================================
    # Search
    # =========================================================================

    @traced("search_notes")
    def search_notes(self, query: str, ranked: bool = False) -> List[SearchHit]:
        """Substring search over title, body and tags."""
        if ranked:
            return self.search_service.search_ranked(query)
        return self.search_service.search(query)

    def list_notes(self, query: str = "", page: int = 1, limit: int = 20) -> NotePage:
        """Return one page of notes (ranked when a query is given)."""
        return self.search_service.list_notes(query, page=page, limit=limit)

    # =========================================================================
    # Links
    # =========================================================================

    def _title_index(self) -> Dict[str, str]:
        """Map note id to title for every readable note."""
        return {hit.id: hit.title for hit in self.search_service.search("")}

    def resolve_links(self, body: str, titles: Optional[Dict[str, str]] = None) -> str:
        """Give bare ``[[id]]`` links the title of the note they point to.

        ``[[id|custom]]`` links and links to unknown ids are left as written.

        Args:
            body: Text to rewrite.
            titles: id -> title map; built from a directory scan if None.
        """
        if "[[" not in body:
            return body
        if titles is None:
            titles = self._title_index()

        def _replace(match: "re.Match[str]") -> str:
            note_id, custom = match.group(1), match.group(2)
            if custom is not None or note_id not in titles:
                return match.group(0)
            return f"[[{note_id}|{titles[note_id]}]]"

        return LINK_PATTERN.sub(_replace, body)

    # =========================================================================
    # Files and PRDs
    # =========================================================================

    def parse_file(self, path: Union[str, Path]) -> Tuple[Dict[str, Any], str]:
        """Decode any note-formatted file.

        A file without a header yields no fields and its whole text as body.

        Raises:
            StorageError: If the file cannot be read.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise StorageError(
                f"Failed to read {path.name}",
                operation="parse",
                path=str(path),
                original_error=e,
            ) from e
        fields, body, _ = decode_or_degrade(text)
        return fields, body

    @staticmethod
    def format_fields(fields: Dict[str, Any]) -> List[str]:
        """Render fields as ``key: value`` lines, lists as ``[a, b]``."""
        return _format_fields(fields)

    @traced("validate_prd")
    def validate_prd(self, source: Union[str, Path, Dict[str, Any]]) -> PrdValidation:
        """Validate a PRD given as a parsed document or a file path."""
        if isinstance(source, (str, Path)):
            return validate_prd_file(source)
        return validate_prd(source)

    def get_status(self) -> Dict[str, Any]:
        """Report store location, note count and sync state."""
        return {
            "data_dir": str(self.settings.data_dir),
            "notes_dir": str(self.repository.notes_dir),
            "note_count": self.repository.count_notes(),
            "sync": self.sync.get_status() if self.sync is not None else None,
        }
