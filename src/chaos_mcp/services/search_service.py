"""Service for searching notes by substring."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from chaos_mcp.exceptions import ErrorCode, ValidationError
from chaos_mcp.models.schema import NotePage, SearchHit
from chaos_mcp.storage.header_codec import decode_or_degrade, split_filename, title_from_slug
from chaos_mcp.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


@dataclass
class ScannedNote:
    """One note file as seen by a scan, with its searchable text."""

    hit: SearchHit
    title_text: str
    searchable: str


class SearchService:
    """Full-scan substring search over the notes directory.

    Every call reads every note file; there is no index to keep in sync
    with edits made outside the store.
    """

    def __init__(self, repository: Optional[NoteRepository] = None):
        """Initialize the search service.

        Args:
            repository: Note repository whose directory is scanned.
        """
        self.repository = repository or NoteRepository()

    def _scan_file(self, path: Path) -> Optional[ScannedNote]:
        """Read one note file. Returns None if it cannot be read."""
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
            mtime = path.stat().st_mtime
        except OSError as e:
            logger.warning(f"Skipping unreadable note file {path.name}: {e}")
            return None

        file_id, slug = split_filename(path, self.repository.extension)
        fields, body, ok = decode_or_degrade(text)

        if not ok:
            # Malformed header: search the raw text so the file is never dropped
            title = title_from_slug(slug)
            hit = SearchHit(
                id=file_id,
                title=title,
                filename=path.name,
                path=str(path),
                mtime=mtime,
            )
            return ScannedNote(hit=hit, title_text=title.lower(), searchable=text.lower())

        title = str(fields.get("title") or title_from_slug(slug))
        raw_tags = fields.get("tags") or []
        tags = [str(t) for t in raw_tags] if isinstance(raw_tags, list) else [str(raw_tags)]
        status = fields.get("status") or None
        hit = SearchHit(
            id=str(fields.get("id") or file_id),
            title=title,
            status=str(status) if status else None,
            tags=tags,
            filename=path.name,
            path=str(path),
            mtime=mtime,
        )
        searchable = " ".join([title, body, *tags]).lower()
        return ScannedNote(hit=hit, title_text=title.lower(), searchable=searchable)

    def scan(self) -> List[ScannedNote]:
        """Read every note file in filename order."""
        scanned = []
        for path in self.repository.list_note_paths():
            note = self._scan_file(path)
            if note is not None:
                scanned.append(note)
        return scanned

    def _matching(self, query: str) -> List[ScannedNote]:
        q = (query or "").lower()
        return [note for note in self.scan() if q in note.searchable]

    def search(self, query: str) -> List[SearchHit]:
        """Find notes whose title, body or tags contain the query.

        Matching is a case-insensitive substring test. Results come back in
        directory-scan (filename) order. An empty query matches every note.
        """
        return [note.hit for note in self._matching(query)]

    def search_ranked(self, query: str) -> List[SearchHit]:
        """Like search, with title matches first.

        Within each tier (title match, then body/tag match) notes are
        ordered by modification time, newest first.
        """
        q = (query or "").lower()
        matches = self._matching(query)
        matches.sort(
            key=lambda note: (0 if q in note.title_text else 1, -note.hit.mtime)
        )
        return [note.hit for note in matches]

    def list_notes(self, query: str = "", page: int = 1, limit: int = 20) -> NotePage:
        """Return one page of notes.

        Args:
            query: Optional search text. With a query the page is taken from
                the ranked results; without one every note is listed,
                newest first.
            page: 1-based page number.
            limit: Page size.

        Raises:
            ValidationError: If page or limit is below 1.
        """
        if page < 1:
            raise ValidationError(
                "page must be >= 1", field="page", value=page,
                code=ErrorCode.INVALID_PAGINATION,
            )
        if limit < 1:
            raise ValidationError(
                "limit must be >= 1", field="limit", value=limit,
                code=ErrorCode.INVALID_PAGINATION,
            )

        if query and query.strip():
            hits = self.search_ranked(query.strip())
        else:
            hits = [note.hit for note in self.scan()]
            hits.sort(key=lambda hit: hit.mtime, reverse=True)

        total = len(hits)
        start = (page - 1) * limit
        return NotePage(
            notes=hits[start:start + limit],
            total=total,
            page=page,
            limit=limit,
            has_more=start + limit < total,
        )
