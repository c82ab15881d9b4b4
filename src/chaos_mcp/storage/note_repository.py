"""Repository for note storage and retrieval.

Each note is one file ``{id}-{slug}{ext}`` in the notes directory. The
file is the only source of truth: there is no index, lookups are a linear
probe of the directory listing by id prefix.
"""

import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from chaos_mcp.config import config
from chaos_mcp.exceptions import (
    DuplicateMatchError,
    ErrorCode,
    NoteNotFoundError,
    StorageError,
    ValidationError,
)
from chaos_mcp.models.schema import (
    ID_PATTERN,
    Note,
    NoteStatus,
    generate_id,
    is_valid_tag,
    slugify,
)
from chaos_mcp.storage.header_codec import (
    decode_or_degrade,
    encode,
    parse_note,
    split_filename,
    title_from_slug,
)

if TYPE_CHECKING:
    from chaos_mcp.services.git_sync_service import GitSyncService

logger = logging.getLogger(__name__)


class _Unset:
    """Marker type for an update field that was not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Passed (or defaulted) for update fields that should be left unchanged
UNSET: Any = _Unset()

# Status values that remove the status field
_CLEAR_STATUS = (None, "", "clear")


def _normalize_status(status: Any) -> Optional[str]:
    """Validate a requested status.

    Returns:
        The status to store, or None to clear it.

    Raises:
        ValidationError: If the value is not building, done or a clear value.
    """
    if isinstance(status, NoteStatus):
        return status.value
    if status in _CLEAR_STATUS:
        return None
    if status not in (NoteStatus.BUILDING.value, NoteStatus.DONE.value):
        raise ValidationError(
            f"invalid status '{status}' (must be 'building', 'done', or 'clear')",
            field="status",
            value=status,
            code=ErrorCode.INVALID_STATUS,
        )
    return status


def _normalize_tags(tags: Any) -> Optional[List[str]]:
    """Validate a requested tag list.

    Returns:
        The tags to store in caller order, or None to clear them.

    Raises:
        ValidationError: If any tag violates the tag pattern. Nothing is applied.
    """
    if tags is None:
        return None
    if isinstance(tags, str):
        raise ValidationError(
            "tags must be a list of strings", field="tags", value=tags,
            code=ErrorCode.TAG_INVALID,
        )
    tags = list(tags)
    if not tags:
        return None
    for tag in tags:
        if not is_valid_tag(tag):
            raise ValidationError(
                f"invalid tag '{tag}' (must be lowercase alphanumeric with hyphens, max 20 chars)",
                field="tags",
                value=tag,
                code=ErrorCode.TAG_INVALID,
            )
    return tags


def _require_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError(
            "title is required", field="title", value=title,
            code=ErrorCode.NOTE_TITLE_REQUIRED,
        )
    return title.strip()


class NoteRepository:
    """File-backed store for notes addressed by id.

    Mutations are applied to the local file first; the optional sync
    service is then told about the change. Sync failures never surface
    from these methods.
    """

    def __init__(
        self,
        notes_dir: Optional[Path] = None,
        assets_dir: Optional[Path] = None,
        sync: Optional["GitSyncService"] = None,
        extension: Optional[str] = None,
    ):
        """Initialize the repository.

        Args:
            notes_dir: Directory holding the note files. If None, uses
                config.notes_dir resolved against config.data_dir.
            assets_dir: Sibling directory for attachments; staged together
                with the notes directory on rename and delete.
            sync: Advisory git sync service notified after each mutation.
            extension: Note file extension (defaults to config.note_extension).
        """
        self.notes_dir = (
            config.get_absolute_path(Path(notes_dir))
            if notes_dir
            else config.get_absolute_path(config.notes_dir)
        )
        self.assets_dir = (
            config.get_absolute_path(Path(assets_dir))
            if assets_dir
            else config.get_absolute_path(config.assets_dir)
        )
        self.extension = extension or config.note_extension
        self.sync = sync
        self.notes_dir.mkdir(parents=True, exist_ok=True)
        # Guards the directory probe + write sequence within this process
        self.file_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _validate_id(self, note_id: Any) -> str:
        if not isinstance(note_id, str) or not ID_PATTERN.match(note_id):
            raise ValidationError(
                f"invalid note id '{note_id}'",
                field="id",
                value=note_id,
                code=ErrorCode.INVALID_NOTE_ID,
            )
        return note_id

    def list_note_paths(self) -> List[Path]:
        """Return every note file in the notes directory, sorted by name."""
        try:
            names = os.listdir(self.notes_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(
                "Failed to list notes directory",
                operation="list",
                path=str(self.notes_dir),
                original_error=e,
            ) from e
        return [
            self.notes_dir / name
            for name in sorted(names)
            if name.endswith(self.extension) and (self.notes_dir / name).is_file()
        ]

    def find(self, note_id: str) -> Path:
        """Locate the file for a note id.

        Args:
            note_id: The note id (``[a-z0-9]+``).

        Returns:
            Path of the file named ``{id}-...{ext}``. If several files
            match, the lexicographically first is returned and the
            duplicate is logged.

        Raises:
            ValidationError: If the id contains characters outside ``[a-z0-9]``.
            NoteNotFoundError: If no file matches.
        """
        self._validate_id(note_id)
        prefix = f"{note_id}-"
        matches = [p for p in self.list_note_paths() if p.name.startswith(prefix)]
        if not matches:
            raise NoteNotFoundError(note_id)
        if len(matches) > 1:
            duplicate = DuplicateMatchError(note_id, [p.name for p in matches])
            logger.warning(f"{duplicate}; using {matches[0].name}")
        return matches[0]

    def exists(self, note_id: str) -> bool:
        """Return True if a file matches the id."""
        try:
            self.find(note_id)
            return True
        except (NoteNotFoundError, ValidationError):
            return False

    def _read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise StorageError(
                "Failed to read note",
                operation="read",
                path=str(path),
                original_error=e,
            ) from e

    def _write_text(self, path: Path, text: str, operation: str) -> None:
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise StorageError(
                f"Failed to write note {path.name}",
                operation=operation,
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def get(self, note_id: str) -> Note:
        """Read a note by id.

        A file whose header cannot be decoded is still returned: id and
        title come from the filename and the body is the whole text.

        Raises:
            NoteNotFoundError: If no file matches.
            StorageError: If the file cannot be read.
        """
        path = self.find(note_id)
        return parse_note(self._read_text(path), path=path, extension=self.extension)

    def read_raw(self, note_id: str) -> str:
        """Return the untouched file text of a note."""
        return self.read_file(note_id)[1]

    def read_file(self, note_id: str) -> Tuple[Path, str]:
        """Resolve a note once and return its path with its untouched text."""
        path = self.find(note_id)
        return path, self._read_text(path)

    def _load_fields(self, path: Path) -> Tuple[Dict[str, Any], str]:
        """Read the header of a file for rewriting, repairing a malformed one."""
        fields, body, ok = decode_or_degrade(self._read_text(path))
        if not ok:
            file_id, slug = split_filename(path, self.extension)
            logger.debug(f"Rewriting malformed header of {path.name}")
            fields = {"id": file_id, "title": title_from_slug(slug)}
        return dict(fields), body

    def _slug_of(self, path: Path) -> str:
        return split_filename(path, self.extension)[1]

    def _notify(self, paths: Sequence[Path], message: str, stage_all: bool = False) -> None:
        if self.sync is None:
            return
        self.sync.record(list(paths), message, stage_all=stage_all)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, title: str) -> Note:
        """Create a new, empty note.

        Args:
            title: Title of the note; its slug names the file.

        Returns:
            The created note (with ``id`` and ``path`` set).

        Raises:
            ValidationError: If the title is empty.
            StorageError: If the file cannot be written.
        """
        title = _require_title(title)
        note_id = generate_id()
        slug = slugify(title)
        path = self.notes_dir / f"{note_id}-{slug}{self.extension}"
        text = encode({"id": note_id, "title": title}, "")

        try:
            with self.file_lock:
                # Exclusive create: an existing file is never overwritten
                with open(path, "x", encoding="utf-8") as f:
                    f.write(text)
        except OSError as e:
            raise StorageError(
                f"Failed to write note {note_id}",
                operation="create",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.info(f"Created note {note_id}-{slug}")
        self._notify([path], f"created note {note_id}-{slug}")
        return Note(id=note_id, title=title, path=path)

    def update(
        self,
        note_id: str,
        status: Any = UNSET,
        tags: Any = UNSET,
        content: Any = UNSET,
    ) -> Path:
        """Update status, tags and/or body of a note in place.

        Args:
            note_id: Id of the note.
            status: UNSET leaves it; None, "" or "clear" removes it;
                otherwise "building" or "done".
            tags: UNSET leaves them; None or an empty list clears them;
                otherwise every tag must match ``^[a-z0-9-]{1,20}$``.
            content: UNSET leaves the body; otherwise replaces it verbatim.

        Returns:
            Path of the rewritten file.

        Raises:
            ValidationError: On an invalid status or tag. Nothing is written.
            NoteNotFoundError: If no file matches.
            StorageError: If the file cannot be read or written.
        """
        # Validate every requested change before touching the file
        new_status = UNSET if status is UNSET else _normalize_status(status)
        new_tags = UNSET if tags is UNSET else _normalize_tags(tags)
        if content is not UNSET and content is not None and not isinstance(content, str):
            raise ValidationError("content must be a string", field="content")

        with self.file_lock:
            path = self.find(note_id)
            fields, body = self._load_fields(path)

            if new_status is not UNSET:
                fields.pop("status", None)
                if new_status is not None:
                    fields["status"] = new_status
            if new_tags is not UNSET:
                fields.pop("tags", None)
                if new_tags is not None:
                    fields["tags"] = new_tags
            if content is not UNSET:
                body = content or ""

            self._write_text(path, encode(fields, body), "update")

        slug = self._slug_of(path)
        logger.info(f"Updated note {note_id}-{slug}")
        self._notify([path], f"updated note {note_id}-{slug}")
        return path

    def append(self, note_id: str, text: str) -> Path:
        """Append text to the body of a note.

        The appended text is separated from an existing body by a blank
        line. Used to attach asset references to a note.

        Returns:
            Path of the rewritten file.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("text to append is required", field="text")

        with self.file_lock:
            path = self.find(note_id)
            fields, body = self._load_fields(path)
            body = f"{body}\n\n{text.strip()}" if body else text.strip()
            self._write_text(path, encode(fields, body), "append")

        slug = self._slug_of(path)
        logger.info(f"Appended to note {note_id}-{slug}")
        self._notify([path], f"appended to note {note_id}-{slug}")
        return path

    def rename(self, note_id: str, new_title: str) -> Path:
        """Change the title of a note and rename its file to match.

        The id, both in the filename and in the header, never changes.
        The file is only moved when the computed filename differs.

        Returns:
            Path of the note after the rename.

        Raises:
            ValidationError: If the new title is empty.
            NoteNotFoundError: If no file matches.
            StorageError: If the file cannot be written or moved.
        """
        new_title = _require_title(new_title)

        with self.file_lock:
            old_path = self.find(note_id)
            fields, body = self._load_fields(old_path)
            fields["title"] = new_title
            self._write_text(old_path, encode(fields, body), "rename")

            new_slug = slugify(new_title)
            new_path = self.notes_dir / f"{note_id}-{new_slug}{self.extension}"
            if new_path != old_path:
                try:
                    os.replace(old_path, new_path)
                except OSError as e:
                    raise StorageError(
                        f"Failed to rename note {note_id}",
                        operation="rename",
                        path=str(old_path),
                        code=ErrorCode.STORAGE_RENAME_FAILED,
                        original_error=e,
                    ) from e

        logger.info(f"Renamed note {note_id} to {new_slug}")
        self._notify(
            [self.notes_dir, self.assets_dir],
            f"renamed note {note_id} to {new_slug}",
            stage_all=True,
        )
        return new_path

    def delete(self, note_id: str) -> Path:
        """Remove the file of a note.

        Returns:
            The removed path.

        Raises:
            NoteNotFoundError: If no file matches.
            StorageError: If the file cannot be removed.
        """
        with self.file_lock:
            path = self.find(note_id)
            try:
                os.remove(path)
            except OSError as e:
                raise StorageError(
                    f"Failed to delete note {note_id}",
                    operation="delete",
                    path=str(path),
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e

        slug = self._slug_of(path)
        logger.info(f"Deleted note {note_id}-{slug}")
        self._notify(
            [self.notes_dir, self.assets_dir],
            f"deleted note {note_id}-{slug}",
            stage_all=True,
        )
        return path

    def count_notes(self) -> int:
        """Return the number of note files."""
        return len(self.list_note_paths())

