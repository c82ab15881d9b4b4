"""Data models for chaos notes and PRD stories."""

import re
import secrets
import string
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Alphabet and length of generated note ids (lowercase base-36)
ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 21

# Ids are matched as a filename prefix, so only [a-z0-9] is accepted
ID_PATTERN = re.compile(r"^[a-z0-9]+$")

# Tags: lowercase alphanumeric with hyphens, max 20 chars
TAG_PATTERN = re.compile(r"^[a-z0-9-]{1,20}$")

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")

# Header keys with a fixed position in the encoded header
KNOWN_FIELDS = ("id", "title", "status", "tags", "project")


def generate_id() -> str:
    """Generate a new note id.

    Returns:
        A 21-character string over ``[a-z0-9]`` drawn from the
        operating system's cryptographically strong random source.
    """
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def slugify(title: str) -> str:
    """Derive the filename slug for a title.

    Lowercases the title, collapses every run of characters outside
    ``[a-z0-9]`` into a single hyphen and strips leading/trailing hyphens.

    Example:
        slugify("Hello, World!")  # -> "hello-world"
    """
    return _SLUG_SEPARATORS.sub("-", title.lower()).strip("-")


def is_valid_tag(tag: Any) -> bool:
    """Check a single tag against TAG_PATTERN."""
    return isinstance(tag, str) and TAG_PATTERN.match(tag) is not None


class NoteStatus(str, Enum):
    """Workflow status of a note. Absent means no status."""

    BUILDING = "building"
    DONE = "done"


class StoryStatus(str, Enum):
    """Status of a PRD story."""

    PENDING = "pending"
    DONE = "done"


def _coerce_tags(value: Any) -> List[str]:
    """Turn a decoded ``tags`` value into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, (list, tuple)):
        return [str(t) for t in value]
    return [str(value)]


class Note(BaseModel):
    """A note as read from disk.

    This is a read model: it reflects whatever the file holds, so tags and
    status are not re-validated here. Validation of new values happens in
    NoteRepository.update.
    """

    id: str = Field(..., description="Unique 21-character id of the note")
    title: str = Field(..., description="Title of the note")
    status: Optional[str] = Field(default=None, description="building, done or absent")
    tags: List[str] = Field(default_factory=list, description="Ordered tag list")
    project: Optional[str] = Field(
        default=None, description="Relative path to a linked project directory"
    )
    extra: Dict[str, Any] = Field(
        default_factory=dict, description="Unknown header fields, preserved verbatim"
    )
    body: str = Field(default="", description="Body text (trimmed)")
    path: Optional[Path] = Field(default=None, description="File backing the note")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> List[str]:
        """Accept a comma-separated string or a sequence."""
        return _coerce_tags(v)

    @field_validator("status", "project", mode="before")
    @classmethod
    def empty_to_none(cls, v: Any) -> Optional[str]:
        """Empty status/project values mean absent."""
        if v is None or v == "":
            return None
        if isinstance(v, Enum):
            return v.value
        return str(v)

    @classmethod
    def from_header(
        cls, fields: Dict[str, Any], body: str, path: Optional[Path] = None
    ) -> "Note":
        """Build a note from decoded header fields and body."""
        extra = {k: v for k, v in fields.items() if k not in KNOWN_FIELDS}
        return cls(
            id=str(fields.get("id", "")),
            title=str(fields.get("title", "")),
            status=fields.get("status"),
            tags=fields.get("tags"),
            project=fields.get("project"),
            extra=extra,
            body=body,
            path=path,
        )

    def header_fields(self) -> Dict[str, Any]:
        """Return the header mapping in canonical order.

        Known fields come first (id, title, status, tags, project), then
        the extra fields in their original order.
        """
        fields: Dict[str, Any] = {"id": self.id, "title": self.title}
        if self.status:
            fields["status"] = self.status
        if self.tags:
            fields["tags"] = list(self.tags)
        if self.project:
            fields["project"] = self.project
        for key, value in self.extra.items():
            if key not in fields:
                fields[key] = value
        return fields

    @property
    def slug(self) -> str:
        """Slug computed from the current title (may differ from the filename)."""
        return slugify(self.title)


class NoteView(BaseModel):
    """A note prepared for display: raw file text plus the link-resolved body."""

    note: Note
    filename: str
    content: str = Field(..., description="Raw file text, for editing")
    resolved_body: str = Field(..., description="Body with [[id]] links titled")


class SearchHit(BaseModel):
    """A note matched by a search."""

    id: str
    title: str
    status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    filename: str
    path: str
    mtime: float = Field(default=0.0, description="File modification time (epoch)")


class NotePage(BaseModel):
    """One page of a note listing."""

    notes: List[SearchHit]
    total: int
    page: int
    limit: int
    has_more: bool


class Story(BaseModel):
    """A PRD story (work item) in a dependency graph."""

    id: int
    title: str
    description: str = ""
    acceptance_criteria: List[str] = Field(default_factory=list, alias="acceptanceCriteria")
    depends_on: List[int] = Field(default_factory=list, alias="dependsOn")
    status: StoryStatus = StoryStatus.PENDING

    model_config = ConfigDict(populate_by_name=True)


class PrdValidation(BaseModel):
    """Result of validating a PRD document.

    ``stories`` echoes the input stories in input order, projected onto
    the known story keys, whether or not the document is valid.
    """

    valid: bool
    stories: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    def to_stories(self) -> List[Story]:
        """Return typed stories. Only meaningful for a valid document."""
        return [Story.model_validate(s) for s in self.stories]


class BacklogEntry(BaseModel):
    """A pending story together with the stories still blocking it."""

    position: int = Field(..., description="1-based position in the full story list")
    story: Story
    blocked_by: List[int] = Field(
        default_factory=list, description="1-based positions of unfinished dependencies"
    )

    @property
    def blocked(self) -> bool:
        return bool(self.blocked_by)


class Backlog(BaseModel):
    """Pending/done split of a validated PRD."""

    pending: List[BacklogEntry] = Field(default_factory=list)
    done: List[Story] = Field(default_factory=list)
