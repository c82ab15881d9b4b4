"""Header encoding and decoding for note files.

A note file is a ``---`` fenced header of ``key: value`` lines followed by
the body::

    ---
    id: 3k9x0c1q7m2b8n4v6z5wa
    title: Grocery run
    status: building
    tags: [errands, home]
    ---

    Milk, eggs.

Sequence values use a bracketed inline list; every other value is kept as
a literal string. The header is handled through python-frontmatter with a
custom handler so the canonical field order and inline lists survive a
rewrite unchanged (YAML would reflow both).
"""
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import frontmatter
from frontmatter.default_handlers import BaseHandler

from chaos_mcp.exceptions import MalformedHeaderError
from chaos_mcp.models.schema import Note

logger = logging.getLogger(__name__)

# Canonical header order; status/tags/project only when non-empty
_ORDERED_FIELDS = ("id", "title", "status", "tags", "project")
_OPTIONAL_FIELDS = ("status", "tags", "project")


def _needs_quotes(text: str) -> bool:
    """True when a bare string would not read back as the same string."""
    if text != text.strip():
        return True
    if text.startswith("[") and text.endswith("]"):
        return True
    return len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'"


def _unquote(raw: str) -> Optional[str]:
    """Strip one layer of surrounding quotes, or return None if unquoted."""
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        return raw[1:-1]
    return None


def format_value(value: Any, quote: bool = False) -> str:
    """Render one header value on a single line.

    With ``quote`` set, strings that would otherwise read back as a list
    or lose surrounding whitespace are wrapped in double quotes.
    """
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(v, quote) for v in value) + "]"
    if isinstance(value, Enum):
        value = value.value
    text = str(value)
    if "\n" in text or "\r" in text:
        text = " ".join(text.splitlines())
    if quote and _needs_quotes(text):
        return f'"{text}"'
    return text


def _parse_value(raw: str) -> Any:
    """Parse one header value.

    A quoted value is a string with one layer of quotes removed; ``[a, b]``
    becomes a list; anything else is kept as a string.
    """
    unquoted = _unquote(raw)
    if unquoted is not None:
        return unquoted
    if raw.startswith("[") and raw.endswith("]"):
        items = []
        for token in raw[1:-1].split(","):
            token = token.strip()
            if token:
                unquoted = _unquote(token)
                items.append(token if unquoted is None else unquoted)
        return items
    return raw


class InlineHeaderHandler(BaseHandler):
    """python-frontmatter handler for ``key: value`` headers with inline lists."""

    FM_BOUNDARY = re.compile(r"^-{3,}[ \t]*$", re.MULTILINE)
    START_DELIMITER = END_DELIMITER = "---"

    def load(self, fm: str, **kwargs: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for line in fm.splitlines():
            key, sep, raw = line.partition(":")
            key = key.strip()
            if not sep or not key:
                continue
            fields[key] = _parse_value(raw.strip())
        return fields

    def export(self, metadata: Dict[str, Any], **kwargs: Any) -> str:
        lines = []
        for key, value in metadata.items():
            rendered = format_value(value, quote=True)
            lines.append(f"{key}: {rendered}" if rendered else f"{key}:")
        return "\n".join(lines)


HEADER_HANDLER = InlineHeaderHandler()


def canonical_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Order header fields canonically and drop empty optional fields.

    ``id`` and ``title`` first, then ``status``, ``tags`` and ``project``
    when they have a value, then every other key in its original order.
    """
    ordered: Dict[str, Any] = {}
    for key in _ORDERED_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key in _OPTIONAL_FIELDS and (value is None or value == "" or value == []):
            continue
        ordered[key] = value
    for key, value in fields.items():
        if key not in _ORDERED_FIELDS:
            ordered[key] = value
    return ordered


def encode(fields: Dict[str, Any], body: str = "") -> str:
    """Encode header fields and body into note file text.

    Args:
        fields: Header mapping; known fields are reordered canonically.
        body: Body text, written verbatim after a blank line when non-empty.

    Returns:
        The file text, ending with a single newline.
    """
    post = frontmatter.Post(body or "", handler=HEADER_HANDLER)
    # Assigned after construction: header keys may collide with Post's own
    # parameter names ("content", "handler").
    post.metadata = canonical_fields(fields)
    return frontmatter.dumps(post, handler=HEADER_HANDLER) + "\n"


def decode(text: str) -> Tuple[Dict[str, Any], str]:
    """Decode note file text into header fields and trimmed body.

    Raises:
        MalformedHeaderError: If the opening or closing marker is missing.
            Callers should treat the whole text as body.
    """
    stripped = text.strip()
    if not HEADER_HANDLER.detect(stripped):
        raise MalformedHeaderError("opening header marker missing")
    if len(HEADER_HANDLER.FM_BOUNDARY.findall(stripped)) < 2:
        raise MalformedHeaderError("closing header marker missing")
    fields, body = frontmatter.parse(stripped, handler=HEADER_HANDLER)
    return fields, body.strip()


def decode_or_degrade(text: str) -> Tuple[Dict[str, Any], str, bool]:
    """Decode, falling back to a body-only read on a malformed header.

    Returns:
        ``(fields, body, ok)``; ``ok`` is False when the header could not be
        located, in which case fields is empty and body is the whole text.
    """
    try:
        fields, body = decode(text)
        return fields, body, True
    except MalformedHeaderError as e:
        logger.debug(f"Degraded header read: {e.message}")
        return {}, text.strip(), False


def split_filename(path: Path, extension: str = ".md") -> Tuple[str, str]:
    """Split a note filename into ``(id, slug)``.

    ``3k9x...-grocery-run.md`` -> ``("3k9x...", "grocery-run")``.
    """
    name = path.name
    if name.endswith(extension):
        name = name[: -len(extension)]
    note_id, _, slug = name.partition("-")
    return note_id, slug


def title_from_slug(slug: str) -> str:
    """Synthesize a display title from a filename slug."""
    return slug.replace("-", " ")


def parse_note(text: str, path: Optional[Path] = None, extension: str = ".md") -> Note:
    """Build a Note from file text.

    A malformed header degrades to a note whose id and title come from the
    filename and whose body is the whole text. Missing ``id``/``title``
    header fields fall back to the filename the same way.
    """
    fields, body, _ = decode_or_degrade(text)
    if path is not None:
        file_id, slug = split_filename(path, extension)
        fields = dict(fields)
        if not fields.get("id"):
            fields["id"] = file_id
        if not fields.get("title"):
            fields["title"] = title_from_slug(slug)
    return Note.from_header(fields, body, path=path)


def render_note(note: Note) -> str:
    """Encode a Note back into file text."""
    return encode(note.header_fields(), note.body)


def format_fields(fields: Dict[str, Any]) -> List[str]:
    """Render header fields as display lines (``key: value``, lists as ``[a, b]``)."""
    return [f"{key}: {format_value(value)}" for key, value in fields.items()]
