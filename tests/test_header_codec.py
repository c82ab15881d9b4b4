"""Tests for the note header codec."""
from pathlib import Path

import pytest

from chaos_mcp.exceptions import MalformedHeaderError
from chaos_mcp.models.schema import Note, NoteStatus
from chaos_mcp.storage.header_codec import (
    canonical_fields,
    decode,
    decode_or_degrade,
    encode,
    format_fields,
    format_value,
    parse_note,
    render_note,
    split_filename,
    title_from_slug,
)

NOTE_ID = "abc123def456ghi789jkl"


class TestEncode:
    """Tests for encoding header fields and body."""

    def test_encode_canonical_order(self):
        """Known fields come first, extras keep their order."""
        fields = {
            "custom": "x",
            "tags": ["a", "b"],
            "title": "Grocery run",
            "zeta": "last",
            "status": "building",
            "id": NOTE_ID,
        }
        text = encode(fields, "Milk, eggs.")
        assert text == (
            "---\n"
            f"id: {NOTE_ID}\n"
            "title: Grocery run\n"
            "status: building\n"
            "tags: [a, b]\n"
            "custom: x\n"
            "zeta: last\n"
            "---\n"
            "\n"
            "Milk, eggs.\n"
        )

    def test_encode_empty_body(self):
        """A note without body ends right after the closing marker."""
        assert encode({"id": NOTE_ID, "title": "T"}) == f"---\nid: {NOTE_ID}\ntitle: T\n---\n"

    def test_encode_omits_empty_optional_fields(self):
        """Empty status, tags and project are not written."""
        text = encode(
            {"id": NOTE_ID, "title": "T", "status": None, "tags": [], "project": ""}
        )
        assert "status" not in text
        assert "tags" not in text
        assert "project" not in text

    def test_encode_keeps_empty_unknown_fields(self):
        """Unknown fields are written even when empty."""
        text = encode({"id": NOTE_ID, "title": "T", "custom": ""})
        assert "\ncustom:\n" in text

    def test_encode_collapses_newlines_in_values(self):
        """A header value never spans lines."""
        text = encode({"id": NOTE_ID, "title": "two\nlines"})
        assert "title: two lines\n" in text

    def test_encode_quotes_bracketed_string(self):
        """A string that looks like an inline list is written quoted."""
        text = encode({"id": NOTE_ID, "title": "[draft]", "note": "[a, b]"})
        assert 'title: "[draft]"\n' in text
        assert 'note: "[a, b]"\n' in text

    def test_encode_quotes_surrounding_whitespace(self):
        text = encode({"id": NOTE_ID, "title": " padded "})
        assert 'title: " padded "\n' in text

    def test_encode_list_unquoted(self):
        text = encode({"id": NOTE_ID, "title": "T", "tags": ["a", "b"]})
        assert "tags: [a, b]\n" in text

    def test_encode_enum_value(self):
        """Enum members are written by value."""
        text = encode({"id": NOTE_ID, "title": "T", "status": NoteStatus.DONE})
        assert "status: done\n" in text

    def test_encode_field_named_content(self):
        """Header keys may shadow Post constructor arguments."""
        text = encode({"id": NOTE_ID, "title": "T", "content": "meta"}, "Body")
        fields, body = decode(text)
        assert fields["content"] == "meta"
        assert body == "Body"


class TestDecode:
    """Tests for decoding note text."""

    def test_decode_basic(self):
        """Fields and trimmed body are returned."""
        text = f"---\nid: {NOTE_ID}\ntitle: Hello\n---\n\n  Body text  \n\n"
        fields, body = decode(text)
        assert fields == {"id": NOTE_ID, "title": "Hello"}
        assert body == "Body text"

    def test_decode_inline_list(self):
        """Bracketed values become lists of trimmed, non-empty tokens."""
        fields, _ = decode("---\ntags: [ a , , b ]\n---\n")
        assert fields["tags"] == ["a", "b"]

    def test_decode_empty_list(self):
        fields, _ = decode("---\ntags: []\n---\n")
        assert fields["tags"] == []

    def test_decode_scalars_stay_strings(self):
        """Numbers and booleans are not coerced."""
        fields, _ = decode("---\nid: 007\nflag: true\n---\n")
        assert fields["id"] == "007"
        assert fields["flag"] == "true"

    def test_decode_value_with_colon(self):
        """Only the first colon separates key and value."""
        fields, _ = decode("---\ntitle: Meeting: 10:30\n---\n")
        assert fields["title"] == "Meeting: 10:30"

    def test_decode_skips_lines_without_colon(self):
        fields, _ = decode("---\nid: x\njust text\n---\n")
        assert fields == {"id": "x"}

    def test_decode_preserves_field_order(self):
        fields, _ = decode("---\nzeta: 1\nalpha: 2\nid: x\n---\n")
        assert list(fields) == ["zeta", "alpha", "id"]

    def test_decode_body_with_marker_line(self):
        """A --- line inside the body is body text."""
        text = encode({"id": NOTE_ID, "title": "T"}, "above\n---\nbelow")
        _, body = decode(text)
        assert body == "above\n---\nbelow"

    def test_decode_leading_whitespace(self):
        """Whitespace before the opening marker is ignored."""
        fields, body = decode("\n\n---\nid: x\n---\nbody")
        assert fields == {"id": "x"}
        assert body == "body"

    def test_decode_missing_opening_marker(self):
        with pytest.raises(MalformedHeaderError) as exc_info:
            decode("id: x\ntitle: T\n\nbody")
        assert "opening" in exc_info.value.message

    def test_decode_missing_closing_marker(self):
        with pytest.raises(MalformedHeaderError) as exc_info:
            decode("---\nid: x\ntitle: T\n")
        assert "closing" in exc_info.value.message

    def test_decode_quoted_value(self):
        """One layer of surrounding quotes is removed and the rest kept as text."""
        fields, _ = decode('---\ntitle: "[draft]"\nnote: \' padded \'\n---\n')
        assert fields == {"title": "[draft]", "note": " padded "}

    def test_decode_quoted_list_items(self):
        fields, _ = decode('---\nrefs: ["a", b]\n---\n')
        assert fields["refs"] == ["a", "b"]

    def test_decode_or_degrade_malformed(self):
        """A malformed header degrades to a body-only read."""
        fields, body, ok = decode_or_degrade("  no header here \n")
        assert fields == {}
        assert body == "no header here"
        assert ok is False

    def test_decode_or_degrade_ok(self):
        fields, body, ok = decode_or_degrade("---\nid: x\n---\nbody")
        assert ok is True
        assert fields == {"id": "x"}
        assert body == "body"

    @pytest.mark.parametrize(
        "fields,body",
        [
            ({"id": NOTE_ID, "title": "Plain"}, ""),
            ({"id": NOTE_ID, "title": "Tagged", "tags": ["one", "two-2"]}, "Body"),
            (
                {"id": NOTE_ID, "title": "All", "status": "done", "project": "../proj", "x": "y"},
                "# Heading\n\n- item",
            ),
            ({"id": NOTE_ID, "title": "[draft]"}, ""),
            ({"id": NOTE_ID, "title": "T", "note": "[a, b]"}, "Body"),
            ({"id": NOTE_ID, "title": " padded ", "quoted": '"already"'}, ""),
            ({"id": NOTE_ID, "title": "T", "refs": ["[x]", "y"]}, ""),
        ],
    )
    def test_round_trip(self, fields, body):
        """Encoding then decoding returns the canonical fields and the body."""
        decoded_fields, decoded_body = decode(encode(fields, body))
        assert decoded_fields == canonical_fields(fields)
        assert decoded_body == body


class TestFilenames:
    """Tests for filename helpers."""

    def test_split_filename(self):
        assert split_filename(Path(f"/n/{NOTE_ID}-grocery-run.md")) == (NOTE_ID, "grocery-run")

    def test_split_filename_empty_slug(self):
        assert split_filename(Path(f"{NOTE_ID}-.md")) == (NOTE_ID, "")

    def test_split_filename_other_extension(self):
        assert split_filename(Path("abc-note.txt"), ".txt") == ("abc", "note")

    def test_title_from_slug(self):
        assert title_from_slug("grocery-run") == "grocery run"


class TestParseNote:
    """Tests for building Note objects from text."""

    def test_parse_note(self):
        text = encode(
            {"id": NOTE_ID, "title": "T", "status": "done", "tags": ["a"], "extra1": "v"},
            "Body",
        )
        note = parse_note(text)
        assert note.id == NOTE_ID
        assert note.title == "T"
        assert note.status == "done"
        assert note.tags == ["a"]
        assert note.extra == {"extra1": "v"}
        assert note.body == "Body"

    def test_parse_note_malformed_uses_filename(self):
        """A malformed file gets id and title from its filename."""
        path = Path(f"/notes/{NOTE_ID}-lost-header.md")
        note = parse_note("just some text", path=path)
        assert note.id == NOTE_ID
        assert note.title == "lost header"
        assert note.body == "just some text"
        assert note.path == path

    def test_parse_note_missing_title(self):
        path = Path(f"/notes/{NOTE_ID}-from-file.md")
        note = parse_note(f"---\nid: {NOTE_ID}\n---\n", path=path)
        assert note.title == "from file"

    def test_render_note(self):
        note = Note(id=NOTE_ID, title="T", tags=["x"], extra={"k": "v"}, body="B")
        assert render_note(note) == f"---\nid: {NOTE_ID}\ntitle: T\ntags: [x]\nk: v\n---\n\nB\n"


class TestFormatting:
    """Tests for display formatting."""

    def test_format_value(self):
        assert format_value(["a", "b"]) == "[a, b]"
        assert format_value([]) == "[]"
        assert format_value(None) == ""
        assert format_value(NoteStatus.BUILDING) == "building"
        assert format_value("a\nb") == "a b"
        assert format_value("[draft]") == "[draft]"
        assert format_value("[draft]", quote=True) == '"[draft]"'
        assert format_value("plain", quote=True) == "plain"

    def test_format_fields(self):
        lines = format_fields({"id": "x", "tags": ["a", "b"], "custom": "v"})
        assert lines == ["id: x", "tags: [a, b]", "custom: v"]
