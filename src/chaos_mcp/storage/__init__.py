"""Storage layer for the chaos note store."""

from chaos_mcp.storage.git_wrapper import GitError, GitWrapper
from chaos_mcp.storage.note_repository import UNSET, NoteRepository

__all__ = [
    "GitError",
    "GitWrapper",
    "NoteRepository",
    "UNSET",
]
