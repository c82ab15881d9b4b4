"""Common test fixtures for the chaos note store."""
import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from chaos_mcp.config import config
from chaos_mcp.services.note_service import NoteService
from chaos_mcp.storage.note_repository import NoteRepository

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git executable not available"
)


@pytest.fixture
def temp_dirs():
    """Create a temporary data directory with notes/ and assets/ inside."""
    with tempfile.TemporaryDirectory() as data_dir:
        data_path = Path(data_dir)
        notes_path = data_path / "notes"
        assets_path = data_path / "assets"
        notes_path.mkdir()
        assets_path.mkdir()
        yield data_path, notes_path, assets_path


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Point the global config at the temporary data directory."""
    data_dir, _, _ = temp_dirs
    monkeypatch.setattr(config, "data_dir", data_dir)
    monkeypatch.setattr(config, "notes_dir", Path("notes"))
    monkeypatch.setattr(config, "assets_dir", Path("assets"))
    monkeypatch.setattr(config, "note_extension", ".md")
    monkeypatch.setattr(config, "git_sync_enabled", False)
    monkeypatch.setattr(config, "git_pull_on_start", False)
    monkeypatch.setattr(config, "sync_in_background", False)
    monkeypatch.setattr(config, "log_dir", data_dir / "logs")
    yield config


@pytest.fixture
def note_repository(test_config):
    """Create a note repository without git sync."""
    return NoteRepository(
        notes_dir=test_config.get_notes_dir(),
        assets_dir=test_config.get_assets_dir(),
    )


@pytest.fixture
def note_service(note_repository, test_config):
    """Create a note service over the test repository."""
    service = NoteService(repository=note_repository, settings=test_config)
    yield service
    service.shutdown()


@pytest.fixture
def write_note(temp_dirs):
    """Write a raw note file into the notes directory and return its path."""
    _, notes_dir, _ = temp_dirs

    def _write(name: str, text: str) -> Path:
        path = notes_dir / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def git_data_dir(temp_dirs):
    """A data directory that is a git working tree with a local identity."""
    data_dir, _, _ = temp_dirs
    subprocess.run(["git", "init", "-q", str(data_dir)], check=True)
    subprocess.run(
        ["git", "-C", str(data_dir), "config", "user.email", "test@example.com"],
        check=True,
    )
    subprocess.run(
        ["git", "-C", str(data_dir), "config", "user.name", "Test User"], check=True
    )
    subprocess.run(
        ["git", "-C", str(data_dir), "config", "commit.gpgsign", "false"], check=True
    )
    return data_dir


def git_log_messages(repo: Path):
    """Return commit subjects, newest first."""
    result = subprocess.run(
        ["git", "-C", str(repo), "log", "--format=%s"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return []
    return result.stdout.strip().splitlines()
