"""Configuration module for the chaos note store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from chaos_mcp import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the notes
_USER_ENV = Path.home() / ".chaos" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    """Read a boolean flag from the environment."""
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class ChaosConfig(BaseModel):
    """Configuration for the chaos note store."""

    # Root of the data tree: notes/, assets/ and optionally .git
    data_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CHAOS_DATA_DIR", str(Path.home() / ".chaos"))
        ).expanduser()
    )
    # Storage configuration (relative paths resolve against data_dir)
    notes_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("CHAOS_NOTES_DIR", "notes"))
    )
    assets_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("CHAOS_ASSETS_DIR", "assets"))
    )
    note_extension: str = Field(
        default_factory=lambda: os.getenv("CHAOS_NOTE_EXTENSION", ".md")
    )
    # Advisory git synchronization
    # Only takes effect when data_dir is already a git working tree
    git_sync_enabled: bool = Field(
        default_factory=lambda: _env_flag("CHAOS_GIT_SYNC", "true")
    )
    git_push_enabled: bool = Field(
        default_factory=lambda: _env_flag("CHAOS_GIT_PUSH", "true")
    )
    git_pull_on_start: bool = Field(
        default_factory=lambda: _env_flag("CHAOS_GIT_PULL", "true")
    )
    # When False, sync jobs run inline (failures are still swallowed)
    sync_in_background: bool = Field(
        default_factory=lambda: _env_flag("CHAOS_SYNC_BACKGROUND", "true")
    )
    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("CHAOS_LOG_DIR")).expanduser()
            if os.getenv("CHAOS_LOG_DIR")
            else None
        )
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("CHAOS_SERVER_NAME", "chaos-mcp"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_extension(self) -> "ChaosConfig":
        """Reject note extensions that cannot be used as a filename suffix."""
        ext = self.note_extension
        if not ext.startswith(".") or len(ext) < 2:
            raise ValueError("note_extension must start with '.' (e.g. '.md')")
        if "/" in ext or "\\" in ext:
            raise ValueError("note_extension cannot contain path separators")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on data_dir."""
        if path.is_absolute():
            return path
        return self.data_dir / path

    def get_notes_dir(self) -> Path:
        """Get the absolute notes directory, creating it if needed."""
        notes_dir = self.get_absolute_path(self.notes_dir)
        notes_dir.mkdir(parents=True, exist_ok=True)
        return notes_dir

    def get_assets_dir(self) -> Path:
        """Get the absolute assets directory, creating it if needed."""
        assets_dir = self.get_absolute_path(self.assets_dir)
        assets_dir.mkdir(parents=True, exist_ok=True)
        return assets_dir

    def get_log_dir(self) -> Path:
        """Get the log directory (defaults to <data_dir>/logs)."""
        if self.log_dir is None:
            return self.data_dir / "logs"
        return self.get_absolute_path(self.log_dir)


# Create a global config instance
config = ChaosConfig()
