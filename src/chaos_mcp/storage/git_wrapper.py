"""Git wrapper for advisory version control of the data directory.

Provides subprocess-based git operations. The wrapper never initializes a
repository on its own: synchronization only happens when the data
directory is already a git working tree (see ``init_repo`` for the
explicit opt-in).
"""

import logging
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Seconds before a local git command is abandoned
LOCAL_TIMEOUT = 30
# Seconds before a network git command (push/pull) is abandoned
NETWORK_TIMEOUT = 120


class GitError(Exception):
    """Base exception for git operations.

    Attributes:
        message: Human-readable error message
        command: The git command that failed (if applicable)
        returncode: Exit code from git (if applicable)
        stderr: Error output from git (if applicable)
    """

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        self.message = message
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.command:
            parts.append(f"command: {' '.join(self.command)}")
        if self.returncode is not None:
            parts.append(f"returncode: {self.returncode}")
        if self.stderr:
            parts.append(f"stderr: {self.stderr[:200]}")
        return " | ".join(parts)


class GitWrapper:
    """Wrapper for git operations via subprocess.

    The repo_path is passed to git via the -C flag for all commands.
    Paths handed to ``add`` may be absolute or relative to the repository.
    """

    def __init__(self, repo_path: Path):
        """Initialize the GitWrapper.

        Args:
            repo_path: Path to the (possible) git repository root.
        """
        self.repo_path = Path(repo_path).expanduser().resolve()

    def _run_git(
        self,
        args: List[str],
        check: bool = True,
        capture_output: bool = True,
        retries: int = 3,
        retry_delay: float = 0.1,
        timeout: int = LOCAL_TIMEOUT,
    ) -> subprocess.CompletedProcess:
        """Run a git command via subprocess with retry for lock contention.

        Args:
            args: Git command arguments (without 'git' prefix)
            check: If True, raise GitError on non-zero exit
            capture_output: If True, capture stdout and stderr
            retries: Number of retries for index.lock contention (default: 3)
            retry_delay: Seconds to wait between retries (default: 0.1)
            timeout: Seconds before the command is abandoned

        Returns:
            CompletedProcess with command results

        Raises:
            GitError: If check=True and command fails after all retries
        """
        cmd = ["git", "-C", str(self.repo_path)] + args
        last_error = None

        for attempt in range(retries + 1):
            try:
                result = subprocess.run(
                    cmd,
                    check=False,
                    capture_output=capture_output,
                    text=True,
                    timeout=timeout,
                )

                # Check for index.lock contention (can retry)
                if result.returncode != 0 and result.stderr:
                    if "index.lock" in result.stderr and attempt < retries:
                        logger.debug(
                            f"Git index.lock contention, retry {attempt + 1}/{retries}: {args}"
                        )
                        time.sleep(retry_delay * (attempt + 1))
                        continue

                if check and result.returncode != 0:
                    raise GitError(
                        message=f"Git command failed: {' '.join(args)}",
                        command=cmd,
                        returncode=result.returncode,
                        stderr=result.stderr.strip() if result.stderr else None,
                    )

                return result

            except subprocess.TimeoutExpired as e:
                last_error = GitError(
                    message=f"Git command timed out: {' '.join(args)}", command=cmd
                )
                if attempt < retries:
                    time.sleep(retry_delay * (attempt + 1))
                    continue
                raise last_error from e
            except FileNotFoundError as e:
                raise GitError(
                    message="Git is not installed or not in PATH", command=cmd
                ) from e

        if last_error:
            raise last_error
        raise GitError(f"Git command failed after {retries} retries: {args}")

    def is_repo(self) -> bool:
        """Return True if the repository root holds a ``.git`` entry."""
        return (self.repo_path / ".git").exists()

    def init_repo(
        self, user_name: str = "chaos-mcp", user_email: str = "chaos-mcp@localhost"
    ) -> bool:
        """Initialize a git repository at repo_path.

        Also sets a local user.name and user.email so commits work on
        machines without a global git identity.

        Returns:
            True if a repository was created, False if one already existed.
        """
        if self.is_repo():
            logger.debug(f"Git repository already exists at {self.repo_path}")
            return False

        logger.info(f"Initializing git repository at {self.repo_path}")
        self.repo_path.mkdir(parents=True, exist_ok=True)
        self._run_git(["init"])
        self._run_git(["config", "user.email", user_email])
        self._run_git(["config", "user.name", user_name])
        logger.info("Git repository initialized")
        return True

    def _relative(self, path: Path) -> str:
        """Express a path relative to the repository when it lies inside it."""
        path = Path(path)
        if not path.is_absolute():
            return str(path)
        try:
            return str(path.resolve().relative_to(self.repo_path))
        except ValueError:
            return str(path)

    def add(self, paths: Sequence[Path]) -> None:
        """Stage specific files.

        Raises:
            GitError: If git rejects the paths.
        """
        if not paths:
            return
        self._run_git(["add", "--"] + [self._relative(p) for p in paths])

    def add_all(self, paths: Sequence[Path]) -> None:
        """Stage every change (additions, edits, removals) under the given paths.

        Paths that do not exist are skipped so a missing assets directory
        does not fail the whole stage.
        """
        existing = [p for p in paths if (self.repo_path / self._relative(p)).exists()]
        if not existing:
            return
        self._run_git(["add", "-A", "--"] + [self._relative(p) for p in existing])

    def commit(self, message: str) -> bool:
        """Commit whatever is staged.

        Returns:
            True if a commit was created; False if git refused (for example
            because nothing was staged).
        """
        result = self._run_git(["commit", "-m", message], check=False)
        if result.returncode != 0:
            logger.debug(
                f"Git commit skipped: {(result.stdout or result.stderr or '').strip()[:200]}"
            )
            return False
        logger.debug(f"Committed: {message}")
        return True

    def has_remote(self) -> bool:
        """Return True if at least one remote is configured."""
        result = self._run_git(["remote"], check=False)
        return result.returncode == 0 and bool(result.stdout.strip())

    def push(self) -> None:
        """Push the current branch to its upstream.

        Raises:
            GitError: If the push fails.
        """
        self._run_git(["push"], retries=0, timeout=NETWORK_TIMEOUT)

    def pull_rebase(self) -> None:
        """Pull the latest history with ``git pull --rebase --quiet``.

        Raises:
            GitError: If the pull fails.
        """
        self._run_git(
            ["pull", "--rebase", "--quiet"], retries=0, timeout=NETWORK_TIMEOUT
        )
