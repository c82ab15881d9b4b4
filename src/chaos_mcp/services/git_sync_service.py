"""Git sync service for advisory replication of note mutations.

Every successful note mutation is followed by a stage + commit + push job.
Jobs run on a single background worker in submission order, so note
operations never wait for git or the network. A job that fails is logged
and dropped: the local file is the source of truth and the git history is
only an audit trail.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from chaos_mcp.exceptions import ErrorCode, SyncError
from chaos_mcp.storage.git_wrapper import GitError, GitWrapper

logger = logging.getLogger(__name__)


class GitSyncService:
    """Fire-and-forget git commits for the data directory."""

    def __init__(
        self,
        data_dir: Path,
        enabled: bool = True,
        push: bool = True,
        background: bool = True,
        git: Optional[GitWrapper] = None,
    ) -> None:
        """Initialize the sync service.

        Args:
            data_dir: Root of the data tree; sync is active only when it
                is a git working tree.
            enabled: Master switch; when False every call is a no-op.
            push: Push after each commit when a remote is configured.
            background: Run jobs on a worker thread. When False jobs run
                inline in the caller (failures are still swallowed).
            git: GitWrapper to use (tests inject a mock).
        """
        self._data_dir = Path(data_dir)
        self._enabled = enabled
        self._push = push
        self._background = background
        self._git = git or GitWrapper(self._data_dir)
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []
        self._commits = 0
        self._failures = 0
        self._last_commit_time: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """True when enabled and the data directory is a git repository."""
        return self._enabled and self._git.is_repo()

    def get_status(self) -> Dict[str, Any]:
        """Get sync status information."""
        with self._lock:
            pending = sum(1 for f in self._pending if not f.done())
        return {
            "enabled": self._enabled,
            "is_repo": self._git.is_repo(),
            "push": self._push,
            "background": self._background,
            "pending_jobs": pending,
            "commits": self._commits,
            "failures": self._failures,
            "last_commit_time": (
                self._last_commit_time.isoformat() if self._last_commit_time else None
            ),
            "last_error": self._last_error,
        }

    def record(
        self, paths: Sequence[Path], message: str, stage_all: bool = False
    ) -> Optional[Future]:
        """Queue a commit for a local mutation.

        Args:
            paths: Files touched by the mutation, or directories to stage
                in full when stage_all is True.
            message: Commit message.
            stage_all: Stage additions, edits and removals under ``paths``.

        Returns:
            The queued Future in background mode, otherwise None. The
            future never raises; callers are not expected to wait on it.
        """
        if not self.is_active:
            return None

        paths = list(paths)
        if not self._background:
            self._run_job(paths, message, stage_all)
            return None

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="chaos-git-sync"
                )
            future = self._executor.submit(self._run_job, paths, message, stage_all)
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def _run_job(self, paths: List[Path], message: str, stage_all: bool) -> bool:
        """Run one sync job. Never raises."""
        try:
            self._commit(paths, message, stage_all)
            return True
        except SyncError as e:
            self._failures += 1
            self._last_error = e.message
            logger.warning("Git sync failed (%s): %s", message, e)
            return False
        except Exception as e:
            self._failures += 1
            self._last_error = str(e)[:200]
            logger.warning(
                "Unexpected git sync failure (%s): %s", message, e, exc_info=True
            )
            return False

    def _commit(self, paths: List[Path], message: str, stage_all: bool) -> None:
        try:
            if stage_all:
                self._git.add_all(paths)
            else:
                self._git.add(paths)
            committed = self._git.commit(message)
        except GitError as e:
            raise SyncError(
                f"Commit failed: {e.message}",
                operation="commit",
                code=ErrorCode.SYNC_COMMIT_FAILED,
                original_error=e,
            ) from e

        if not committed:
            logger.debug("Nothing committed for: %s", message)
            return

        self._commits += 1
        self._last_commit_time = datetime.now(timezone.utc)
        logger.debug("Committed: %s", message)

        if not self._push:
            return
        try:
            if self._git.has_remote():
                self._git.push()
                logger.debug("Pushed: %s", message)
        except GitError as e:
            raise SyncError(
                f"Push failed: {e.message}",
                operation="push",
                code=ErrorCode.SYNC_PUSH_FAILED,
                original_error=e,
            ) from e

    def pull_latest(self) -> bool:
        """Pull the latest history (``git pull --rebase --quiet``).

        Best-effort: returns False, after logging, when the pull fails or
        when there is nothing to pull from.
        """
        if not self.is_active:
            return False
        try:
            if not self._git.has_remote():
                logger.debug("No git remote configured, skipping pull")
                return False
            self._git.pull_rebase()
            logger.info("Pulled latest notes into %s", self._data_dir)
            return True
        except GitError as e:
            error = SyncError(
                f"Pull failed: {e.message}",
                operation="pull",
                code=ErrorCode.SYNC_PULL_FAILED,
                original_error=e,
            )
            self._last_error = error.message
            logger.warning("Git pull failed: %s", error)
            return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued jobs to finish.

        Returns:
            True if every queued job finished within the timeout.
        """
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
        return not not_done

    def shutdown(self, timeout: Optional[float] = 30.0) -> None:
        """Flush pending jobs and stop the worker."""
        if not self.flush(timeout):
            logger.warning("Git sync jobs still running at shutdown")
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
        logger.debug("GitSyncService shut down")
