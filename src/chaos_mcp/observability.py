"""Observability utilities for the chaos note store.

Rotating file logging for the ``chaos_mcp`` logger tree, per-operation
timing metrics, and the ``timed_operation``/``traced`` helpers the CLI,
the service layer and the MCP tools wrap their work in.
"""
import functools
import json
import logging
import re
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".chaos" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".chaos" / "metrics.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

ROOT_LOGGER = "chaos_mcp"
LOG_FILE_NAME = "chaos.log"

MAX_ERROR_LENGTH = 200

F = TypeVar("F", bound=Callable[..., Any])

_HOME_PATTERN = re.compile(re.escape(str(Path.home())))


def _tag(handler: logging.Handler) -> logging.Handler:
    handler._chaos_handler = True
    return handler


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Log the ``chaos_mcp`` tree to a rotating file and, optionally, stderr.

    Handlers installed by an earlier call are replaced. stdout is never
    used: the MCP stdio transport owns it.

    Args:
        log_dir: Directory for ``chaos.log``. Defaults to ~/.chaos/logs/
        level: Logging level for the tree and its handlers
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept
        console: Also log to stderr

    Returns:
        The log directory.
    """
    log_path = Path(log_dir).expanduser() if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    tree = logging.getLogger(ROOT_LOGGER)
    tree.setLevel(level)
    for handler in [h for h in tree.handlers if getattr(h, "_chaos_handler", False)]:
        tree.removeHandler(handler)
        handler.close()

    handlers = [
        RotatingFileHandler(
            log_path / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        tree.addHandler(_tag(handler))

    tree.debug(f"Logging to {log_path / LOG_FILE_NAME}")
    return log_path


def _sanitize_error_message(
    message: Optional[str], max_length: int = MAX_ERROR_LENGTH
) -> Optional[str]:
    """Make an error message safe to keep in metrics.

    Replaces the home directory with ``~``, collapses whitespace runs
    (newlines included) and truncates to max_length characters.
    """
    if message is None:
        return None
    cleaned = " ".join(_HOME_PATTERN.sub("~", message).split())
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length - 3] + "..."
    return cleaned


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[str] = None

    def add(self, duration_ms: float, success: bool, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = _sanitize_error_message(error)
            self.last_error_time = datetime.now(timezone.utc).isoformat()

    def summary(self) -> Dict[str, Any]:
        avg = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "avg_duration_ms": round(avg, 2),
            "min_duration_ms": round(self.min_duration_ms or 0.0, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_time,
        }


class MetricsCollector:
    """Thread-safe per-operation metrics with JSON persistence.

    Nothing is read from disk until ``load_metrics`` is called; saving
    writes a temp file and renames it over the metrics file.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 0,
    ):
        """
        Args:
            metrics_file: Where metrics persist. Defaults to ~/.chaos/metrics.json
            auto_save_interval: Save every N recorded operations (0 disables)
        """
        self._metrics: Dict[str, OperationMetrics] = {}
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Record one finished operation."""
        with self._lock:
            self._metrics.setdefault(operation, OperationMetrics()).add(
                duration_ms, success, error
            )
            self._unsaved += 1
            if self._auto_save_interval and self._unsaved >= self._auto_save_interval:
                self._write()

    def get_summary(self) -> Dict[str, Any]:
        """Totals over all operations plus a per-operation breakdown."""
        with self._lock:
            total = sum(m.count for m in self._metrics.values())
            success = sum(m.success_count for m in self._metrics.values())
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                "total_operations": total,
                "total_success": success,
                "total_errors": total - success,
                "overall_success_rate": success / total if total else 1.0,
                "operations": {op: m.summary() for op, m in sorted(self._metrics.items())},
            }

    def load_metrics(self) -> bool:
        """Merge in metrics saved by an earlier run.

        Saved operations replace in-memory ones of the same name. A missing
        or unreadable file is logged and leaves the collector unchanged.
        """
        with self._lock:
            if not self._metrics_file.exists():
                return False
            try:
                data = json.loads(self._metrics_file.read_text(encoding="utf-8"))
                loaded = {
                    op: OperationMetrics(**fields)
                    for op, fields in data.get("operations", {}).items()
                }
                start_time = datetime.fromisoformat(data["start_time"])
            except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(f"Failed to load metrics from {self._metrics_file}: {e}")
                return False
            self._metrics.update(loaded)
            self._start_time = min(self._start_time, start_time)
            logger.debug(f"Loaded metrics for {len(loaded)} operations")
            return True

    def save_metrics(self) -> bool:
        """Write metrics to disk. Returns False (after logging) on failure."""
        with self._lock:
            return self._write()

    def _write(self) -> bool:
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {op: asdict(m) for op, m in self._metrics.items()},
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        self._unsaved = 0
        return True


# Process-wide collector; main() loads it on serve and saves it at exit
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start/end at DEBUG.

    Yields a dict the block can fill with result details (for example
    ``result_count``); they are appended to the END log line.

    Example:
        with timed_operation("chaos_search_notes", query="milk") as op:
            hits = service.search_notes("milk")
            op["result_count"] = len(hits)
    """
    correlation_id = uuid.uuid4().hex[:8]
    result_info: Dict[str, Any] = {}
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    start = time.perf_counter()
    try:
        yield result_info
    except Exception as e:
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        success = error_msg is None
        metrics.record_operation(operation, duration_ms, success, error_msg)
        outcome = "OK" if success else f"ERROR: {_sanitize_error_message(error_msg)}"
        result_str = ", ".join(f"{k}={v}" for k, v in result_info.items())
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{outcome}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorate a service method so each call runs inside ``timed_operation``.

    The operation name defaults to the function name. A ``note_id`` keyword
    or a leading string argument is added to the log context.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if "note_id" in kwargs:
                context["note_id"] = kwargs["note_id"]
            elif len(args) > 1 and isinstance(args[1], str):
                context["arg"] = args[1][:50]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
