"""Custom exceptions for the chaos note store.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_TITLE_REQUIRED = 1004
    NOTE_DUPLICATE_MATCH = 1006
    NOTE_MALFORMED_HEADER = 1007

    # Tag errors (3xxx)
    TAG_INVALID = 3002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_RENAME_FAILED = 4004

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_STATUS = 7002
    INVALID_NOTE_ID = 7003
    INVALID_PAGINATION = 7004

    # Sync errors (8xxx)
    SYNC_COMMIT_FAILED = 8002
    SYNC_PUSH_FAILED = 8003
    SYNC_PULL_FAILED = 8004


class ChaosError(Exception):
    """Base exception for all chaos note store errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(ChaosError):
    """Raised when no note file matches an id."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"note with id '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class ValidationError(ChaosError):
    """Raised when a field value violates its constraint.

    The whole operation is rejected; nothing is written.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class MalformedHeaderError(ChaosError):
    """Raised by the header codec when the header block cannot be located.

    Callers treat this as a degraded read (whole text is body), not a failure.
    """

    def __init__(self, message: str = "header delimiter not found"):
        super().__init__(message, code=ErrorCode.NOTE_MALFORMED_HEADER)


class StorageError(ChaosError):
    """Raised when the underlying filesystem operation fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class DuplicateMatchError(ChaosError):
    """An id resolved to more than one file.

    Never raised out of a lookup: the store logs it and uses the
    lexicographically first match.
    """

    def __init__(self, note_id: str, matches: List[str]):
        super().__init__(
            f"note id '{note_id}' matches {len(matches)} files",
            code=ErrorCode.NOTE_DUPLICATE_MATCH,
            details={"note_id": note_id, "matches": matches[:5]}
        )
        self.note_id = note_id
        self.matches = list(matches)


class SyncError(ChaosError):
    """Raised for advisory git synchronization failures."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.SYNC_COMMIT_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class ConfigurationError(ChaosError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
