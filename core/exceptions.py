"""
Custom exception hierarchy for the story context engine.
Provides structured error handling with proper context.

Two families matter to callers:
- Enrichment failures (judge errors, unparseable responses) are caught
  inside the retrieval and memory services and degrade to fallback values.
- Integrity failures (missing entries, overlapping chapters, unknown branches)
  always propagate, since they mean the persisted story is corrupted.
"""

from typing import Optional, Dict, Any


class StoryEngineException(Exception):
    """Base exception for all story context engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            context: Additional context information
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# ==================== Database Exceptions ====================


class DatabaseException(StoryEngineException):
    """Base exception for database-related errors."""

    pass


class RecordNotFoundError(DatabaseException):
    """Raised when a database record is not found."""

    def __init__(self, model: str, identifier: Any):
        super().__init__(
            message=f"{model} not found",
            error_code="RECORD_NOT_FOUND",
            context={"model": model, "identifier": identifier},
        )


class DuplicateRecordError(DatabaseException):
    """Raised when attempting to create a duplicate record."""

    def __init__(self, model: str, field: str, value: Any):
        super().__init__(
            message=f"{model} with {field}={value} already exists",
            error_code="DUPLICATE_RECORD",
            context={"model": model, "field": field, "value": value},
        )


# ==================== Integrity Exceptions ====================


class IntegrityException(StoryEngineException):
    """Base exception for corrupted persisted story state. Never recovered locally."""

    pass


class EntryNotFoundError(IntegrityException):
    """Raised when a chapter or branch references a story entry that no longer exists."""

    def __init__(self, entry_id: str, referenced_by: Optional[str] = None):
        super().__init__(
            message=f"Story entry {entry_id} not found",
            error_code="ENTRY_NOT_FOUND",
            context={"entry_id": entry_id, "referenced_by": referenced_by},
        )


class ChapterIntegrityError(IntegrityException):
    """Raised when chapter boundaries overlap, regress, or are not contiguous."""

    def __init__(self, chapter_id: Optional[str], reason: str):
        super().__init__(
            message=f"Chapter integrity violated: {reason}",
            error_code="CHAPTER_INTEGRITY",
            context={"chapter_id": chapter_id, "reason": reason},
        )


class BranchNotFoundError(IntegrityException):
    """Raised when a branch referenced by stored state does not exist."""

    def __init__(self, story_id: str, branch_id: Optional[str]):
        super().__init__(
            message=f"Branch {branch_id} not found in story {story_id}",
            error_code="BRANCH_NOT_FOUND",
            context={"story_id": story_id, "branch_id": branch_id},
        )


# ==================== Judge/External Service Exceptions ====================


class ExternalServiceException(StoryEngineException):
    """Base exception for external service errors."""

    pass


class JudgeError(ExternalServiceException):
    """Raised when an LLM judge call fails or is cancelled."""

    def __init__(self, operation: str, details: Optional[str] = None):
        super().__init__(
            message=f"Judge call failed during {operation}",
            error_code="JUDGE_ERROR",
            context={"operation": operation, "details": details},
        )


class JudgeResponseParseError(ExternalServiceException):
    """Raised when a judge response cannot be parsed into the expected shape."""

    def __init__(self, operation: str, raw: str):
        super().__init__(
            message=f"Could not parse judge response for {operation}",
            error_code="JUDGE_RESPONSE_PARSE_ERROR",
            context={"operation": operation, "raw": raw[:200]},
        )


# ==================== Validation Exceptions ====================


class ValidationException(StoryEngineException):
    """Base exception for validation errors."""

    pass


class InvalidInputError(ValidationException):
    """Raised when input validation fails."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            message=f"Invalid input: {field} - {reason}",
            error_code="INVALID_INPUT",
            context={"field": field, "reason": reason},
        )
