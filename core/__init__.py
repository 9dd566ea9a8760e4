"""
Core utilities and infrastructure for the story context engine.
"""

from core.exceptions import (
    StoryEngineException,
    DatabaseException,
    RecordNotFoundError,
    DuplicateRecordError,
    IntegrityException,
    EntryNotFoundError,
    ChapterIntegrityError,
    BranchNotFoundError,
    ExternalServiceException,
    JudgeError,
    JudgeResponseParseError,
    ValidationException,
    InvalidInputError,
)
from core.logging_config import configure_logging, get_logger

__all__ = [
    "StoryEngineException",
    "DatabaseException",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "IntegrityException",
    "EntryNotFoundError",
    "ChapterIntegrityError",
    "BranchNotFoundError",
    "ExternalServiceException",
    "JudgeError",
    "JudgeResponseParseError",
    "ValidationException",
    "InvalidInputError",
    "configure_logging",
    "get_logger",
]
