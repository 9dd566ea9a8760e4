"""
Prompts module - All judge prompts organized by feature.

Import prompts directly:
    from prompts import ENTRY_SELECTION_PROMPT, CHAPTER_SUMMARY_PROMPT

Or import from specific modules:
    from prompts.chapter import CHAPTER_ANALYSIS_PROMPT
"""

from prompts.entry_selection import ENTRY_SELECTION_SYSTEM_PROMPT, ENTRY_SELECTION_PROMPT
from prompts.chapter import (
    CHAPTER_ANALYSIS_SYSTEM_PROMPT,
    CHAPTER_ANALYSIS_PROMPT,
    CHAPTER_SUMMARY_SYSTEM_PROMPT,
    CHAPTER_SUMMARY_PROMPT,
    PREVIOUS_CHAPTERS_BLOCK,
)
from prompts.retrieval import (
    RETRIEVAL_DECISION_SYSTEM_PROMPT,
    RETRIEVAL_DECISION_PROMPT,
    CHAPTER_QUESTION_SYSTEM_PROMPT,
    CHAPTER_QUESTION_PROMPT,
)

__all__ = [
    "ENTRY_SELECTION_SYSTEM_PROMPT",
    "ENTRY_SELECTION_PROMPT",
    "CHAPTER_ANALYSIS_SYSTEM_PROMPT",
    "CHAPTER_ANALYSIS_PROMPT",
    "CHAPTER_SUMMARY_SYSTEM_PROMPT",
    "CHAPTER_SUMMARY_PROMPT",
    "PREVIOUS_CHAPTERS_BLOCK",
    "RETRIEVAL_DECISION_SYSTEM_PROMPT",
    "RETRIEVAL_DECISION_PROMPT",
    "CHAPTER_QUESTION_SYSTEM_PROMPT",
    "CHAPTER_QUESTION_PROMPT",
]
