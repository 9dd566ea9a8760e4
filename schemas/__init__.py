"""
Pydantic schemas for type-safe data transfer.
"""

from schemas.entry import (
    Entry,
    EntryType,
    EntryOrigin,
    InjectionMode,
    InjectionPolicy,
    CharacterState,
    LocationState,
    ItemState,
    FactionState,
    ConceptState,
    EventState,
)
from schemas.story import StoryEntry, Character, Location, Item, LiveWorldState
from schemas.chapter import (
    Chapter,
    ChapterAnalysis,
    ChapterSummary,
    ChapterQuery,
    RetrievalDecision,
    ChapterAnswer,
)
from schemas.retrieval import RetrievedEntry, EntryRetrievalResult

__all__ = [
    "Entry",
    "EntryType",
    "EntryOrigin",
    "InjectionMode",
    "InjectionPolicy",
    "CharacterState",
    "LocationState",
    "ItemState",
    "FactionState",
    "ConceptState",
    "EventState",
    "StoryEntry",
    "Character",
    "Location",
    "Item",
    "LiveWorldState",
    "Chapter",
    "ChapterAnalysis",
    "ChapterSummary",
    "ChapterQuery",
    "RetrievalDecision",
    "ChapterAnswer",
    "RetrievedEntry",
    "EntryRetrievalResult",
]
