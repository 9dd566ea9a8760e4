"""
Per-service configuration for the retrieval and memory engines.

Services receive one of these at construction instead of reading global
settings, so tests can build any configuration they need directly.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from config.settings import Settings, settings as default_settings
from schemas.entry import EntryType


# Turns an entry stays in Tier 1 after a Tier 2/3 activation.
# Foundational lore lingers longer than situational detail.
DEFAULT_STICKINESS_BY_TYPE: Dict[EntryType, int] = {
    EntryType.CONCEPT: 5,
    EntryType.FACTION: 4,
    EntryType.CHARACTER: 3,
    EntryType.LOCATION: 3,
    EntryType.EVENT: 2,
    EntryType.ITEM: 2,
}


class EntryRetrievalConfig(BaseModel):
    """Configuration for tiered lorebook entry retrieval."""

    max_tier3_entries: int = Field(default=0, ge=0, description="0 = unlimited")
    max_words_per_entry: int = Field(default=0, description="0 = unlimited, clamped to 500")
    enable_llm_selection: bool = True
    recent_entries_count: int = Field(default=5, ge=0)
    tier3_model: str = "x-ai/grok-4.1-fast"
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=300, ge=16)
    stickiness_by_type: Dict[EntryType, int] = Field(
        default_factory=lambda: dict(DEFAULT_STICKINESS_BY_TYPE)
    )

    @field_validator("max_words_per_entry", mode="before")
    @classmethod
    def clamp_max_words(cls, v) -> int:
        try:
            value = int(v)
        except (TypeError, ValueError):
            return 0
        return min(max(0, value), 500)

    @field_validator("stickiness_by_type")
    @classmethod
    def fill_missing_types(cls, v: Dict[EntryType, int]) -> Dict[EntryType, int]:
        merged = dict(DEFAULT_STICKINESS_BY_TYPE)
        merged.update(v)
        return merged

    @property
    def max_stickiness(self) -> int:
        """Largest stickiness window in use; activations older than this are useless."""
        return max(self.stickiness_by_type.values())

    def stickiness_for(self, entry_type: EntryType) -> int:
        return self.stickiness_by_type[entry_type]

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EntryRetrievalConfig":
        s = settings or default_settings
        return cls(
            max_tier3_entries=s.ENTRY_RETRIEVAL_MAX_TIER3,
            max_words_per_entry=s.ENTRY_RETRIEVAL_MAX_WORDS,
            enable_llm_selection=s.ENTRY_RETRIEVAL_ENABLE_LLM,
            recent_entries_count=s.ENTRY_RETRIEVAL_RECENT_COUNT,
            tier3_model=s.MODEL_ENTRY_SELECTION,
            temperature=s.ENTRY_SELECTION_TEMPERATURE,
            max_tokens=s.ENTRY_SELECTION_MAX_TOKENS,
        )


class MemoryConfig(BaseModel):
    """Configuration for chapter boundary analysis, summarization and recall."""

    token_threshold: int = Field(default=24000, ge=1)
    chapter_buffer: int = Field(default=10, ge=0)
    auto_summarize: bool = True
    enable_retrieval: bool = True
    max_chapters_per_retrieval: int = Field(default=3, ge=1)
    model: str = "x-ai/grok-4.1-fast"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=16)
    recent_entries_count: int = Field(default=5, ge=0)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MemoryConfig":
        s = settings or default_settings
        return cls(
            token_threshold=s.MEMORY_TOKEN_THRESHOLD,
            chapter_buffer=s.MEMORY_CHAPTER_BUFFER,
            auto_summarize=s.MEMORY_AUTO_SUMMARIZE,
            enable_retrieval=s.MEMORY_ENABLE_RETRIEVAL,
            max_chapters_per_retrieval=s.MEMORY_MAX_CHAPTERS_PER_RETRIEVAL,
            model=s.MODEL_MEMORY,
            temperature=s.MEMORY_TEMPERATURE,
            max_tokens=s.MEMORY_MAX_TOKENS,
        )
