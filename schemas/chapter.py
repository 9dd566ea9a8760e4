"""Chapter memory schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator


class Chapter(BaseModel):
    """
    A summarized, contiguous span of past transcript entries.

    Chapters are append-only per branch. Retrieval metadata (keywords,
    characters, locations, plot threads, tone) only aids future recall and
    is never authoritative story state.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Chapter ID")
    story_id: str = Field(..., description="Story ID")
    branch_id: Optional[str] = Field(None, description="Branch ID (None = main timeline)")
    number: int = Field(..., ge=1, description="Sequence number within the branch")
    title: Optional[str] = Field(None, max_length=500)

    start_entry_id: str = Field(..., description="First transcript entry in the chapter")
    end_entry_id: str = Field(..., description="Last transcript entry in the chapter")
    entry_count: int = Field(..., ge=1)
    start_position: Optional[int] = Field(
        None, ge=0, description="Transcript index of the first entry"
    )
    end_position: Optional[int] = Field(
        None, ge=0, description="Transcript index of the last entry (inclusive)"
    )

    summary: str = ""
    start_time: Optional[str] = Field(None, description="In-fiction clock at chapter start")
    end_time: Optional[str] = Field(None, description="In-fiction clock at chapter end")

    keywords: List[str] = Field(default_factory=list)
    characters: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    plot_threads: List[str] = Field(default_factory=list)
    emotional_tone: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChapterAnalysis(BaseModel):
    """Outcome of boundary analysis: whether to cut a chapter and where."""

    should_create: bool = False
    end_index: int = Field(-1, description="Exclusive transcript index where the chapter ends")
    suggested_title: Optional[str] = None

    @classmethod
    def no_chapter(cls) -> "ChapterAnalysis":
        return cls(should_create=False, end_index=-1, suggested_title=None)


def _coerce_str_list(v) -> List[str]:
    if not isinstance(v, list):
        return []
    return [str(item).strip() for item in v if item is not None and str(item).strip()]


class ChapterSummary(BaseModel):
    """Structured chapter metadata produced by the summarizer judge."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = "Summary unavailable."
    title: str = "Untitled Chapter"
    keywords: List[str] = Field(default_factory=list)
    characters: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    plot_threads: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("plot_threads", "plotThreads"),
    )
    emotional_tone: str = Field(
        "neutral",
        validation_alias=AliasChoices("emotional_tone", "emotionalTone"),
    )

    @field_validator("keywords", "characters", "locations", "plot_threads", mode="before")
    @classmethod
    def lists_only(cls, v) -> List[str]:
        return _coerce_str_list(v)

    @field_validator("summary", mode="before")
    @classmethod
    def summary_or_default(cls, v) -> str:
        return str(v).strip() if v else "Summary unavailable."

    @field_validator("title", mode="before")
    @classmethod
    def title_or_default(cls, v) -> str:
        return str(v).strip() if v else "Untitled Chapter"

    @field_validator("emotional_tone", mode="before")
    @classmethod
    def tone_or_default(cls, v) -> str:
        return str(v).strip() if v else "neutral"

    @classmethod
    def placeholder(cls) -> "ChapterSummary":
        """Conservative fallback used when summarization fails."""
        return cls(
            summary="Summary unavailable.",
            title="Untitled Chapter",
            emotional_tone="neutral",
        )


class ChapterQuery(BaseModel):
    """A sub-question the judge wants answered against one past chapter."""

    model_config = ConfigDict(populate_by_name=True)

    chapter_id: str = Field(..., validation_alias=AliasChoices("chapter_id", "chapterId"))
    question: str = Field(..., min_length=1)


class RetrievalDecision(BaseModel):
    """Which past chapters are worth re-injecting this turn."""

    relevant_chapter_ids: List[str] = Field(default_factory=list)
    sub_questions: List[ChapterQuery] = Field(default_factory=list)

    @property
    def should_retrieve(self) -> bool:
        return bool(self.relevant_chapter_ids)

    @classmethod
    def nothing_relevant(cls) -> "RetrievalDecision":
        return cls()


class ChapterAnswer(BaseModel):
    """Answer to a question asked against one or more past chapters."""

    question: str
    answer: str
    chapter_numbers: List[int] = Field(default_factory=list)
    answered: bool = False
