"""Transient retrieval result schemas (never persisted)."""

from typing import List, Literal

from pydantic import BaseModel, Field

from schemas.entry import Entry


class RetrievedEntry(BaseModel):
    """An entry selected for this turn, with the tier and priority it earned."""

    entry: Entry
    tier: Literal[1, 2, 3]
    priority: int
    match_reason: str = ""


class EntryRetrievalResult(BaseModel):
    """Per-tier breakdown, the priority-sorted union, and the rendered context block."""

    tier1: List[RetrievedEntry] = Field(default_factory=list)
    tier2: List[RetrievedEntry] = Field(default_factory=list)
    tier3: List[RetrievedEntry] = Field(default_factory=list)
    all: List[RetrievedEntry] = Field(default_factory=list)
    context_block: str = ""

    def entry_ids(self) -> List[str]:
        return [r.entry.id for r in self.all]
