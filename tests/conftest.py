"""
Shared pytest fixtures for story context engine tests.
"""

import itertools
from typing import List, Optional

import pytest
from unittest.mock import AsyncMock

from config.retrieval import EntryRetrievalConfig, MemoryConfig
from schemas import (
    Entry,
    EntryType,
    InjectionMode,
    InjectionPolicy,
    StoryEntry,
)


# --- Mock judge ---

@pytest.fixture
def mock_judge():
    """Judge that answers every prompt with an empty selection."""
    judge = AsyncMock()
    judge.generate = AsyncMock(return_value='{"selected": []}')
    return judge


# --- Entry builders ---

_ids = itertools.count(1)


def make_entry(
    name: str,
    type: EntryType = EntryType.CHARACTER,
    description: str = "",
    mode: InjectionMode = InjectionMode.KEYWORD,
    keywords: Optional[List[str]] = None,
    priority: int = 0,
    aliases: Optional[List[str]] = None,
    state=None,
    entry_id: Optional[str] = None,
    story_id: str = "story-1",
    branch_id: Optional[str] = None,
) -> Entry:
    """Build a lorebook entry with sensible test defaults."""
    return Entry(
        id=entry_id or f"entry-{next(_ids)}",
        story_id=story_id,
        branch_id=branch_id,
        type=type,
        name=name,
        aliases=aliases or [],
        description=description or f"{name} description",
        state=state,
        injection=InjectionPolicy(mode=mode, keywords=keywords or [], priority=priority),
    )


class TranscriptBuilder:
    """Helper to build alternating action / narration transcripts."""

    def __init__(self, prefix: str = "msg"):
        self.prefix = prefix
        self.entries: List[StoryEntry] = []

    def action(self, content: str, token_count: Optional[int] = None) -> "TranscriptBuilder":
        return self._add("user_action", content, token_count)

    def narration(self, content: str, token_count: Optional[int] = None) -> "TranscriptBuilder":
        return self._add("narration", content, token_count)

    def turns(self, count: int, tokens_each: int = 100) -> "TranscriptBuilder":
        """Add ``count`` alternating entries with fixed token counts."""
        for i in range(count):
            if i % 2 == 0:
                self.action(f"action {len(self.entries)}", tokens_each)
            else:
                self.narration(f"narration {len(self.entries)}", tokens_each)
        return self

    def _add(self, type_: str, content: str, token_count: Optional[int]) -> "TranscriptBuilder":
        position = len(self.entries)
        self.entries.append(
            StoryEntry(
                id=f"{self.prefix}-{position}",
                story_id="story-1",
                type=type_,
                content=content,
                position=position,
                token_count=token_count,
            )
        )
        return self

    def build(self) -> List[StoryEntry]:
        return list(self.entries)


@pytest.fixture
def entry_factory():
    """Factory fixture for building lorebook entries."""
    return make_entry


@pytest.fixture
def transcript_builder():
    """Factory fixture for building transcripts."""
    return TranscriptBuilder


# --- Configs ---

@pytest.fixture
def retrieval_config():
    """Retrieval config with Tier 3 enabled and no caps."""
    return EntryRetrievalConfig(tier3_model="test-model")


@pytest.fixture
def memory_config():
    """Memory config with a small threshold so tests stay cheap."""
    return MemoryConfig(token_threshold=1000, chapter_buffer=2, model="test-model")


# --- Database ---

@pytest.fixture
async def story_db(tmp_path):
    """File-backed SQLite database with all tables created."""
    from memory.database_async import AsyncStoryDatabase

    db = AsyncStoryDatabase(f"sqlite+aiosqlite:///{tmp_path / 'story.db'}", echo=False)
    await db.create_tables()
    yield db
    await db.close()
