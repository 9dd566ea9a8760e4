"""
Chapter creation and maintenance for one story branch.

Ties boundary analysis and summarization to persistence. Boundaries only
ever move forward: each new chapter starts right after the previous one.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

from config.retrieval import MemoryConfig
from core import (
    get_logger,
    EntryNotFoundError,
    ChapterIntegrityError,
    RecordNotFoundError,
    JudgeError,
    JudgeResponseParseError,
)
from memory.chapter_memory import ChapterMemoryService
from schemas import Chapter, ChapterAnalysis, StoryEntry

logger = get_logger(__name__)


class ChapterRepository(Protocol):
    """Chapter persistence used by ChapterService. AsyncStoryDatabase satisfies it."""

    async def list_chapters(self, story_id: str, branch_id: Optional[str] = None) -> List[Chapter]: ...

    async def get_chapter(self, chapter_id: str) -> Optional[Chapter]: ...

    async def add_chapter(self, chapter: Chapter) -> Chapter: ...

    async def update_chapter(self, chapter_id: str, **fields) -> Chapter: ...


@dataclass
class ChapterCreationResult:
    """What a chapter check did, and why."""

    created: bool
    analysis: ChapterAnalysis
    chapter: Optional[Chapter] = None
    reason: str = ""


def _position_of(transcript: Sequence[StoryEntry], entry_id: str) -> Optional[int]:
    for index, entry in enumerate(transcript):
        if entry.id == entry_id:
            return index
    return None


class ChapterService:
    def __init__(
        self,
        memory_service: ChapterMemoryService,
        repository: ChapterRepository,
        config: Optional[MemoryConfig] = None,
    ):
        self.memory = memory_service
        self.repository = repository
        self.config = config or memory_service.config

    @staticmethod
    def last_boundary(transcript: Sequence[StoryEntry], chapters: Sequence[Chapter]) -> int:
        """
        Number of leading transcript entries already folded into chapters.

        Raises:
            EntryNotFoundError: the last chapter's end entry is missing from the transcript
        """
        if not chapters:
            return 0

        last = max(chapters, key=lambda c: c.number)
        position = _position_of(transcript, last.end_entry_id)
        if position is None:
            raise EntryNotFoundError(last.end_entry_id, referenced_by=f"chapter {last.id}")
        return position + 1

    async def check_and_create_chapter(
        self,
        story_id: str,
        branch_id: Optional[str],
        transcript: Sequence[StoryEntry],
        tokens_outside_buffer: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChapterCreationResult:
        """
        Create the next chapter for a branch if the transcript has grown enough.

        Args:
            story_id: Story ID
            branch_id: Branch ID (None = main timeline)
            transcript: Full ordered transcript of the branch
            tokens_outside_buffer: Precomputed token count, if the caller has one
            cancel_event: Set to abandon judge calls

        Returns:
            ChapterCreationResult; ``chapter`` is set only when one was persisted

        Raises:
            EntryNotFoundError: existing chapters reference entries not in ``transcript``
            ChapterIntegrityError: the chosen boundary would not move forward
        """
        if not self.config.auto_summarize:
            return ChapterCreationResult(
                created=False,
                analysis=ChapterAnalysis.no_chapter(),
                reason="auto-summarize disabled",
            )

        chapters = await self.repository.list_chapters(story_id, branch_id)
        start = self.last_boundary(transcript, chapters)

        analysis = await self.memory.analyze_chapter_boundary(
            transcript,
            start,
            tokens_outside_buffer=tokens_outside_buffer,
            cancel_event=cancel_event,
        )
        if not analysis.should_create:
            return ChapterCreationResult(created=False, analysis=analysis, reason="below threshold")

        if not start < analysis.end_index <= len(transcript):
            raise ChapterIntegrityError(
                None,
                f"boundary {analysis.end_index} outside ({start}, {len(transcript)}]",
            )

        span = list(transcript[start:analysis.end_index])
        summary = await self.memory.summarize_chapter(span, chapters, cancel_event)

        number = max((c.number for c in chapters), default=0) + 1
        chapter = Chapter(
            id=uuid.uuid4().hex,
            story_id=story_id,
            branch_id=branch_id,
            number=number,
            title=analysis.suggested_title or summary.title,
            start_entry_id=span[0].id,
            end_entry_id=span[-1].id,
            entry_count=len(span),
            start_position=start,
            end_position=analysis.end_index - 1,
            summary=summary.summary,
            start_time=span[0].time_start,
            end_time=span[-1].time_end,
            keywords=summary.keywords,
            characters=summary.characters,
            locations=summary.locations,
            plot_threads=summary.plot_threads,
            emotional_tone=summary.emotional_tone,
        )
        saved = await self.repository.add_chapter(chapter)

        logger.info(
            "Chapter created",
            story_id=story_id,
            branch_id=branch_id,
            number=saved.number,
            title=saved.title,
            start_position=start,
            end_position=analysis.end_index - 1,
        )
        return ChapterCreationResult(created=True, analysis=analysis, chapter=saved, reason="created")

    def chapter_span(
        self, chapter: Chapter, transcript: Sequence[StoryEntry]
    ) -> Tuple[int, int]:
        """Inclusive transcript positions of a chapter's first and last entries."""
        start = _position_of(transcript, chapter.start_entry_id)
        if start is None:
            raise EntryNotFoundError(chapter.start_entry_id, referenced_by=f"chapter {chapter.id}")
        end = _position_of(transcript, chapter.end_entry_id)
        if end is None:
            raise EntryNotFoundError(chapter.end_entry_id, referenced_by=f"chapter {chapter.id}")
        if end < start:
            raise ChapterIntegrityError(chapter.id, "end entry precedes start entry")
        return start, end

    async def resummarize(
        self,
        story_id: str,
        branch_id: Optional[str],
        chapter_id: str,
        transcript: Sequence[StoryEntry],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Chapter:
        """
        Regenerate a chapter's summary from its entries.

        A failed summarization leaves the stored chapter untouched.

        Raises:
            RecordNotFoundError: no such chapter in this branch
            EntryNotFoundError: the chapter's entries are missing from ``transcript``
        """
        chapter = await self.repository.get_chapter(chapter_id)
        if chapter is None or chapter.story_id != story_id or chapter.branch_id != branch_id:
            raise RecordNotFoundError("Chapter", chapter_id)

        start, end = self.chapter_span(chapter, transcript)
        chapters = await self.repository.list_chapters(story_id, branch_id)

        try:
            summary = await self.memory.resummarize_chapter(
                chapter, transcript[start:end + 1], chapters, cancel_event
            )
        except (JudgeError, JudgeResponseParseError) as e:
            logger.warning(
                "Resummarize failed, keeping previous summary",
                chapter_id=chapter_id,
                error=str(e),
            )
            return chapter

        updated = await self.repository.update_chapter(
            chapter_id,
            summary=summary.summary,
            keywords=summary.keywords,
            characters=summary.characters,
            locations=summary.locations,
            plot_threads=summary.plot_threads,
            emotional_tone=summary.emotional_tone,
        )
        logger.info("Chapter resummarized", chapter_id=chapter_id, number=updated.number)
        return updated
