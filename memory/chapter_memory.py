"""
Chapter memory: boundary analysis, summarization and recall.

Long transcripts are folded into chapters once the un-summarized text
outside the protected recent buffer passes a token threshold. Every judge
call here is best effort. A failed call degrades to a conservative default
and is logged, so a turn never fails because memory enrichment did.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator

from config.retrieval import MemoryConfig
from core import get_logger, JudgeError, JudgeResponseParseError
from prompts import (
    CHAPTER_ANALYSIS_SYSTEM_PROMPT,
    CHAPTER_ANALYSIS_PROMPT,
    CHAPTER_SUMMARY_SYSTEM_PROMPT,
    CHAPTER_SUMMARY_PROMPT,
    PREVIOUS_CHAPTERS_BLOCK,
    RETRIEVAL_DECISION_SYSTEM_PROMPT,
    RETRIEVAL_DECISION_PROMPT,
    CHAPTER_QUESTION_SYSTEM_PROMPT,
    CHAPTER_QUESTION_PROMPT,
)
from schemas import (
    Chapter,
    ChapterAnalysis,
    ChapterSummary,
    ChapterQuery,
    RetrievalDecision,
    ChapterAnswer,
    StoryEntry,
)
from utils.judge import JudgeClient, call_judge
from utils.json_parsing import extract_integers, parse_model
from utils.tokens import TokenCounter, count_tokens, tokens_outside_buffer as count_outside_buffer

logger = get_logger(__name__)

MESSAGE_SEPARATOR = "\n\n---\n\n"
RECALL_TRANSCRIPT_CHARS = 400
UNANSWERED = "Unable to answer the question."
CHAPTERS_NOT_FOUND = "Chapters not found."


class ChapterEndResponse(BaseModel):
    """Boundary judge output. ``chapterEnd`` is absolute; ``optimalEndIndex`` is the older relative form."""

    model_config = ConfigDict(populate_by_name=True)

    chapter_end: Optional[int] = Field(
        None, validation_alias=AliasChoices("chapter_end", "chapterEnd")
    )
    optimal_end_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("optimal_end_index", "optimalEndIndex")
    )
    suggested_title: Optional[str] = Field(
        None, validation_alias=AliasChoices("suggested_title", "suggestedTitle")
    )

    @field_validator("suggested_title", mode="before")
    @classmethod
    def blank_title_is_none(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class RetrievalDecisionResponse(BaseModel):
    """Recall judge output before chapter ids are checked against the branch."""

    model_config = ConfigDict(populate_by_name=True)

    relevant_chapter_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("relevant_chapter_ids", "relevantChapterIds"),
    )
    queries: List[ChapterQuery] = Field(default_factory=list)

    @field_validator("relevant_chapter_ids", mode="before")
    @classmethod
    def ids_as_strings(cls, v) -> List[str]:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None]

    @field_validator("queries", mode="before")
    @classmethod
    def drop_malformed_queries(cls, v) -> list:
        if not isinstance(v, list):
            return []
        queries = []
        for q in v:
            if not isinstance(q, dict):
                continue
            chapter_id = q.get("chapterId") or q.get("chapter_id")
            question = q.get("question")
            if chapter_id is None or not question:
                continue
            queries.append({"chapter_id": str(chapter_id), "question": str(question)})
        return queries


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class ChapterMemoryService:
    """
    Judge-backed chapter operations for one story.

    Stateless apart from its collaborators; callers own the transcript,
    the chapter list and persistence.
    """

    def __init__(
        self,
        judge: Optional[JudgeClient] = None,
        config: Optional[MemoryConfig] = None,
        token_counter: TokenCounter = count_tokens,
    ):
        self.judge = judge
        self.config = config or MemoryConfig()
        self.token_counter = token_counter

    async def _ask(
        self,
        operation: str,
        system_prompt: str,
        user_prompt: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        if self.judge is None:
            raise JudgeError(operation, "no judge configured")
        return await call_judge(
            self.judge,
            operation=operation,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            cancel_event=cancel_event,
        )

    # ==================== Boundary analysis ====================

    async def analyze_chapter_boundary(
        self,
        transcript: Sequence[StoryEntry],
        last_boundary: int,
        token_threshold: Optional[int] = None,
        buffer: Optional[int] = None,
        tokens_outside_buffer: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChapterAnalysis:
        """
        Decide whether the un-summarized transcript should become a chapter.

        Args:
            transcript: Full ordered transcript of the branch
            last_boundary: Number of leading entries already in chapters
            token_threshold: Overrides ``config.token_threshold``
            buffer: Overrides ``config.chapter_buffer``
            tokens_outside_buffer: Precomputed token count of the eligible window
            cancel_event: Set to abandon the judge call

        Returns:
            ChapterAnalysis whose ``end_index`` is an exclusive transcript index
        """
        threshold = token_threshold if token_threshold is not None else self.config.token_threshold
        buffer = buffer if buffer is not None else self.config.chapter_buffer

        start = max(0, last_boundary)
        end = max(start, len(transcript) - buffer)
        window = list(transcript[start:end])

        if not window:
            logger.debug(
                "No chapter: window empty",
                transcript_length=len(transcript),
                last_boundary=start,
                buffer=buffer,
            )
            return ChapterAnalysis.no_chapter()

        if tokens_outside_buffer is None:
            tokens_outside_buffer = count_outside_buffer(
                transcript, start, buffer, self.token_counter
            )

        if tokens_outside_buffer < threshold:
            logger.debug(
                "No chapter: below threshold",
                tokens=tokens_outside_buffer,
                threshold=threshold,
            )
            return ChapterAnalysis.no_chapter()

        first_valid = start + 1
        last_valid = start + len(window)
        fallback = ChapterAnalysis(should_create=True, end_index=last_valid)

        messages = MESSAGE_SEPARATOR.join(
            f"Message {first_valid + i}:\n[{e.tag}] {e.content}" for i, e in enumerate(window)
        )
        prompt = CHAPTER_ANALYSIS_PROMPT.format(
            first_valid_id=first_valid,
            last_valid_id=last_valid,
            messages_in_range=messages,
        )

        logger.info(
            "Analyzing chapter boundary",
            window_size=len(window),
            first_valid=first_valid,
            last_valid=last_valid,
            tokens=tokens_outside_buffer,
        )

        try:
            response = await self._ask(
                "chapter_analysis", CHAPTER_ANALYSIS_SYSTEM_PROMPT, prompt, cancel_event
            )
        except JudgeError as e:
            logger.warning("Chapter analysis failed, using end of window", error=str(e))
            return fallback

        try:
            parsed = parse_model(response, ChapterEndResponse, "chapter_analysis")
        except JudgeResponseParseError:
            in_range = [n for n in extract_integers(response) if first_valid <= n <= last_valid]
            if not in_range:
                logger.warning("Chapter analysis unparseable, using end of window")
                return fallback
            logger.debug("Chapter end taken from prose", chapter_end=in_range[0])
            return ChapterAnalysis(should_create=True, end_index=in_range[0])

        if parsed.chapter_end is not None:
            end_index = clamp(parsed.chapter_end, first_valid, last_valid)
        elif parsed.optimal_end_index is not None:
            end_index = start + clamp(parsed.optimal_end_index, 1, len(window))
        else:
            end_index = last_valid

        logger.info(
            "Chapter boundary chosen",
            end_index=end_index,
            suggested_title=parsed.suggested_title,
        )
        return ChapterAnalysis(
            should_create=True,
            end_index=end_index,
            suggested_title=parsed.suggested_title,
        )

    # ==================== Summarization ====================

    async def summarize_chapter(
        self,
        entries: Sequence[StoryEntry],
        previous_chapters: Optional[Sequence[Chapter]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChapterSummary:
        """
        Summarize a span of transcript into a chapter summary with metadata.

        Earlier chapters are shown for continuity only. Returns the
        placeholder summary on any failure.
        """
        try:
            return await self._generate_summary(entries, previous_chapters, cancel_event)
        except (JudgeError, JudgeResponseParseError) as e:
            logger.warning("Chapter summarization failed, using placeholder", error=str(e))
            return ChapterSummary.placeholder()

    async def _generate_summary(
        self,
        entries: Sequence[StoryEntry],
        previous_chapters: Optional[Sequence[Chapter]],
        cancel_event: Optional[asyncio.Event],
    ) -> ChapterSummary:
        previous = sorted(previous_chapters or [], key=lambda c: c.number)
        previous_context = ""
        if previous:
            summaries = "\n\n".join(f"Chapter {c.number}: {c.summary}" for c in previous)
            previous_context = PREVIOUS_CHAPTERS_BLOCK.format(summaries=summaries)

        chapter_content = "\n\n".join(f"[{e.tag}]: {e.content}" for e in entries)
        prompt = CHAPTER_SUMMARY_PROMPT.format(
            previous_context=previous_context,
            chapter_content=chapter_content,
        )

        logger.info(
            "Summarizing chapter",
            entry_count=len(entries),
            previous_chapters=len(previous),
        )

        response = await self._ask(
            "chapter_summary", CHAPTER_SUMMARY_SYSTEM_PROMPT, prompt, cancel_event
        )
        summary = parse_model(response, ChapterSummary, "chapter_summary")

        logger.info("Chapter summarized", title=summary.title, keywords=len(summary.keywords))
        return summary

    async def resummarize_chapter(
        self,
        chapter: Chapter,
        entries: Sequence[StoryEntry],
        all_chapters: Sequence[Chapter],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChapterSummary:
        """
        Summarize ``chapter`` again with only the chapters before it as context.

        Unlike summarize_chapter there is no placeholder: the caller keeps
        the stored summary when this fails.

        Raises:
            JudgeError: the judge call failed or was cancelled
            JudgeResponseParseError: the reply was not a summary object
        """
        previous = [c for c in all_chapters if c.number < chapter.number]
        return await self._generate_summary(entries, previous, cancel_event)

    # ==================== Recall ====================

    async def decide_chapter_retrieval(
        self,
        user_input: str,
        recent_transcript: Sequence[StoryEntry],
        chapters: Sequence[Chapter],
        max_chapters: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RetrievalDecision:
        """
        Pick which past chapters matter for this turn, from summaries alone.

        Returns an empty decision without calling the judge when recall is
        disabled or there are no chapters, and on any failure.
        """
        if not self.config.enable_retrieval or not chapters:
            return RetrievalDecision.nothing_relevant()

        limit = max_chapters if max_chapters is not None else self.config.max_chapters_per_retrieval
        known_ids = {c.id for c in chapters}

        count = self.config.recent_entries_count
        recent = list(recent_transcript)[-count:] if count > 0 else []
        recent_context = "\n\n".join(
            f"[{e.tag}]: {e.content[:RECALL_TRANSCRIPT_CHARS]}" for e in recent
        ) or "(Story just started)"

        chapter_summaries = "\n\n".join(
            f"Chapter {c.number} (id: {c.id}): {c.summary}" for c in chapters
        )
        prompt = RETRIEVAL_DECISION_PROMPT.format(
            user_input=user_input,
            recent_context=recent_context,
            chapter_summaries=chapter_summaries,
            max_chapters=limit,
        )

        try:
            response = await self._ask(
                "retrieval_decision", RETRIEVAL_DECISION_SYSTEM_PROMPT, prompt, cancel_event
            )
            parsed = parse_model(response, RetrievalDecisionResponse, "retrieval_decision")
        except (JudgeError, JudgeResponseParseError) as e:
            logger.warning("Chapter retrieval decision failed", error=str(e))
            return RetrievalDecision.nothing_relevant()

        ids = [cid for cid in dict.fromkeys(parsed.relevant_chapter_ids) if cid in known_ids]
        dropped = len(parsed.relevant_chapter_ids) - len(ids)
        ids = ids[:limit]
        questions = [q for q in parsed.queries if q.chapter_id in known_ids][:limit]

        logger.info(
            "Chapter retrieval decided",
            relevant=len(ids),
            questions=len(questions),
            dropped_unknown=dropped,
        )
        return RetrievalDecision(relevant_chapter_ids=ids, sub_questions=questions)

    async def answer_chapter_question(
        self,
        question: str,
        chapters: Sequence[Chapter],
        chapter_entries: Optional[Dict[str, Sequence[StoryEntry]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChapterAnswer:
        """
        Answer ``question`` against the given chapters.

        Full chapter text is used when ``chapter_entries`` has it, otherwise
        the summary. At most ``max_chapters_per_retrieval`` chapters are read.
        """
        selected = sorted(chapters, key=lambda c: c.number)[: self.config.max_chapters_per_retrieval]
        if not selected:
            return ChapterAnswer(question=question, answer=CHAPTERS_NOT_FOUND)

        numbers = [c.number for c in selected]
        chapter_entries = chapter_entries or {}

        sections = []
        for chapter in selected:
            heading = f"=== Chapter {chapter.number}: {chapter.title or 'Untitled'} ==="
            entries = chapter_entries.get(chapter.id)
            if entries:
                body = "\n\n".join(f"[{e.tag}]: {e.content}" for e in entries)
            else:
                body = f"[Summary only] {chapter.summary}"
            sections.append(f"{heading}\n{body}")

        prompt = CHAPTER_QUESTION_PROMPT.format(
            chapter_content="\n\n".join(sections),
            question=question,
        )

        try:
            response = await self._ask(
                "chapter_question", CHAPTER_QUESTION_SYSTEM_PROMPT, prompt, cancel_event
            )
        except JudgeError as e:
            logger.warning("Chapter question failed", error=str(e), chapters=numbers)
            return ChapterAnswer(question=question, answer=UNANSWERED, chapter_numbers=numbers)

        return ChapterAnswer(
            question=question,
            answer=response.strip(),
            chapter_numbers=numbers,
            answered=True,
        )

    def build_retrieved_context_block(
        self,
        chapters: Sequence[Chapter],
        decision: RetrievalDecision,
    ) -> str:
        """Render the chapters a decision selected, in story order."""
        if not decision.should_retrieve:
            return ""

        wanted = set(decision.relevant_chapter_ids)
        relevant = sorted((c for c in chapters if c.id in wanted), key=lambda c: c.number)
        if not relevant:
            return ""

        block = "\n\n[FROM EARLIER IN THE STORY]"
        for chapter in relevant:
            block += f'\n\n• Chapter {chapter.number} - "{chapter.title or "Untitled"}":\n{chapter.summary}'
            if chapter.keywords:
                block += f"\n[Keywords: {', '.join(chapter.keywords)}]"
        return block
