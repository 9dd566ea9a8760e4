"""
Tests for chapter boundary analysis, summarization and recall.

Every judge-backed operation must degrade to a safe default instead of
raising, so most tests here exercise a failure path next to the happy one.
"""

import json

import pytest
from unittest.mock import AsyncMock

from config.retrieval import MemoryConfig
from core import JudgeResponseParseError
from memory.chapter_memory import ChapterMemoryService
from schemas import Chapter, ChapterQuery, ChapterSummary, RetrievalDecision


def make_chapter(number: int, chapter_id: str = None, summary: str = None, **kwargs) -> Chapter:
    return Chapter(
        id=chapter_id or f"ch-{number}",
        story_id="story-1",
        number=number,
        title=kwargs.pop("title", f"Chapter Title {number}"),
        start_entry_id=f"msg-{number * 10}",
        end_entry_id=f"msg-{number * 10 + 9}",
        entry_count=10,
        summary=summary or f"Summary of chapter {number}.",
        **kwargs,
    )


@pytest.fixture
def memory(mock_judge, memory_config):
    return ChapterMemoryService(mock_judge, memory_config)


class TestBoundaryThreshold:
    """When a chapter should be cut at all."""

    async def test_below_threshold_no_call(self, memory, mock_judge, transcript_builder):
        transcript = transcript_builder().turns(12, tokens_each=100).build()

        analysis = await memory.analyze_chapter_boundary(
            transcript, 0, token_threshold=1000, buffer=2, tokens_outside_buffer=999
        )

        assert analysis.should_create is False
        assert analysis.end_index == -1
        mock_judge.generate.assert_not_awaited()

    async def test_computes_tokens_when_not_supplied(self, memory, mock_judge, transcript_builder):
        """Ten entries outside a buffer of two at 100 tokens each reach 1000."""
        transcript = transcript_builder().turns(12, tokens_each=100).build()
        mock_judge.generate = AsyncMock(return_value='{"chapterEnd": 6}')

        analysis = await memory.analyze_chapter_boundary(transcript, 0)

        assert analysis.should_create is True
        assert analysis.end_index == 6

    async def test_one_under_computed_threshold(self, memory, transcript_builder):
        transcript = transcript_builder().turns(12, tokens_each=100).build()

        analysis = await memory.analyze_chapter_boundary(transcript, 0, token_threshold=1001)

        assert analysis.should_create is False

    async def test_empty_window(self, memory, mock_judge, transcript_builder):
        """Everything after the last boundary is inside the buffer."""
        transcript = transcript_builder().turns(12).build()

        analysis = await memory.analyze_chapter_boundary(
            transcript, 10, buffer=2, tokens_outside_buffer=50_000
        )

        assert analysis.should_create is False
        mock_judge.generate.assert_not_awaited()


class TestBoundarySelection:
    """Parsing and clamping the judge's chosen endpoint."""

    @pytest.fixture
    def transcript(self, transcript_builder):
        return transcript_builder().turns(20, tokens_each=500).build()

    async def test_prompt_uses_absolute_ids(self, memory, mock_judge, transcript):
        mock_judge.generate = AsyncMock(return_value='{"chapterEnd": 12}')

        await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        prompt = mock_judge.generate.await_args.kwargs["user_prompt"]
        assert "First valid message ID: 6" in prompt
        assert "Last valid message ID: 18" in prompt
        assert "Message 6:\n[NARRATION] narration 5" in prompt
        assert "\n\n---\n\n" in prompt

    async def test_chapter_end_and_title(self, memory, mock_judge, transcript):
        mock_judge.generate = AsyncMock(
            return_value='{"chapterEnd": 12, "suggestedTitle": "Storm at Sea"}'
        )

        analysis = await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        assert analysis.end_index == 12
        assert analysis.suggested_title == "Storm at Sea"

    @pytest.mark.parametrize(
        "chapter_end,expected",
        [(1, 6), (6, 6), (18, 18), (500, 18)],
    )
    async def test_chapter_end_clamped(self, memory, mock_judge, transcript, chapter_end, expected):
        mock_judge.generate = AsyncMock(return_value=json.dumps({"chapterEnd": chapter_end}))

        analysis = await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        assert analysis.end_index == expected

    @pytest.mark.parametrize(
        "relative,expected",
        [(4, 9), (0, 6), (99, 18)],
    )
    async def test_legacy_relative_index(self, memory, mock_judge, transcript, relative, expected):
        mock_judge.generate = AsyncMock(return_value=json.dumps({"optimalEndIndex": relative}))

        analysis = await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        assert analysis.end_index == expected

    async def test_no_endpoint_keys_uses_window_end(self, memory, mock_judge, transcript):
        mock_judge.generate = AsyncMock(return_value='{"suggestedTitle": "Untethered"}')

        analysis = await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        assert analysis.end_index == 18
        assert analysis.suggested_title == "Untethered"

    async def test_prose_integer_fallback(self, memory, mock_judge, transcript):
        mock_judge.generate = AsyncMock(return_value="I'd end the chapter at message 14.")

        analysis = await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        assert analysis.end_index == 14

    async def test_judge_failure_uses_window_end(self, memory, mock_judge, transcript):
        mock_judge.generate = AsyncMock(side_effect=TimeoutError("slow"))

        analysis = await memory.analyze_chapter_boundary(transcript, 5, buffer=2)

        assert analysis.should_create is True
        assert analysis.end_index == 18

    async def test_no_judge_uses_window_end(self, memory_config, transcript):
        memory = ChapterMemoryService(None, memory_config)

        analysis = await memory.analyze_chapter_boundary(transcript, 0, buffer=2)

        assert analysis.should_create is True
        assert analysis.end_index == 18


class TestSummarize:
    async def test_parses_summary(self, memory, mock_judge, transcript_builder):
        entries = transcript_builder().action("I draw my sword.").narration("The troll roars.").build()
        mock_judge.generate = AsyncMock(
            return_value=json.dumps(
                {
                    "summary": "A troll fight begins.",
                    "title": "Under the Bridge",
                    "keywords": ["troll", "bridge"],
                    "characters": ["Troll"],
                    "locations": ["Bridge"],
                    "plotThreads": ["Cross the river"],
                    "emotionalTone": "tense",
                }
            )
        )

        summary = await memory.summarize_chapter(entries)

        assert summary.title == "Under the Bridge"
        assert summary.plot_threads == ["Cross the river"]
        assert summary.emotional_tone == "tense"

        prompt = mock_judge.generate.await_args.kwargs["user_prompt"]
        assert "[ACTION]: I draw my sword." in prompt
        assert "previous_chapter_summaries" not in prompt

    async def test_previous_chapters_in_order(self, memory, mock_judge, transcript_builder):
        entries = transcript_builder().narration("Later.").build()
        mock_judge.generate = AsyncMock(return_value='{"summary": "x", "title": "y"}')

        await memory.summarize_chapter(entries, [make_chapter(2), make_chapter(1)])

        prompt = mock_judge.generate.await_args.kwargs["user_prompt"]
        assert prompt.index("Chapter 1:") < prompt.index("Chapter 2:")
        assert "NOT what you will be summarizing" in prompt

    async def test_missing_fields_defaulted(self, memory, mock_judge, transcript_builder):
        mock_judge.generate = AsyncMock(return_value='{"summary": "Short.", "keywords": "oops"}')

        summary = await memory.summarize_chapter(transcript_builder().narration("x").build())

        assert summary.summary == "Short."
        assert summary.title == "Untitled Chapter"
        assert summary.keywords == []
        assert summary.emotional_tone == "neutral"

    @pytest.mark.parametrize("response", ["not json", "[1, 2]"])
    async def test_unparseable_gives_placeholder(self, memory, mock_judge, transcript_builder, response):
        mock_judge.generate = AsyncMock(return_value=response)

        summary = await memory.summarize_chapter(transcript_builder().narration("x").build())

        assert summary == ChapterSummary.placeholder()
        assert summary.summary == "Summary unavailable."

    async def test_resummarize_uses_only_earlier_chapters(self, memory, mock_judge, transcript_builder):
        mock_judge.generate = AsyncMock(return_value='{"summary": "x", "title": "y"}')
        chapters = [make_chapter(n, summary=f"Events {n}.") for n in (1, 2, 3, 4)]

        await memory.resummarize_chapter(
            chapters[2], transcript_builder().narration("x").build(), chapters
        )

        prompt = mock_judge.generate.await_args.kwargs["user_prompt"]
        assert "Events 1." in prompt
        assert "Events 2." in prompt
        assert "Events 3." not in prompt
        assert "Events 4." not in prompt

    async def test_resummarize_raises_instead_of_placeholder(self, memory, mock_judge, transcript_builder):
        mock_judge.generate = AsyncMock(return_value="not json")
        chapters = [make_chapter(1)]

        with pytest.raises(JudgeResponseParseError):
            await memory.resummarize_chapter(
                chapters[0], transcript_builder().narration("x").build(), chapters
            )


class TestRetrievalDecision:
    async def test_disabled_skips_call(self, mock_judge):
        memory = ChapterMemoryService(mock_judge, MemoryConfig(enable_retrieval=False))

        decision = await memory.decide_chapter_retrieval("hi", [], [make_chapter(1)])

        assert decision.should_retrieve is False
        mock_judge.generate.assert_not_awaited()

    async def test_no_chapters_skips_call(self, memory, mock_judge):
        decision = await memory.decide_chapter_retrieval("hi", [], [])

        assert decision == RetrievalDecision.nothing_relevant()
        mock_judge.generate.assert_not_awaited()

    async def test_unknown_ids_dropped_and_capped(self, memory, mock_judge):
        chapters = [make_chapter(n) for n in (1, 2, 3, 4)]
        mock_judge.generate = AsyncMock(
            return_value=json.dumps(
                {
                    "relevantChapterIds": ["ch-9", "ch-1", "ch-3", "ch-2", "ch-4"],
                    "queries": [
                        {"chapterId": "ch-9", "question": "Ghost?"},
                        {"chapterId": "ch-1", "question": "Who is Rook?"},
                        {"chapterId": "ch-3"},
                    ],
                }
            )
        )

        decision = await memory.decide_chapter_retrieval("Rook?", [], chapters, max_chapters=2)

        assert decision.relevant_chapter_ids == ["ch-1", "ch-3"]
        assert decision.sub_questions == [ChapterQuery(chapter_id="ch-1", question="Who is Rook?")]

    async def test_failure_returns_empty(self, memory, mock_judge):
        mock_judge.generate = AsyncMock(side_effect=RuntimeError("down"))

        decision = await memory.decide_chapter_retrieval("hi", [], [make_chapter(1)])

        assert decision.relevant_chapter_ids == []
        assert decision.sub_questions == []


class TestChapterQuestions:
    async def test_answers_from_entries_or_summary(self, memory, mock_judge, transcript_builder):
        mock_judge.generate = AsyncMock(return_value=" Rook is a smuggler. ")
        chapters = [make_chapter(2, summary="Rook appears."), make_chapter(1)]
        entries = {"ch-1": transcript_builder().narration("Rook docks the ship.").build()}

        answer = await memory.answer_chapter_question("Who is Rook?", chapters, entries)

        assert answer.answered is True
        assert answer.answer == "Rook is a smuggler."
        assert answer.chapter_numbers == [1, 2]
        prompt = mock_judge.generate.await_args.kwargs["user_prompt"]
        assert "[NARRATION]: Rook docks the ship." in prompt
        assert "[Summary only] Rook appears." in prompt

    async def test_failure_fallback(self, memory, mock_judge):
        mock_judge.generate = AsyncMock(side_effect=RuntimeError("down"))

        answer = await memory.answer_chapter_question("Who?", [make_chapter(1)])

        assert answer.answered is False
        assert answer.answer == "Unable to answer the question."

    async def test_no_chapters(self, memory, mock_judge):
        answer = await memory.answer_chapter_question("Who?", [])

        assert answer.answered is False
        mock_judge.generate.assert_not_awaited()


class TestRetrievedContextBlock:
    def test_renders_selected_chapters_in_order(self, memory):
        chapters = [
            make_chapter(1, title="Arrival", summary="We land."),
            make_chapter(2, title="Storm", summary="It rains.", keywords=["rain"]),
            make_chapter(3),
        ]
        decision = RetrievalDecision(relevant_chapter_ids=["ch-2", "ch-1"])

        block = memory.build_retrieved_context_block(chapters, decision)

        assert block == (
            "\n\n[FROM EARLIER IN THE STORY]"
            '\n\n• Chapter 1 - "Arrival":\nWe land.'
            '\n\n• Chapter 2 - "Storm":\nIt rains.\n[Keywords: rain]'
        )

    def test_empty_decision(self, memory):
        assert memory.build_retrieved_context_block([make_chapter(1)], RetrievalDecision()) == ""
