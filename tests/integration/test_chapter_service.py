"""
Chapter creation against a real SQLite database with a scripted judge.
"""

import json

import pytest
from unittest.mock import AsyncMock

from config.retrieval import MemoryConfig
from core import EntryNotFoundError, RecordNotFoundError
from memory.chapter_memory import ChapterMemoryService
from memory.chapter_service import ChapterService


class ScriptedJudge:
    """Answers boundary prompts with queued endpoints and summary prompts with fixed JSON."""

    def __init__(self, chapter_ends, title=None, summary_response=None):
        self.chapter_ends = list(chapter_ends)
        self.title = title
        self.summary_response = summary_response or json.dumps(
            {
                "summary": "Things happened.",
                "title": "Summary Title",
                "keywords": ["harbor"],
                "characters": ["Rook"],
                "plotThreads": ["Find the map"],
                "emotionalTone": "tense",
            }
        )
        self.generate = AsyncMock(side_effect=self._respond)

    async def _respond(self, system_prompt, user_prompt, **kwargs):
        if "endpoint selector" in system_prompt:
            payload = {"chapterEnd": self.chapter_ends.pop(0)}
            if self.title:
                payload["suggestedTitle"] = self.title
            return json.dumps(payload)
        return self.summary_response


@pytest.fixture
def transcript(transcript_builder):
    return transcript_builder().turns(20, tokens_each=500).build()


def make_service(judge, story_db, **config_overrides):
    config = MemoryConfig(
        token_threshold=1000, chapter_buffer=2, model="test-model", **config_overrides
    )
    return ChapterService(ChapterMemoryService(judge, config), story_db, config)


class TestCheckAndCreateChapter:
    async def test_first_chapter(self, story_db, transcript):
        service = make_service(ScriptedJudge([8], title="Into the Harbor"), story_db)

        result = await service.check_and_create_chapter("story-1", None, transcript)

        assert result.created is True
        chapter = result.chapter
        assert chapter.number == 1
        assert chapter.title == "Into the Harbor"
        assert chapter.start_entry_id == "msg-0"
        assert chapter.end_entry_id == "msg-7"
        assert chapter.entry_count == 8
        assert chapter.plot_threads == ["Find the map"]

        stored = await story_db.list_chapters("story-1")
        assert [c.id for c in stored] == [chapter.id]

    async def test_title_falls_back_to_summary(self, story_db, transcript):
        service = make_service(ScriptedJudge([8]), story_db)

        result = await service.check_and_create_chapter("story-1", None, transcript)

        assert result.chapter.title == "Summary Title"

    async def test_boundaries_move_forward(self, story_db, transcript):
        """A stale endpoint from the judge is clamped past the previous chapter."""
        service = make_service(ScriptedJudge([8, 3, 18]), story_db)

        first = await service.check_and_create_chapter("story-1", None, transcript)
        second = await service.check_and_create_chapter("story-1", None, transcript)
        third = await service.check_and_create_chapter("story-1", None, transcript)

        assert [r.chapter.number for r in (first, second, third)] == [1, 2, 3]
        assert (first.chapter.start_position, first.chapter.end_position) == (0, 7)
        assert (second.chapter.start_position, second.chapter.end_position) == (8, 8)
        assert (third.chapter.start_position, third.chapter.end_position) == (9, 17)

        fourth = await service.check_and_create_chapter("story-1", None, transcript)
        assert fourth.created is False

    async def test_below_threshold(self, story_db, transcript_builder):
        judge = ScriptedJudge([])
        service = make_service(judge, story_db)
        transcript = transcript_builder().turns(4, tokens_each=10).build()

        result = await service.check_and_create_chapter("story-1", None, transcript)

        assert result.created is False
        judge.generate.assert_not_awaited()

    async def test_auto_summarize_disabled(self, story_db, transcript):
        judge = ScriptedJudge([8])
        service = make_service(judge, story_db, auto_summarize=False)

        result = await service.check_and_create_chapter("story-1", None, transcript)

        assert result.created is False
        assert result.reason == "auto-summarize disabled"
        judge.generate.assert_not_awaited()

    async def test_branches_are_independent(self, story_db, transcript):
        service = make_service(ScriptedJudge([8, 4]), story_db)

        await service.check_and_create_chapter("story-1", None, transcript)
        branch = await service.check_and_create_chapter("story-1", "branch-a", transcript)

        assert branch.chapter.number == 1
        assert branch.chapter.start_position == 0

    async def test_missing_chapter_entry_is_integrity_error(self, story_db, transcript):
        service = make_service(ScriptedJudge([8]), story_db)
        await service.check_and_create_chapter("story-1", None, transcript)

        with pytest.raises(EntryNotFoundError):
            await service.check_and_create_chapter("story-1", None, transcript[10:])


class TestResummarize:
    async def test_updates_summary_fields(self, story_db, transcript):
        judge = ScriptedJudge([8], title="Kept Title")
        service = make_service(judge, story_db)
        created = await service.check_and_create_chapter("story-1", None, transcript)

        judge.summary_response = json.dumps({"summary": "Retold.", "title": "New", "keywords": ["map"]})
        updated = await service.resummarize("story-1", None, created.chapter.id, transcript)

        assert updated.summary == "Retold."
        assert updated.keywords == ["map"]
        assert updated.title == "Kept Title"

    async def test_failure_keeps_previous_summary(self, story_db, transcript):
        judge = ScriptedJudge([8])
        service = make_service(judge, story_db)
        created = await service.check_and_create_chapter("story-1", None, transcript)

        judge.summary_response = "no json here"
        result = await service.resummarize("story-1", None, created.chapter.id, transcript)

        assert result.summary == "Things happened."

    async def test_empty_object_reply_is_applied(self, story_db, transcript):
        """An empty but valid reply is a summary with defaults, not a failure."""
        judge = ScriptedJudge([8])
        service = make_service(judge, story_db)
        created = await service.check_and_create_chapter("story-1", None, transcript)

        judge.summary_response = "{}"
        result = await service.resummarize("story-1", None, created.chapter.id, transcript)

        assert result.summary == "Summary unavailable."
        assert result.keywords == []
        assert (await story_db.get_chapter(created.chapter.id)).summary == "Summary unavailable."

    async def test_unknown_chapter(self, story_db, transcript):
        service = make_service(ScriptedJudge([]), story_db)

        with pytest.raises(RecordNotFoundError):
            await service.resummarize("story-1", None, "missing", transcript)
