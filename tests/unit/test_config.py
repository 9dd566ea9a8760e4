"""
Tests for settings and per-service configuration.
"""

import pytest
from pydantic import ValidationError

from config.retrieval import DEFAULT_STICKINESS_BY_TYPE, EntryRetrievalConfig, MemoryConfig
from config.settings import Settings
from schemas import EntryType


class TestEntryRetrievalConfig:
    def test_defaults(self):
        config = EntryRetrievalConfig()

        assert config.max_tier3_entries == 0
        assert config.max_words_per_entry == 0
        assert config.enable_llm_selection is True
        assert config.recent_entries_count == 5
        assert config.stickiness_by_type == DEFAULT_STICKINESS_BY_TYPE
        assert config.max_stickiness == 5

    @pytest.mark.parametrize("value,expected", [(-3, 0), (120, 120), (9000, 500)])
    def test_max_words_clamped(self, value, expected):
        assert EntryRetrievalConfig(max_words_per_entry=value).max_words_per_entry == expected

    def test_partial_stickiness_filled_from_defaults(self):
        config = EntryRetrievalConfig(stickiness_by_type={EntryType.ITEM: 7})

        assert config.stickiness_for(EntryType.ITEM) == 7
        assert config.stickiness_for(EntryType.CONCEPT) == 5
        assert config.max_stickiness == 7

    def test_negative_tier3_cap_rejected(self):
        with pytest.raises(ValidationError):
            EntryRetrievalConfig(max_tier3_entries=-1)

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("ENTRY_RETRIEVAL_MAX_TIER3", "4")
        monkeypatch.setenv("ENTRY_RETRIEVAL_ENABLE_LLM", "false")
        monkeypatch.setenv("MODEL_ENTRY_SELECTION", "gpt-4o-mini")

        config = EntryRetrievalConfig.from_settings(Settings(_env_file=None))

        assert config.max_tier3_entries == 4
        assert config.enable_llm_selection is False
        assert config.tier3_model == "gpt-4o-mini"


class TestMemoryConfig:
    def test_defaults(self):
        config = MemoryConfig()

        assert config.token_threshold == 24000
        assert config.chapter_buffer == 10
        assert config.max_chapters_per_retrieval == 3

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("MEMORY_TOKEN_THRESHOLD", "5000")
        monkeypatch.setenv("MEMORY_CHAPTER_BUFFER", "4")

        config = MemoryConfig.from_settings(Settings(_env_file=None))

        assert config.token_threshold == 5000
        assert config.chapter_buffer == 4


class TestSettings:
    def test_rejects_unknown_database_driver(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "mysql://localhost/story")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
