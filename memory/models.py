"""
SQLAlchemy models for story memory.
Defines the tables behind the lorebook, chapters and sticky activations.
"""

from datetime import datetime
from sqlalchemy import (
    Column,
    Index,
    Integer,
    String,
    Text,
    DateTime,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class LorebookEntryRecord(Base):
    """Lorebook entries - characters, places, items, factions, lore and events."""

    __tablename__ = "lorebook_entries"
    __table_args__ = (
        Index("idx_lorebook_entries_story_branch", "story_id", "branch_id"),
    )

    id = Column(String(64), primary_key=True)
    story_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64), nullable=True)  # None = main timeline
    type = Column(String(32), nullable=False)
    name = Column(String(255), nullable=False)
    aliases = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=False, default="")
    hidden_info = Column(Text, nullable=True)
    state = Column(JSON, nullable=True)  # type-specific state, tagged by "type"
    injection = Column(JSON, nullable=False, default=dict)  # mode, keywords, priority
    first_mentioned = Column(Integer, nullable=True)
    last_mentioned = Column(Integer, nullable=True)
    mention_count = Column(Integer, nullable=False, default=0)
    created_by = Column(String(16), nullable=False, default="user")
    created_at = Column(DateTime, default=lambda: datetime.utcnow(), nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.utcnow(), nullable=False)

    def __repr__(self):
        return f"<LorebookEntryRecord(id='{self.id}', type='{self.type}', name='{self.name}')>"


class ChapterRecord(Base):
    """Chapters - summarized, contiguous spans of a branch transcript."""

    __tablename__ = "chapters"
    __table_args__ = (
        UniqueConstraint("story_id", "branch_id", "number", name="uq_chapters_branch_number"),
        Index("idx_chapters_story_branch", "story_id", "branch_id"),
    )

    id = Column(String(64), primary_key=True)
    story_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64), nullable=True)
    number = Column(Integer, nullable=False)
    title = Column(String(500), nullable=True)
    start_entry_id = Column(String(64), nullable=False)
    end_entry_id = Column(String(64), nullable=False)
    entry_count = Column(Integer, nullable=False)
    start_position = Column(Integer, nullable=True)
    end_position = Column(Integer, nullable=True)  # inclusive
    summary = Column(Text, nullable=False, default="")
    start_time = Column(String(100), nullable=True)  # in-fiction clock
    end_time = Column(String(100), nullable=True)
    keywords = Column(JSON, nullable=False, default=list)
    characters = Column(JSON, nullable=False, default=list)
    locations = Column(JSON, nullable=False, default=list)
    plot_threads = Column(JSON, nullable=False, default=list)
    emotional_tone = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.utcnow(), nullable=False)

    def __repr__(self):
        return f"<ChapterRecord(story_id='{self.story_id}', number={self.number}, title='{self.title}')>"


class EntryActivationRecord(Base):
    """Last transcript position at which an entry was surfaced by keyword or judge."""

    __tablename__ = "entry_activations"
    __table_args__ = (
        Index("idx_entry_activations_story_branch", "story_id", "branch_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    story_id = Column(String(64), nullable=False)
    branch_id = Column(String(64), nullable=True)
    entry_id = Column(String(64), nullable=False)
    turn = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<EntryActivationRecord(entry_id='{self.entry_id}', turn={self.turn})>"
