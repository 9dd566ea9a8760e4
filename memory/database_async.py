"""
Async database operations for story memory.
Lorebook entries, chapters and sticky activations, scoped by story and branch.
"""

import functools
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from config.settings import settings
from core import (
    get_logger,
    StoryEngineException,
    DatabaseException,
    RecordNotFoundError,
    DuplicateRecordError,
    ChapterIntegrityError,
    BranchNotFoundError,
    InvalidInputError,
)
from memory.activation import ActivationTracker
from memory.models import Base, LorebookEntryRecord, ChapterRecord, EntryActivationRecord
from schemas import Entry, Chapter

logger = get_logger(__name__)

# Fields callers may change on an existing chapter
CHAPTER_MUTABLE_FIELDS = {
    "title",
    "summary",
    "keywords",
    "characters",
    "locations",
    "plot_threads",
    "emotional_tone",
    "start_time",
    "end_time",
}


def db_operation(name: str):
    """
    Retry transient connection failures, then translate SQLAlchemy errors.

    Domain exceptions raised inside the operation pass through unchanged.
    """

    def decorator(func_):
        retrying = retry(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(OperationalError),
            reraise=True,
        )(func_)

        @functools.wraps(func_)
        async def wrapper(*args, **kwargs):
            try:
                return await retrying(*args, **kwargs)
            except StoryEngineException:
                raise
            except SQLAlchemyError as e:
                logger.error(f"Failed to {name}", error=str(e))
                raise DatabaseException(f"Failed to {name}: {e}")

        return wrapper

    return decorator


def _branch_clause(model, branch_id: Optional[str]):
    if branch_id is None:
        return model.branch_id.is_(None)
    return model.branch_id == branch_id


class AsyncStoryDatabase:
    """
    Async persistence for lorebook entries, chapters and activations.

    Chapters in a branch are append-only and contiguous; the database
    refuses a chapter that would overlap, leave a gap or skip a number.
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        """Initialize async database engine and session factory."""
        db_url = database_url or settings.DATABASE_URL
        if db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+asyncpg://")

        engine_kwargs: Dict[str, Any] = {
            "echo": settings.LOG_LEVEL == "DEBUG" if echo is None else echo,
            "pool_pre_ping": True,
        }
        if not db_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600)

        self.engine: AsyncEngine = create_async_engine(db_url, **engine_kwargs)

        self.async_session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        logger.info("Async database engine initialized", db_url=db_url.split("@")[-1])

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for database sessions with automatic cleanup.

        Yields:
            AsyncSession instance
        """
        async with self.async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Session rolled back", error=str(e))
                raise
            finally:
                await session.close()

    async def create_tables(self) -> None:
        """Create all database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop all database tables (use with caution)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Database tables dropped")

    async def close(self) -> None:
        await self.engine.dispose()

    # ==================== Lorebook Entries ====================

    @db_operation("add entry")
    async def add_entry(self, entry: Entry) -> Entry:
        """
        Persist a lorebook entry.

        Raises:
            InvalidInputError: entry is a live pseudo-entry or has no story
            DuplicateRecordError: an entry with this ID already exists
        """
        if entry.is_live:
            raise InvalidInputError("origin", "live entries are derived per turn and never stored")
        if not entry.story_id:
            raise InvalidInputError("story_id", "required for stored entries")

        data = entry.model_dump(mode="json", exclude={"origin"})
        try:
            async with self.get_session() as session:
                record = LorebookEntryRecord(**data)
                session.add(record)
                await session.flush()
                logger.debug(
                    "Added entry",
                    entry_id=record.id,
                    story_id=record.story_id,
                    type=record.type,
                )
                return Entry.model_validate(record)
        except IntegrityError:
            raise DuplicateRecordError("LorebookEntry", "id", entry.id)

    @db_operation("get entry")
    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        async with self.get_session() as session:
            record = await session.get(LorebookEntryRecord, entry_id)
            return Entry.model_validate(record) if record else None

    @db_operation("list entries")
    async def list_entries(
        self,
        story_id: str,
        branch_id: Optional[str] = None,
        entry_type: Optional[str] = None,
    ) -> List[Entry]:
        """
        Get all lorebook entries for a story branch, oldest first.

        Args:
            story_id: Story ID
            branch_id: Branch ID (None = main timeline)
            entry_type: Optional type filter ("character", "location", ...)

        Returns:
            List of Entry
        """
        async with self.get_session() as session:
            query = select(LorebookEntryRecord).where(
                LorebookEntryRecord.story_id == story_id,
                _branch_clause(LorebookEntryRecord, branch_id),
            )
            if entry_type:
                query = query.where(LorebookEntryRecord.type == entry_type)
            query = query.order_by(LorebookEntryRecord.created_at, LorebookEntryRecord.id)

            result = await session.execute(query)
            return [Entry.model_validate(r) for r in result.scalars().all()]

    @db_operation("update entry")
    async def update_entry(self, entry: Entry) -> Entry:
        """
        Replace a stored entry with ``entry``.

        Raises:
            RecordNotFoundError: no entry with this ID
        """
        data = entry.model_dump(mode="json", exclude={"origin", "id"})
        async with self.get_session() as session:
            record = await session.get(LorebookEntryRecord, entry.id)
            if record is None:
                raise RecordNotFoundError("LorebookEntry", entry.id)

            for key, value in data.items():
                setattr(record, key, value)
            record.updated_at = datetime.utcnow()
            await session.flush()

            logger.debug("Updated entry", entry_id=entry.id)
            return Entry.model_validate(record)

    @db_operation("delete entry")
    async def delete_entry(self, entry_id: str) -> None:
        """
        Delete an entry and any activation recorded for it.

        Raises:
            RecordNotFoundError: no entry with this ID
        """
        async with self.get_session() as session:
            record = await session.get(LorebookEntryRecord, entry_id)
            if record is None:
                raise RecordNotFoundError("LorebookEntry", entry_id)

            await session.execute(
                delete(EntryActivationRecord).where(EntryActivationRecord.entry_id == entry_id)
            )
            await session.delete(record)
            logger.info("Deleted entry", entry_id=entry_id)

    # ==================== Chapters ====================

    async def _branch_chapters(
        self, session: AsyncSession, story_id: str, branch_id: Optional[str]
    ) -> List[ChapterRecord]:
        result = await session.execute(
            select(ChapterRecord)
            .where(
                ChapterRecord.story_id == story_id,
                _branch_clause(ChapterRecord, branch_id),
            )
            .order_by(ChapterRecord.number)
        )
        return list(result.scalars().all())

    @db_operation("add chapter")
    async def add_chapter(self, chapter: Chapter) -> Chapter:
        """
        Append a chapter to its branch.

        Raises:
            ChapterIntegrityError: wrong sequence number, or the chapter's
                span overlaps the previous chapter or leaves a gap after it
            DuplicateRecordError: a chapter with this ID already exists
        """
        try:
            async with self.get_session() as session:
                existing = await self._branch_chapters(session, chapter.story_id, chapter.branch_id)
                expected_number = existing[-1].number + 1 if existing else 1

                if chapter.number != expected_number:
                    raise ChapterIntegrityError(
                        chapter.id,
                        f"expected chapter number {expected_number}, got {chapter.number}",
                    )

                if (
                    chapter.start_position is not None
                    and chapter.end_position is not None
                    and chapter.end_position < chapter.start_position
                ):
                    raise ChapterIntegrityError(chapter.id, "chapter ends before it starts")

                if existing and chapter.start_position is not None:
                    previous_end = existing[-1].end_position
                    if previous_end is not None and chapter.start_position <= previous_end:
                        raise ChapterIntegrityError(
                            chapter.id,
                            f"starts at {chapter.start_position}, inside chapter "
                            f"{existing[-1].number} ending at {previous_end}",
                        )
                    if previous_end is not None and chapter.start_position > previous_end + 1:
                        raise ChapterIntegrityError(
                            chapter.id,
                            f"starts at {chapter.start_position}, leaving a gap after chapter "
                            f"{existing[-1].number} ending at {previous_end}",
                        )

                record = ChapterRecord(**chapter.model_dump())
                session.add(record)
                await session.flush()

                logger.info(
                    "Added chapter",
                    story_id=chapter.story_id,
                    branch_id=chapter.branch_id,
                    number=chapter.number,
                    entry_count=chapter.entry_count,
                )
                return Chapter.model_validate(record)
        except IntegrityError:
            raise DuplicateRecordError("Chapter", "id", chapter.id)

    @db_operation("get chapter")
    async def get_chapter(self, chapter_id: str) -> Optional[Chapter]:
        async with self.get_session() as session:
            record = await session.get(ChapterRecord, chapter_id)
            return Chapter.model_validate(record) if record else None

    @db_operation("list chapters")
    async def list_chapters(self, story_id: str, branch_id: Optional[str] = None) -> List[Chapter]:
        """Get a branch's chapters in ascending number order."""
        async with self.get_session() as session:
            records = await self._branch_chapters(session, story_id, branch_id)
            return [Chapter.model_validate(r) for r in records]

    @db_operation("update chapter")
    async def update_chapter(self, chapter_id: str, **fields: Any) -> Chapter:
        """
        Update a chapter's summary fields in place.

        Boundaries and numbering are immutable once a chapter exists.

        Raises:
            InvalidInputError: a field outside the summary fields was given
            RecordNotFoundError: no chapter with this ID
        """
        unknown = set(fields) - CHAPTER_MUTABLE_FIELDS
        if unknown:
            raise InvalidInputError(", ".join(sorted(unknown)), "chapter field is not updatable")

        async with self.get_session() as session:
            record = await session.get(ChapterRecord, chapter_id)
            if record is None:
                raise RecordNotFoundError("Chapter", chapter_id)

            for key, value in fields.items():
                setattr(record, key, value)
            await session.flush()

            logger.debug("Updated chapter", chapter_id=chapter_id, fields=sorted(fields))
            return Chapter.model_validate(record)

    @db_operation("get next chapter number")
    async def next_chapter_number(self, story_id: str, branch_id: Optional[str] = None) -> int:
        async with self.get_session() as session:
            result = await session.execute(
                select(func.max(ChapterRecord.number)).where(
                    ChapterRecord.story_id == story_id,
                    _branch_clause(ChapterRecord, branch_id),
                )
            )
            current = result.scalar_one_or_none()
            return (current or 0) + 1

    # ==================== Activations ====================

    @db_operation("save activations")
    async def save_activations(
        self,
        story_id: str,
        branch_id: Optional[str],
        tracker: ActivationTracker,
    ) -> int:
        """
        Replace the stored activations for a branch with the tracker's.

        Returns:
            Number of activations stored
        """
        snapshot = tracker.to_dict()
        async with self.get_session() as session:
            await session.execute(
                delete(EntryActivationRecord).where(
                    EntryActivationRecord.story_id == story_id,
                    _branch_clause(EntryActivationRecord, branch_id),
                )
            )
            session.add_all(
                EntryActivationRecord(
                    story_id=story_id,
                    branch_id=branch_id,
                    entry_id=entry_id,
                    turn=turn,
                )
                for entry_id, turn in snapshot.items()
            )
            logger.debug("Saved activations", story_id=story_id, branch_id=branch_id, count=len(snapshot))
            return len(snapshot)

    @db_operation("load activations")
    async def load_activations(self, story_id: str, branch_id: Optional[str] = None) -> ActivationTracker:
        async with self.get_session() as session:
            result = await session.execute(
                select(EntryActivationRecord).where(
                    EntryActivationRecord.story_id == story_id,
                    _branch_clause(EntryActivationRecord, branch_id),
                )
            )
            return ActivationTracker.from_dict(
                {r.entry_id: r.turn for r in result.scalars().all()}
            )

    # ==================== Branches ====================

    @db_operation("delete branch")
    async def delete_branch(self, story_id: str, branch_id: Optional[str]) -> Dict[str, int]:
        """
        Delete everything a branch owns.

        Returns:
            Deleted row counts per table

        Raises:
            BranchNotFoundError: the branch owns nothing
        """
        async with self.get_session() as session:
            counts = {}
            for label, model in (
                ("entries", LorebookEntryRecord),
                ("chapters", ChapterRecord),
                ("activations", EntryActivationRecord),
            ):
                result = await session.execute(
                    delete(model).where(
                        model.story_id == story_id,
                        _branch_clause(model, branch_id),
                    )
                )
                counts[label] = result.rowcount or 0

            if not any(counts.values()):
                raise BranchNotFoundError(story_id, branch_id)

            logger.info("Deleted branch", story_id=story_id, branch_id=branch_id, **counts)
            return counts
