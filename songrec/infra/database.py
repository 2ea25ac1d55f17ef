"""
Database Layer using SQLite

SYSTEM DESIGN DECISION: Why SQLite?
====================================

- Zero configuration, file-based, no server to run
- The scoring core loads a snapshot per request and computes in memory,
  so the store only has to serve simple indexed reads
- Upgrade path: same SQLAlchemy models on PostgreSQL when several API
  servers need one shared store

SCHEMA:
=======
    songs          one row per catalogue entry, audio features as nullable columns
    song_genres    (song_id, name)
    song_moods     (song_id, name)
    user_events    play / skip / like / rating signals

A NULL feature column is a missing feature. Zero-as-missing for the
sentinel features is applied when rows become Song values, never in SQL
writes, so stored data is not rewritten behind the caller's back.
"""

import os
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional

from loguru import logger
from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, and_, func, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship

from songrec import settings
from songrec.errors import SongNotFoundError
from songrec.infra.repositories import SongFilter
from songrec.models.entities import EventKind, Song, SongId, UserId, UserPreferenceEvent
from songrec.models.features import CORE_FEATURES, FEATURE_NAMES, FeatureVector

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


# ============================================================================
# DATA MODELS
# ============================================================================

class SongRecord(Base):
    """Catalogue entry with audio features"""
    __tablename__ = "songs"

    song_id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    artist = Column(String(200), nullable=False)
    album = Column(String(200))
    year = Column(Integer)

    # Audio features (NULL = missing)
    energy = Column(Float)
    danceability = Column(Float)
    valence = Column(Float)
    tempo = Column(Float)
    acousticness = Column(Float)
    instrumentalness = Column(Float)
    liveness = Column(Float)
    speechiness = Column(Float)
    loudness = Column(Float)
    mode = Column(Float)
    key = Column(Float)
    time_signature = Column(Float)

    # Aggregates
    popularity = Column(Float)
    play_count = Column(Integer, default=0, nullable=False)
    like_count = Column(Integer, default=0, nullable=False)
    avg_rating = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=_utcnow)

    genres = relationship("SongGenreRecord", cascade="all, delete-orphan", lazy="selectin")
    moods = relationship("SongMoodRecord", cascade="all, delete-orphan", lazy="selectin")

    # INDEX STRATEGY: artist lookups feed the prediction ladder
    __table_args__ = (
        Index('idx_song_artist', 'artist'),
        Index('idx_song_year', 'year'),
    )


class SongGenreRecord(Base):
    __tablename__ = "song_genres"

    id = Column(Integer, primary_key=True, autoincrement=True)
    song_id = Column(String(64), ForeignKey('songs.song_id'), nullable=False)
    name = Column(String(50), nullable=False)

    __table_args__ = (
        Index('idx_genre_song', 'song_id'),
        Index('idx_genre_name', 'name'),
    )


class SongMoodRecord(Base):
    __tablename__ = "song_moods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    song_id = Column(String(64), ForeignKey('songs.song_id'), nullable=False)
    name = Column(String(50), nullable=False)

    __table_args__ = (
        Index('idx_mood_song', 'song_id'),
        Index('idx_mood_name', 'name'),
    )


class UserEventRecord(Base):
    """
    One preference signal

    value: rating (1-5) for ratings, listen time in seconds for plays/skips
    """
    __tablename__ = "user_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    song_id = Column(String(64), ForeignKey('songs.song_id'), nullable=False)
    kind = Column(String(16), nullable=False)
    value = Column(Float)
    play_count = Column(Integer, default=1, nullable=False)
    timestamp = Column(DateTime, default=_utcnow)

    # INDEX STRATEGY: per-user history by kind, per-song aggregation
    __table_args__ = (
        Index('idx_event_user_kind', 'user_id', 'kind'),
        Index('idx_event_song', 'song_id'),
    )


# ============================================================================
# DATABASE MANAGER
# ============================================================================

class DatabaseManager:
    """
    Database connection manager

    - Async engine over aiosqlite
    - WAL mode for concurrent reads
    """

    def __init__(self, db_path: str = settings.DB_PATH):
        self.db_path = db_path

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init_db(self):
        """Create tables and tune SQLite for a read-heavy workload"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA cache_size=-64000"))
        logger.info(f"✓ Database ready at {self.db_path}")

    async def close(self):
        await self.engine.dispose()


# ============================================================================
# REPOSITORIES
# ============================================================================

def record_to_song(record: SongRecord) -> Song:
    return Song(
        id=record.song_id,
        title=record.title,
        artist=record.artist,
        album=record.album,
        year=record.year,
        features=FeatureVector(**{name: getattr(record, name) for name in FEATURE_NAMES}),
        genres=[g.name for g in record.genres],
        moods=[m.name for m in record.moods],
        popularity=record.popularity,
        play_count=record.play_count or 0,
        like_count=record.like_count or 0,
        avg_rating=record.avg_rating or 0.0,
        rating_count=record.rating_count or 0,
    )


class SqlSongRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    async def add_song(self, song: Song):
        """Insert or replace a catalogue entry"""
        async with self.db.async_session() as session:
            existing = await session.get(SongRecord, str(song.id))
            if existing is not None:
                await session.delete(existing)
                await session.flush()

            record = SongRecord(
                song_id=str(song.id),
                title=song.title,
                artist=song.artist,
                album=song.album,
                year=song.year,
                popularity=song.popularity,
                play_count=song.play_count,
                like_count=song.like_count,
                avg_rating=song.avg_rating,
                rating_count=song.rating_count,
                genres=[SongGenreRecord(name=name) for name in sorted(song.genres)],
                moods=[SongMoodRecord(name=name) for name in sorted(song.moods)],
                **song.features.as_dict(),
            )
            session.add(record)
            await session.commit()

    async def get_songs(self, song_filter: Optional[SongFilter] = None) -> List[Song]:
        song_filter = song_filter or SongFilter()
        query = select(SongRecord).order_by(SongRecord.song_id)

        if song_filter.ids is not None:
            query = query.where(SongRecord.song_id.in_([str(i) for i in song_filter.ids]))
        if song_filter.artist:
            query = query.where(func.lower(SongRecord.artist) == song_filter.artist.lower())

        complete = and_(*[
            and_(getattr(SongRecord, name).is_not(None), getattr(SongRecord, name) != 0)
            for name in CORE_FEATURES
        ])
        if song_filter.feature_complete is True:
            query = query.where(complete)
        elif song_filter.feature_complete is False:
            query = query.where(or_(~complete, *[getattr(SongRecord, name).is_(None) for name in CORE_FEATURES]))

        async with self.db.async_session() as session:
            records = (await session.execute(query)).scalars().all()

        # Tag filters and id types are checked on the domain values
        relaxed = SongFilter(genre=song_filter.genre, mood=song_filter.mood)
        songs = [song for song in map(record_to_song, records) if relaxed.matches(song)]
        return songs[:song_filter.limit] if song_filter.limit else songs

    async def get_feature_complete_songs(self) -> List[Song]:
        return await self.get_songs(SongFilter(feature_complete=True))

    async def get_song_by_id(self, song_id: SongId) -> Optional[Song]:
        async with self.db.async_session() as session:
            record = await session.get(SongRecord, str(song_id))
            return None if record is None else record_to_song(record)

    async def update_song_features(self, song_id: SongId, features: Mapping[str, float]) -> None:
        async with self.db.async_session() as session:
            record = await session.get(SongRecord, str(song_id))
            if record is None:
                raise SongNotFoundError(song_id)
            for name, value in features.items():
                if name in FEATURE_NAMES:
                    setattr(record, name, value)
            await session.commit()

    async def set_song_genres(self, song_id: SongId, names: Iterable[str]) -> None:
        async with self.db.async_session() as session:
            record = await session.get(SongRecord, str(song_id))
            if record is None:
                raise SongNotFoundError(song_id)
            record.genres = [SongGenreRecord(name=name) for name in dict.fromkeys(names)]
            await session.commit()

    async def set_song_moods(self, song_id: SongId, names: Iterable[str]) -> None:
        async with self.db.async_session() as session:
            record = await session.get(SongRecord, str(song_id))
            if record is None:
                raise SongNotFoundError(song_id)
            record.moods = [SongMoodRecord(name=name) for name in dict.fromkeys(names)]
            await session.commit()


class SqlEventRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    async def add_event(self, event: UserPreferenceEvent):
        async with self.db.async_session() as session:
            session.add(UserEventRecord(
                user_id=str(event.user_id),
                song_id=str(event.song_id),
                kind=event.kind.value,
                value=event.value,
                play_count=event.play_count,
                timestamp=event.timestamp,
            ))
            await session.commit()

    @staticmethod
    def _to_event(record: UserEventRecord, user_id: Optional[UserId] = None) -> UserPreferenceEvent:
        return UserPreferenceEvent(
            user_id=record.user_id if user_id is None else user_id,
            song_id=record.song_id,
            kind=EventKind.parse(record.kind),
            timestamp=record.timestamp,
            value=record.value,
            play_count=record.play_count,
        )

    async def _for_user(self, user_id: UserId, *kinds: EventKind) -> List[UserPreferenceEvent]:
        query = (
            select(UserEventRecord)
            .where(UserEventRecord.user_id == str(user_id))
            .where(UserEventRecord.kind.in_([k.value for k in kinds]))
            .order_by(UserEventRecord.timestamp, UserEventRecord.id)
        )
        async with self.db.async_session() as session:
            records = (await session.execute(query)).scalars().all()
        return [self._to_event(record, user_id) for record in records]

    async def get_interactions(self, user_id: UserId) -> List[UserPreferenceEvent]:
        return await self._for_user(user_id, EventKind.PLAY, EventKind.SKIP)

    async def get_likes(self, user_id: UserId) -> List[UserPreferenceEvent]:
        return await self._for_user(user_id, EventKind.LIKE)

    async def get_ratings(self, user_id: UserId) -> List[UserPreferenceEvent]:
        return await self._for_user(user_id, EventKind.RATING)

    async def get_all_events(self) -> List[UserPreferenceEvent]:
        query = select(UserEventRecord).order_by(UserEventRecord.timestamp, UserEventRecord.id)
        async with self.db.async_session() as session:
            records = (await session.execute(query)).scalars().all()
        return [self._to_event(record) for record in records]


async def get_db_manager(db_path: str = settings.DB_PATH) -> DatabaseManager:
    """Create a database manager with tables in place"""
    manager = DatabaseManager(db_path)
    await manager.init_db()
    return manager
