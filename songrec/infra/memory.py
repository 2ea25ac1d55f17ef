"""
In-memory repositories

Same contract as the SQLAlchemy repositories; used by tests and by
callers that already hold a catalogue snapshot.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from songrec.errors import SongNotFoundError
from songrec.infra.repositories import SongFilter
from songrec.models.entities import EventKind, Song, SongId, UserId, UserPreferenceEvent


class InMemorySongRepository:
    def __init__(self, songs: Iterable[Song] = ()):
        self._songs: Dict[SongId, Song] = {song.id: song for song in songs}

    def add_song(self, song: Song):
        self._songs[song.id] = song

    def _require(self, song_id: SongId) -> Song:
        song = self._songs.get(song_id)
        if song is None:
            raise SongNotFoundError(song_id)
        return song

    async def get_songs(self, song_filter: Optional[SongFilter] = None) -> List[Song]:
        songs = list(self._songs.values())
        if song_filter is None:
            return songs
        songs = [song for song in songs if song_filter.matches(song)]
        return songs[:song_filter.limit] if song_filter.limit else songs

    async def get_feature_complete_songs(self) -> List[Song]:
        return [song for song in self._songs.values() if song.is_feature_complete()]

    async def get_song_by_id(self, song_id: SongId) -> Optional[Song]:
        return self._songs.get(song_id)

    async def update_song_features(self, song_id: SongId, features: Mapping[str, float]) -> None:
        song = self._require(song_id)
        self._songs[song_id] = song.with_features(song.features.with_values(features))

    async def set_song_genres(self, song_id: SongId, names: Iterable[str]) -> None:
        self._songs[song_id] = self._require(song_id).with_tags(genres=list(names))

    async def set_song_moods(self, song_id: SongId, names: Iterable[str]) -> None:
        self._songs[song_id] = self._require(song_id).with_tags(moods=list(names))


class InMemoryEventRepository:
    def __init__(self, events: Iterable[UserPreferenceEvent] = ()):
        self._events: List[UserPreferenceEvent] = list(events)

    def add_event(self, event: UserPreferenceEvent):
        self._events.append(event)

    def _for_user(self, user_id: UserId, *kinds: EventKind) -> List[UserPreferenceEvent]:
        return [e for e in self._events if e.user_id == user_id and e.kind in kinds]

    async def get_interactions(self, user_id: UserId) -> List[UserPreferenceEvent]:
        return self._for_user(user_id, EventKind.PLAY, EventKind.SKIP)

    async def get_likes(self, user_id: UserId) -> List[UserPreferenceEvent]:
        return self._for_user(user_id, EventKind.LIKE)

    async def get_ratings(self, user_id: UserId) -> List[UserPreferenceEvent]:
        return self._for_user(user_id, EventKind.RATING)

    async def get_all_events(self) -> List[UserPreferenceEvent]:
        return list(self._events)
