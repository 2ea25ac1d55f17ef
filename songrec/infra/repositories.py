"""
Repository interfaces

The scoring core only ever talks to these two protocols. Reads return
domain values (Song, UserPreferenceEvent); writes take the predicted
values the data-completion job decided to persist.
"""

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Protocol, Sequence

from songrec.models.entities import Song, SongId, UserId, UserPreferenceEvent


@dataclass(frozen=True)
class SongFilter:
    ids: Optional[Sequence[SongId]] = None
    artist: Optional[str] = None
    genre: Optional[str] = None
    mood: Optional[str] = None
    feature_complete: Optional[bool] = None
    limit: Optional[int] = None

    def matches(self, song: Song) -> bool:
        if self.ids is not None and song.id not in self.ids:
            return False
        if self.artist and song.artist.lower() != self.artist.lower():
            return False
        if self.genre and self.genre.lower() not in {g.lower() for g in song.genres}:
            return False
        if self.mood and self.mood.lower() not in {m.lower() for m in song.moods}:
            return False
        if self.feature_complete is not None and song.is_feature_complete() != self.feature_complete:
            return False
        return True


class SongRepository(Protocol):
    async def get_songs(self, song_filter: Optional[SongFilter] = None) -> List[Song]:
        ...

    async def get_feature_complete_songs(self) -> List[Song]:
        ...

    async def get_song_by_id(self, song_id: SongId) -> Optional[Song]:
        ...

    async def update_song_features(self, song_id: SongId, features: Mapping[str, float]) -> None:
        ...

    async def set_song_genres(self, song_id: SongId, names: Iterable[str]) -> None:
        ...

    async def set_song_moods(self, song_id: SongId, names: Iterable[str]) -> None:
        ...


class EventRepository(Protocol):
    async def get_interactions(self, user_id: UserId) -> List[UserPreferenceEvent]:
        """Plays and skips"""
        ...

    async def get_likes(self, user_id: UserId) -> List[UserPreferenceEvent]:
        ...

    async def get_ratings(self, user_id: UserId) -> List[UserPreferenceEvent]:
        ...

    async def get_all_events(self) -> List[UserPreferenceEvent]:
        """Community snapshot for user-based filtering and factorization"""
        ...
