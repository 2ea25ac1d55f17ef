"""
Domain entities shared by every recommender

- Song: catalogue entry with optional audio features and tags
- UserPreferenceEvent: one play / skip / like / rating signal
- UserHistory: every event of one user
- ScoredSong: a single recommender's output entry
- RecommendationResult: final, ranked, explained entry
"""

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from numbers import Real
from typing import Any, Dict, FrozenSet, Hashable, Iterable, List, Optional, Tuple

from songrec.errors import MalformedInputError
from songrec.models.features import FeatureVector


SongId = Hashable
UserId = Hashable

PLAY_COUNT_SCALE = 5     # plays needed for full preference weight
PROFILE_PLAY_SCALE = 10  # plays needed for full profile / implicit-rating weight
SKIP_DISCOUNT = 0.25
HIGH_RATING = 4


def _tags(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(v.strip() for v in values if v and v.strip())


def decade_bucket(year: Optional[int]) -> Optional[str]:
    """1994 → '1990s'"""
    if not year:
        return None
    return f"{int(year) // 10 * 10}s"


@dataclass(frozen=True)
class Song:
    """Catalogue entry. Immutable: completion returns a new Song."""

    id: SongId
    title: str
    artist: str
    album: Optional[str] = None
    year: Optional[int] = None
    features: FeatureVector = field(default_factory=FeatureVector)
    genres: FrozenSet[str] = frozenset()
    moods: FrozenSet[str] = frozenset()
    popularity: Optional[float] = None  # 0-100 catalogue popularity
    play_count: int = 0
    like_count: int = 0
    avg_rating: float = 0.0
    rating_count: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'genres', _tags(self.genres))
        object.__setattr__(self, 'moods', _tags(self.moods))
        if self.features is None:
            object.__setattr__(self, 'features', FeatureVector())

    def is_feature_complete(self) -> bool:
        return self.features.is_feature_complete()

    @property
    def decade(self) -> Optional[str]:
        return decade_bucket(self.year)

    def with_features(self, features: FeatureVector) -> 'Song':
        return replace(self, features=features)

    def with_tags(
        self,
        genres: Optional[Iterable[str]] = None,
        moods: Optional[Iterable[str]] = None,
    ) -> 'Song':
        return replace(
            self,
            genres=self.genres if genres is None else genres,
            moods=self.moods if moods is None else moods,
        )


class EventKind(str, Enum):
    PLAY = 'play'
    SKIP = 'skip'
    LIKE = 'like'
    RATING = 'rating'

    @classmethod
    def parse(cls, value) -> 'EventKind':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise MalformedInputError(f"Unknown event kind: {value!r}") from None


@dataclass(frozen=True)
class UserPreferenceEvent:
    """
    One preference signal from a user about a song

    VALUE:
    ======
    - rating: the rating itself, 1-5 (required)
    - play / skip: total listening time in seconds (optional)
    - like: unused
    """

    user_id: UserId
    song_id: SongId
    kind: EventKind
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    value: Optional[float] = None
    play_count: int = 1

    def __post_init__(self):
        object.__setattr__(self, 'kind', EventKind.parse(self.kind))

        if self.value is not None and (isinstance(self.value, bool) or not isinstance(self.value, Real)):
            raise MalformedInputError(f"Event value must be numeric, got {self.value!r}")

        if self.kind is EventKind.RATING:
            if self.value is None:
                raise MalformedInputError("Rating events need a rating value")
            if not 1 <= self.value <= 5:
                raise MalformedInputError(f"Rating must be between 1 and 5, got {self.value}")

        if isinstance(self.play_count, bool) or not isinstance(self.play_count, Real):
            raise MalformedInputError(f"play_count must be a number, got {self.play_count!r}")
        if self.play_count < 0:
            raise MalformedInputError(f"play_count must be >= 0, got {self.play_count}")

    @property
    def rating(self) -> Optional[float]:
        return self.value if self.kind is EventKind.RATING else None

    def preference_weight(self) -> float:
        """
        Strength of this signal as a content / item-based anchor

        rating/5, like=1, plays capped at min(count/5, 1), skips a quarter
        of the play weight.
        """
        if self.kind is EventKind.RATING:
            return self.value / 5
        if self.kind is EventKind.LIKE:
            return 1.0
        plays = min(self.play_count / PLAY_COUNT_SCALE, 1.0)
        if self.kind is EventKind.SKIP:
            return plays * SKIP_DISCOUNT
        return plays

    def profile_weight(self) -> float:
        """Weight in a user's taste-profile vector (skips excluded)"""
        if self.kind is EventKind.RATING:
            return self.value / 5
        if self.kind is EventKind.LIKE:
            return 1.0
        if self.kind is EventKind.PLAY:
            return min(self.play_count / PROFILE_PLAY_SCALE, 1.0)
        return 0.0

    def implicit_rating(self) -> Optional[float]:
        """Entry in the [0, 1] user-item matrix, None if this kind has none"""
        if self.kind is EventKind.RATING:
            return self.value / 5
        if self.kind is EventKind.PLAY:
            return min(self.play_count / PROFILE_PLAY_SCALE, 1.0)
        return None

    def is_endorsement(self) -> bool:
        if self.kind is EventKind.RATING:
            return self.value >= HIGH_RATING
        return self.kind in (EventKind.LIKE, EventKind.PLAY)


@dataclass(frozen=True)
class UserHistory:
    """Every preference event of a single user"""

    user_id: UserId
    events: Tuple[UserPreferenceEvent, ...] = ()

    def __post_init__(self):
        events = tuple(self.events)
        for event in events:
            if event.user_id != self.user_id:
                raise MalformedInputError(
                    f"Event for user {event.user_id} in history of user {self.user_id}"
                )
        object.__setattr__(self, 'events', events)

    @classmethod
    def from_events(cls, user_id: UserId, *event_groups: Iterable[UserPreferenceEvent]) -> 'UserHistory':
        events = []
        for group in event_groups:
            events.extend(group)
        return cls(user_id=user_id, events=tuple(events))

    def _count(self, *kinds: EventKind) -> int:
        return sum(1 for e in self.events if e.kind in kinds)

    @property
    def interaction_count(self) -> int:
        return self._count(EventKind.PLAY, EventKind.SKIP)

    @property
    def like_count(self) -> int:
        return self._count(EventKind.LIKE)

    @property
    def rating_count(self) -> int:
        return self._count(EventKind.RATING)

    @property
    def explicit_signal_count(self) -> int:
        return self.like_count + self.rating_count

    def is_cold_start(self) -> bool:
        return self.interaction_count == 0 and self.rating_count == 0 and self.like_count == 0

    def seen_song_ids(self) -> FrozenSet[SongId]:
        return frozenset(e.song_id for e in self.events)

    def song_weights(self) -> Dict[SongId, float]:
        """
        Strongest preference weight per song

        Ratings below 4 are not endorsements and never anchor a song;
        zero-weight songs are dropped.
        """
        weights: Dict[SongId, float] = {}
        for event in self.events:
            if event.kind is EventKind.RATING and event.value < HIGH_RATING:
                continue
            weight = event.preference_weight()
            if weight > weights.get(event.song_id, 0.0):
                weights[event.song_id] = weight
        return weights

    def endorsed_song_ids(self) -> FrozenSet[SongId]:
        return frozenset(e.song_id for e in self.events if e.is_endorsement())

    def anchor_song_ids(self) -> List[SongId]:
        """Liked and highly rated songs, in first-seen order"""
        seen = []
        for event in self.events:
            explicit = event.kind is EventKind.LIKE or (
                event.kind is EventKind.RATING and event.value >= HIGH_RATING
            )
            if explicit and event.song_id not in seen:
                seen.append(event.song_id)
        return seen


def group_histories(events: Iterable[UserPreferenceEvent]) -> Dict[UserId, UserHistory]:
    """Split a flat event stream into one history per user"""
    grouped = defaultdict(list)
    for event in events:
        grouped[event.user_id].append(event)
    return {user_id: UserHistory(user_id, tuple(evts)) for user_id, evts in grouped.items()}


@dataclass(frozen=True)
class ScoredSong:
    """Output entry of a single recommender, score in [0, 1]"""

    song: Song
    score: float
    reason: str = ''


@dataclass
class RecommendationResult:
    song: Song
    score: float
    sources: Tuple[str, ...]
    rationale: str
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        song = self.song
        return {
            'song_id': song.id,
            'title': song.title,
            'artist': song.artist,
            'album': song.album,
            'year': song.year,
            'genres': sorted(song.genres),
            'moods': sorted(song.moods),
            'score': float(self.score),
            'rank': self.rank,
            'sources': list(self.sources),
            'rationale': self.rationale,
        }
