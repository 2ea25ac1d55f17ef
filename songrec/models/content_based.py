"""
Content-Based Filtering using Audio Features and Tags

SYSTEM DESIGN DECISION: Why Content-Based?
===========================================

COLD START FOR SONGS:
- Collaborative signals need other listeners
- Content-based works the moment a song has features or tags
- Explainability ("Because you like energetic music...")

ALGORITHM:
==========
1. Preference list = plays (min(count/5, 1)), likes (1), ratings ≥4 (rating/5)
2. Candidate score = preference-weighted mean of content similarity
3. Keep candidates above the similarity floor (0.3)

CONTENT SIMILARITY vs SimilarityEngine:
=======================================
SimilarityEngine drops absent factors. Content matching would rather
include a weak signal than nothing, so it degrades instead:

    case                                   factor used         weight
    -------------------------------------  ------------------  -------
    both songs have core audio features    cosine              × 1.0
    otherwise, some features shared        mean(1 - |Δ|)       × 0.5
    both songs tagged                      Jaccard             × 1.0
    only one side tagged                   Jaccard w/ predict  × 0.7

FALLBACK:
=========
No preferences at all → popularity ranking.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence

from loguru import logger

from songrec.models.entities import EventKind, HIGH_RATING, ScoredSong, Song, UserHistory
from songrec.models.feature_predictor import FeaturePredictor
from songrec.models.popularity import popularity_ranking
from songrec.models.similarity import (
    SimilarityEngine,
    popularity_closeness,
    same_artist,
    tag_overlap,
)


SIMILARITY_FLOOR = 0.3
PARTIAL_AUDIO_WEIGHT = 0.5
PREDICTED_TAG_WEIGHT = 0.7


@dataclass(frozen=True)
class Preference:
    song: Song
    weight: float
    kind: EventKind


def partial_audio_similarity(a: Song, b: Song) -> Optional[float]:
    """Mean of 1 - |Δ| over shared normalized features; None if none shared"""
    left, right = a.features.normalized(), b.features.normalized()
    shared = sorted(set(left) & set(right))
    if not shared:
        return None
    return sum(1 - min(abs(left[k] - right[k]), 1.0) for k in shared) / len(shared)


class ContentBasedFilter:
    """
    Content-based recommendations from a user's preference list

    Shares SimilarityEngine weights so the two scorers stay comparable,
    and FeaturePredictor for one-sided missing tags.
    """

    def __init__(
        self,
        similarity: SimilarityEngine,
        predictor: FeaturePredictor,
        floor: float = SIMILARITY_FLOOR,
    ):
        self.similarity = similarity
        self.predictor = predictor
        self.floor = floor
        logger.info("Content-based filter initialized")

    def preference_list(self, history: UserHistory, songs_by_id: Dict) -> List[Preference]:
        """
        Flat preference list

        WEIGHTING:
        ==========
        - play: min(count / 5, 1)
        - like: 1
        - rating ≥ 4: rating / 5
        Skips and low ratings are not preferences.
        """
        preferences = []
        for event in history.events:
            if event.kind is EventKind.SKIP:
                continue
            if event.kind is EventKind.RATING and event.value < HIGH_RATING:
                continue

            song = songs_by_id.get(event.song_id)
            weight = event.preference_weight()
            if song is None or weight <= 0:
                continue
            preferences.append(Preference(song, weight, event.kind))
        return preferences

    def _tags(self, song: Song, family: str, predicted: Optional[Dict] = None) -> FrozenSet[str]:
        key = (song.id, family)
        if predicted is not None and key in predicted:
            return predicted[key]
        if family == 'genres':
            tags = frozenset(self.predictor.predict_genres(song))
        else:
            tags = frozenset(self.predictor.predict_moods(song))
        if predicted is not None:
            predicted[key] = tags
        return tags

    def _tag_factor(self, a: Song, b: Song, family: str, predicted: Optional[Dict] = None):
        left, right = getattr(a, family), getattr(b, family)
        if left and right:
            return tag_overlap(left, right), 1.0
        if left or right:
            left = left or self._tags(a, family, predicted)
            right = right or self._tags(b, family, predicted)
            overlap = tag_overlap(left, right)
            if overlap is not None:
                return overlap, PREDICTED_TAG_WEIGHT
        return None, 0.0

    def content_similarity(self, a: Song, b: Song, predicted: Optional[Dict] = None) -> float:
        """
        Degrading composite, see module docstring

        predicted memoizes tag predictions by (song id, family) across calls.
        """
        weights = self.similarity.weights
        total = 0.0
        weight_sum = 0.0

        if a.is_feature_complete() and b.is_feature_complete():
            total += self.similarity.audio_similarity(a, b) * weights.audio
            weight_sum += weights.audio
        else:
            partial = partial_audio_similarity(a, b)
            if partial is not None:
                total += partial * weights.audio * PARTIAL_AUDIO_WEIGHT
                weight_sum += weights.audio * PARTIAL_AUDIO_WEIGHT

        for family, weight in (('genres', weights.genre), ('moods', weights.mood)):
            score, scale = self._tag_factor(a, b, family, predicted)
            if score is not None:
                total += score * weight * scale
                weight_sum += weight * scale

        artist = same_artist(a, b)
        if artist is not None:
            total += artist * weights.artist
            weight_sum += weights.artist

        popularity = popularity_closeness(a, b)
        if popularity is not None:
            total += popularity * weights.popularity
            weight_sum += weights.popularity

        if weight_sum == 0:
            return 0.0
        return max(0.0, min(1.0, total / weight_sum))

    def score_candidate(
        self,
        preferences: Sequence[Preference],
        candidate: Song,
        predicted: Optional[Dict] = None,
    ) -> float:
        total = 0.0
        weight_sum = 0.0
        for preference in preferences:
            total += self.content_similarity(preference.song, candidate, predicted) * preference.weight
            weight_sum += preference.weight
        return total / weight_sum if weight_sum > 0 else 0.0

    def recommend(
        self,
        history: UserHistory,
        catalog: Sequence[Song],
        limit: int = 20,
    ) -> List[ScoredSong]:
        songs_by_id = {song.id: song for song in catalog}
        preferences = self.preference_list(history, songs_by_id)

        if not preferences:
            logger.info(f"No preferences for user {history.user_id}, using popular songs")
            return popularity_ranking(catalog, limit, exclude=history.seen_song_ids())

        preferred_ids = {p.song.id for p in preferences}
        seen = history.seen_song_ids() | preferred_ids

        predicted: Dict = {}
        results = []
        for song in catalog:
            if song.id in seen:
                continue
            score = self.score_candidate(preferences, song, predicted)
            if score > self.floor:
                results.append(ScoredSong(song, score, self._reason(preferences, song)))

        results.sort(key=lambda s: (-s.score, str(s.song.id)))
        return results[:limit]

    def _reason(self, preferences: Sequence[Preference], song: Song) -> str:
        tags = song.features.characteristics()
        if tags:
            return f"Content-based match ({', '.join(tags[:2])})"
        shared = set(song.genres) & {g for p in preferences for g in p.song.genres}
        if shared:
            return f"Content-based match ({sorted(shared)[0]})"
        return "Content-based match"
