"""
Recommendation service

Loads a snapshot from the repositories, hands it to the scoring core and
caches the result. All scoring runs in-process after the loads.

ALGORITHM HINTS:
================
    hint           collaborative  content  ai-enhanced  popularity
    -------------  -------------  -------  -----------  ----------
    hybrid         0.30           0.30     0.30         0.10
    collaborative  0.60           0.15     0.15         0.10
    content        0.15           0.60     0.15         0.10
    ai             0.15           0.15     0.60         0.10
    popularity     0.10           0.10     0.10         0.70
"""

from typing import Dict, Hashable, List, Optional

from loguru import logger

from songrec import settings
from songrec.errors import MalformedInputError, SongNotFoundError
from songrec.infra.cache import RecommendationCache
from songrec.infra.repositories import EventRepository, SongRepository
from songrec.models.ensemble import HybridRanker, HybridWeights
from songrec.models.entities import RecommendationResult, SongId, UserHistory, UserId, group_histories
from songrec.models.feature_predictor import FeaturePredictor
from songrec.models.similarity import SimilarityEngine


ALGORITHM_PRESETS: Dict[str, HybridWeights] = {
    'hybrid': HybridWeights(),
    'collaborative': HybridWeights(collaborative=0.6, content=0.15, ai_enhanced=0.15, popularity=0.1),
    'content': HybridWeights(collaborative=0.15, content=0.6, ai_enhanced=0.15, popularity=0.1),
    'ai': HybridWeights(collaborative=0.15, content=0.15, ai_enhanced=0.6, popularity=0.1),
    'popularity': HybridWeights(collaborative=0.1, content=0.1, ai_enhanced=0.1, popularity=0.7),
}


def resolve_hint(hint: Optional[str]) -> HybridWeights:
    key = (hint or 'hybrid').strip().lower()
    if key not in ALGORITHM_PRESETS:
        raise MalformedInputError(
            f"Unknown algorithm hint {hint!r}, expected one of {sorted(ALGORITHM_PRESETS)}"
        )
    return ALGORITHM_PRESETS[key]


def validate_limit(limit: int, maximum: int = settings.MAX_LIMIT) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= maximum:
        raise MalformedInputError(f"limit must be an integer between 1 and {maximum}, got {limit!r}")
    return limit


class RecommendationService:
    def __init__(
        self,
        songs: SongRepository,
        events: EventRepository,
        predictor: FeaturePredictor,
        ranker: HybridRanker,
        similarity: SimilarityEngine,
        cache: Optional[RecommendationCache] = None,
    ):
        self.songs = songs
        self.events = events
        self.predictor = predictor
        self.ranker = ranker
        self.similarity = similarity
        self.cache = cache

    async def ensure_model(self):
        """Rebuild the feature model when it is missing, invalidated or stale"""
        if self.predictor.needs_rebuild():
            self.predictor.initialize(await self.songs.get_feature_complete_songs())

    async def load_history(self, user_id: UserId) -> UserHistory:
        return UserHistory.from_events(
            user_id,
            await self.events.get_interactions(user_id),
            await self.events.get_likes(user_id),
            await self.events.get_ratings(user_id),
        )

    async def load_community(self, user_id: UserId) -> Dict[Hashable, UserHistory]:
        histories = group_histories(await self.events.get_all_events())
        return {uid: history for uid, history in histories.items() if str(uid) != str(user_id)}

    async def get_personalized_recommendations(
        self,
        user_id: UserId,
        limit: int = settings.DEFAULT_LIMIT,
        algorithm_hint: Optional[str] = 'hybrid',
    ) -> List[RecommendationResult]:
        weights = resolve_hint(algorithm_hint)
        limit = validate_limit(limit)
        hint = (algorithm_hint or 'hybrid').strip().lower()

        if self.cache is not None:
            cached = self.cache.get(user_id, hint, limit)
            if cached is not None:
                return cached

        await self.ensure_model()
        history = await self.load_history(user_id)
        catalog = await self.songs.get_songs()
        community = None if history.is_cold_start() else await self.load_community(user_id)

        results = self.ranker.recommend(
            history, catalog, weights=weights, limit=limit, community=community
        )

        if self.cache is not None:
            self.cache.set(user_id, hint, limit, results)
        return results

    async def get_similar_songs(self, song_id: SongId, limit: int = 10) -> List[RecommendationResult]:
        """Direct similarity ranking for "more like this", no hybrid pipeline"""
        limit = validate_limit(limit)

        target = await self.songs.get_song_by_id(song_id)
        if target is None:
            raise SongNotFoundError(song_id)

        catalog = await self.songs.get_songs()
        similar = self.similarity.find_similar(target, catalog, limit=limit)

        logger.debug(f"{len(similar)} songs similar to {song_id}")
        return [
            RecommendationResult(
                song=entry.song,
                score=entry.score,
                sources=('similar',),
                rationale=entry.reason,
                rank=rank,
            )
            for rank, entry in enumerate(similar, start=1)
        ]

    def invalidate_user(self, user_id: UserId):
        if self.cache is not None:
            self.cache.invalidate_user(user_id)
