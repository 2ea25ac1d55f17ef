"""
Composition root

Builds every long-lived object exactly once and hands them to whoever
needs them. Nothing in songrec keeps module-level instances.
"""

from dataclasses import dataclass
from typing import Optional

from songrec.infra.cache import RecommendationCache
from songrec.infra.repositories import EventRepository, SongRepository
from songrec.models.collaborative import CollaborativeFilter
from songrec.models.content_based import ContentBasedFilter
from songrec.models.enhanced import PredictionEnhancedFilter
from songrec.models.ensemble import HybridRanker
from songrec.models.feature_predictor import FeaturePredictor
from songrec.models.similarity import SimilarityEngine, SimilarityWeights
from songrec.services.data_completion import DataCompletionEngine
from songrec.services.recommendations import RecommendationService


@dataclass
class Services:
    songs: SongRepository
    events: EventRepository
    predictor: FeaturePredictor
    recommendations: RecommendationService
    completion: DataCompletionEngine
    cache: Optional[RecommendationCache] = None

    def teardown(self):
        self.predictor.teardown()
        if self.cache is not None:
            self.cache.invalidate_all()


def build_services(
    songs: SongRepository,
    events: EventRepository,
    cache: Optional[RecommendationCache] = None,
    predictor: Optional[FeaturePredictor] = None,
    weights: Optional[SimilarityWeights] = None,
) -> Services:
    similarity = SimilarityEngine(weights)
    predictor = predictor or FeaturePredictor()

    ranker = HybridRanker(
        collaborative=CollaborativeFilter(similarity),
        content=ContentBasedFilter(similarity, predictor),
        enhanced=PredictionEnhancedFilter(similarity, predictor),
    )

    recommendations = RecommendationService(
        songs=songs,
        events=events,
        predictor=predictor,
        ranker=ranker,
        similarity=similarity,
        cache=cache,
    )
    completion = DataCompletionEngine(
        songs=songs,
        predictor=predictor,
        on_data_changed=cache.invalidate_all if cache is not None else None,
    )

    return Services(
        songs=songs,
        events=events,
        predictor=predictor,
        recommendations=recommendations,
        completion=completion,
        cache=cache,
    )
