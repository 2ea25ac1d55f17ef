"""
Prediction-enhanced similarity pass

Anchors are the songs a user liked or rated ≥4. Anchors and catalogue
are first completed through FeaturePredictor, then compared with
SimilarityEngine as if the predicted features and tags were real. This
lets songs with missing audio analysis compete on equal footing.

Per candidate the best anchor wins (max-merge). Results carry the
original, un-enhanced Song.
"""

from typing import Dict, List, Sequence

from loguru import logger

from songrec.models.entities import ScoredSong, Song, UserHistory
from songrec.models.feature_predictor import FeaturePredictor
from songrec.models.similarity import SimilarityEngine


NEIGHBOURS_PER_ANCHOR = 10


class PredictionEnhancedFilter:
    def __init__(
        self,
        similarity: SimilarityEngine,
        predictor: FeaturePredictor,
        neighbours_per_anchor: int = NEIGHBOURS_PER_ANCHOR,
    ):
        self.similarity = similarity
        self.predictor = predictor
        self.neighbours_per_anchor = neighbours_per_anchor

    def recommend(
        self,
        history: UserHistory,
        catalog: Sequence[Song],
        limit: int = 20,
    ) -> List[ScoredSong]:
        anchor_ids = history.anchor_song_ids()
        if not anchor_ids:
            return []

        originals = {song.id: song for song in catalog}
        enhanced = {song.id: self.predictor.enhance(song) for song in catalog}

        seen = history.seen_song_ids()
        candidates = [song for song_id, song in enhanced.items() if song_id not in seen]

        best: Dict = {}
        for anchor_id in anchor_ids:
            anchor = enhanced.get(anchor_id)
            if anchor is None:
                continue

            for neighbour in self.similarity.find_similar(anchor, candidates, limit=self.neighbours_per_anchor):
                current = best.get(neighbour.song.id)
                if current is None or neighbour.score > current.score:
                    best[neighbour.song.id] = ScoredSong(
                        originals[neighbour.song.id],
                        neighbour.score,
                        f"AI match for {anchor.title}",
                    )

        results = sorted(best.values(), key=lambda s: (-s.score, str(s.song.id)))[:limit]
        logger.debug(f"Enhanced pass: {len(results)} candidates from {len(anchor_ids)} anchors")
        return results
