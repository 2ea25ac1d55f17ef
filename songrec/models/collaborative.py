"""
Collaborative Filtering

THREE SIGNALS:
==============
1. Item-based: "songs like the ones you played"
   - Anchor weight per song = strongest of its signals
     (rating/5, like 1, plays min(count/5, 1), skips a quarter of that)
   - Top neighbours of every anchor through SimilarityEngine
   - Candidate score = MAX over anchors of similarity × anchor weight

   WHY MAX, NOT SUM:
   A song that is very close to one liked song should not be dragged
   down because it is far from a tangential one.

2. User-based: "listeners like you also liked"
   - Taste profile = interaction-weighted average of normalized features
   - Neighbours = other users with profile cosine > 0.1 (best 50)
   - Candidate score = similarity-weighted share of neighbours who
     endorsed it (liked, rated ≥4 or played)

3. Matrix factorization: sparse-signal fallback
   - Users with fewer than 3 likes + ratings have few useful anchors
   - SGD latent factors over the whole community fill the gap

Empty history → empty list. Cold start is the ranker's business.
"""

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
from loguru import logger

from songrec.models.entities import ScoredSong, Song, UserHistory, UserId
from songrec.models.features import partial_cosine
from songrec.models.matrix_factorization import SGDMatrixFactorization
from songrec.models.similarity import SimilarityEngine


NEIGHBOURS_PER_ANCHOR = 10
USER_SIMILARITY_THRESHOLD = 0.1
MAX_SIMILAR_USERS = 50
SPARSE_EXPLICIT_SIGNALS = 3


def merge_max(*result_lists: Iterable[ScoredSong]) -> List[ScoredSong]:
    """Keep the best-scoring entry per song"""
    best: Dict = {}
    for results in result_lists:
        for entry in results:
            current = best.get(entry.song.id)
            if current is None or entry.score > current.score:
                best[entry.song.id] = entry
    return rank(best.values())


def rank(results: Iterable[ScoredSong], limit: Optional[int] = None) -> List[ScoredSong]:
    ordered = sorted(results, key=lambda s: (-s.score, str(s.song.id)))
    return ordered if limit is None else ordered[:limit]


def taste_profile(history: UserHistory, songs_by_id: Mapping) -> Dict[str, float]:
    """
    Interaction-weighted average of a user's normalized song features

    Each feature is averaged only over songs that have it.
    """
    totals: Dict[str, float] = {}
    weights: Dict[str, float] = {}

    for event in history.events:
        weight = event.profile_weight()
        song = songs_by_id.get(event.song_id)
        if weight <= 0 or song is None:
            continue
        for name, value in song.features.normalized().items():
            totals[name] = totals.get(name, 0.0) + value * weight
            weights[name] = weights.get(name, 0.0) + weight

    return {name: totals[name] / weights[name] for name in totals if weights[name] > 0}


class CollaborativeFilter:
    """Item-based, user-based and matrix-factorization recommendations"""

    def __init__(
        self,
        similarity: SimilarityEngine,
        neighbours_per_anchor: int = NEIGHBOURS_PER_ANCHOR,
        user_similarity_threshold: float = USER_SIMILARITY_THRESHOLD,
        max_similar_users: int = MAX_SIMILAR_USERS,
        model_factory: Callable[[], SGDMatrixFactorization] = SGDMatrixFactorization,
    ):
        self.similarity = similarity
        self.neighbours_per_anchor = neighbours_per_anchor
        self.user_similarity_threshold = user_similarity_threshold
        self.max_similar_users = max_similar_users
        self.model_factory = model_factory

    # ===== ITEM-BASED =====

    def item_based(
        self,
        history: UserHistory,
        catalog: Sequence[Song],
        limit: int = 20,
    ) -> List[ScoredSong]:
        anchors = history.song_weights()
        if not anchors:
            return []

        songs_by_id = {song.id: song for song in catalog}
        seen = history.seen_song_ids()
        candidates = [song for song in catalog if song.id not in seen]

        best: Dict = {}
        for anchor_id, weight in sorted(anchors.items(), key=lambda kv: str(kv[0])):
            anchor = songs_by_id.get(anchor_id)
            if anchor is None:
                continue

            neighbours = self.similarity.find_similar(
                anchor, candidates, limit=self.neighbours_per_anchor
            )
            for neighbour in neighbours:
                score = neighbour.score * weight
                current = best.get(neighbour.song.id)
                if current is None or score > current.score:
                    best[neighbour.song.id] = ScoredSong(
                        neighbour.song, score, f"Because you listened to {anchor.title}"
                    )

        return rank(best.values(), limit)

    # ===== USER-BASED =====

    def user_based(
        self,
        history: UserHistory,
        community: Mapping[UserId, UserHistory],
        catalog: Sequence[Song],
        limit: int = 20,
    ) -> List[ScoredSong]:
        songs_by_id = {song.id: song for song in catalog}
        profile = taste_profile(history, songs_by_id)
        if not profile:
            return []

        neighbours = []
        for user_id, other in community.items():
            if user_id == history.user_id:
                continue
            other_profile = taste_profile(other, songs_by_id)
            score = partial_cosine(profile, other_profile)
            if score > self.user_similarity_threshold:
                neighbours.append((str(user_id), score, other))

        if not neighbours:
            return []

        neighbours.sort(key=lambda n: (-n[1], n[0]))
        neighbours = neighbours[:self.max_similar_users]
        total_similarity = sum(score for _, score, _ in neighbours)

        seen = history.seen_song_ids()
        endorsed: Dict = {}
        for _, score, other in neighbours:
            for song_id in other.endorsed_song_ids():
                if song_id in seen or song_id not in songs_by_id:
                    continue
                endorsed[song_id] = endorsed.get(song_id, 0.0) + score

        results = [
            ScoredSong(
                songs_by_id[song_id],
                min(1.0, weight / total_similarity),
                "Liked by listeners with similar taste",
            )
            for song_id, weight in endorsed.items()
        ]
        return rank(results, limit)

    # ===== MATRIX FACTORIZATION =====

    def matrix_factorization(
        self,
        history: UserHistory,
        community: Mapping[UserId, UserHistory],
        catalog: Sequence[Song],
        limit: int = 20,
    ) -> List[ScoredSong]:
        histories = dict(community)
        histories[history.user_id] = history

        rows = []
        for user_id, user_history in histories.items():
            for event in user_history.events:
                rating = event.implicit_rating()
                if rating is not None:
                    rows.append({'user_id': user_id, 'song_id': event.song_id, 'rating': rating})

        if not rows:
            return []

        model = self.model_factory().fit(pd.DataFrame(rows))
        songs_by_key = {str(song.id): song for song in catalog}

        if not model.is_fitted:
            return []

        outside_catalog = set(model.item_encoder.classes_) - set(songs_by_key)
        exclude = {str(song_id) for song_id in history.seen_song_ids()} | outside_catalog

        results = []
        for song_key, score in model.recommend(history.user_id, n=limit, exclude=exclude):
            song = songs_by_key.get(song_key)
            if song is not None:
                results.append(ScoredSong(song, score, "Predicted from community listening patterns"))
        return results

    # ===== COMBINED =====

    def recommend(
        self,
        history: UserHistory,
        catalog: Sequence[Song],
        community: Optional[Mapping[UserId, UserHistory]] = None,
        limit: int = 20,
    ) -> List[ScoredSong]:
        """
        Item-based recommendations, max-merged with user-based ones when
        a community snapshot is available. Users with sparse explicit
        signals also get matrix-factorization candidates.
        """
        if history.is_cold_start():
            return []

        sources = [self.item_based(history, catalog, limit)]

        if community:
            sources.append(self.user_based(history, community, catalog, limit))
            if history.explicit_signal_count < SPARSE_EXPLICIT_SIGNALS:
                sources.append(self.matrix_factorization(history, community, catalog, limit))

        results = rank(merge_max(*sources), limit)
        logger.debug(f"Collaborative: {len(results)} candidates for user {history.user_id}")
        return results
