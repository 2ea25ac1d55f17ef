"""
Song-to-Song Similarity

COMPOSITE SCORE:
================
similarity(A, B) = Σ w_f × s_f / Σ w_f      over factors f PRESENT for both

Factors:
- audio: cosine over the normalized features both songs have (0.55)
- genre: Jaccard overlap of genre tags (0.2)
- mood: Jaccard overlap of mood tags (0.1)
- artist: same artist → 1, else 0 (0.1)
- popularity: 1 - |p_A - p_B| / 100 (0.05)

MISSING DATA:
=============
A factor whose inputs are absent on either side is left out of both the
numerator and the denominator. Missing data reduces how many signals are
consulted; it never turns a signal into a zero.

    A: energy .8, genres {Trap}       B: energy .8, genres {}
    → genre factor skipped, score decided by audio + artist

USE CASES:
==========
- similarity(): ranking ("more like this", item-based CF)
- distance(): Euclidean proximity for grouping
- cluster(): k-means groups over feature space
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

import numpy as np
from loguru import logger
from sklearn.cluster import KMeans

from songrec.errors import MalformedInputError
from songrec.models.entities import ScoredSong, Song
from songrec.models.features import (
    FEATURE_NAMES,
    normalize_value,
    default_value,
    partial_cosine,
    partial_euclidean,
)


WEIGHT_TOLERANCE = 1e-9


@dataclass(frozen=True)
class SimilarityWeights:
    """Composite factor weights; non-negative, total in (0, 1]"""

    audio: float = 0.55
    genre: float = 0.2
    mood: float = 0.1
    artist: float = 0.1
    popularity: float = 0.05

    def __post_init__(self):
        values = asdict(self)
        negative = {k: v for k, v in values.items() if v < 0}
        if negative:
            raise MalformedInputError(f"Similarity weights must be non-negative: {negative}")

        total = sum(values.values())
        if total <= 0 or total > 1 + WEIGHT_TOLERANCE:
            raise MalformedInputError(f"Similarity weights must sum to (0, 1], got {total:.4f}")

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def _casefold(tags: Iterable[str]) -> FrozenSet[str]:
    return frozenset(t.casefold() for t in tags)


def tag_overlap(a: Iterable[str], b: Iterable[str]) -> Optional[float]:
    """Jaccard overlap, case-insensitive; None if either side has no tags"""
    left, right = _casefold(a), _casefold(b)
    if not left or not right:
        return None
    return len(left & right) / len(left | right)


def same_artist(a: Song, b: Song) -> Optional[float]:
    left = (a.artist or '').strip().casefold()
    right = (b.artist or '').strip().casefold()
    if not left or not right:
        return None
    return 1.0 if left == right else 0.0


def popularity_closeness(a: Song, b: Song) -> Optional[float]:
    if a.popularity is None or b.popularity is None:
        return None
    return max(0.0, 1.0 - abs(a.popularity - b.popularity) / 100)


@dataclass
class SongCluster:
    id: int
    centroid: Dict[str, float]
    songs: List[Song] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.songs)


class SimilarityEngine:
    """
    Multi-factor song similarity

    PROPERTIES:
    ===========
    - Symmetric: similarity(A, B) == similarity(B, A)
    - Bounded: every score in [0, 1]
    - Partial credit: absent factors drop out of the weighted mean
    """

    def __init__(self, weights: Optional[SimilarityWeights] = None):
        self.weights = weights or SimilarityWeights()

    def audio_similarity(self, a: Song, b: Song) -> float:
        """Cosine over shared normalized features; 0 if none are shared"""
        return partial_cosine(a.features.normalized(), b.features.normalized())

    def factor_scores(self, a: Song, b: Song) -> Dict[str, float]:
        """Score of every factor that can be computed for this pair"""
        scores = {}

        left, right = a.features.normalized(), b.features.normalized()
        if set(left) & set(right):
            scores['audio'] = partial_cosine(left, right)

        genre = tag_overlap(a.genres, b.genres)
        if genre is not None:
            scores['genre'] = genre

        mood = tag_overlap(a.moods, b.moods)
        if mood is not None:
            scores['mood'] = mood

        artist = same_artist(a, b)
        if artist is not None:
            scores['artist'] = artist

        popularity = popularity_closeness(a, b)
        if popularity is not None:
            scores['popularity'] = popularity

        return scores

    def combine(self, scores: Dict[str, float]) -> float:
        """Weighted mean over the given factors"""
        weights = self.weights.as_dict()
        total = 0.0
        weight_sum = 0.0

        for factor in ('audio', 'genre', 'mood', 'artist', 'popularity'):
            if factor not in scores:
                continue
            total += scores[factor] * weights[factor]
            weight_sum += weights[factor]

        if weight_sum == 0:
            return 0.0
        return max(0.0, min(1.0, total / weight_sum))

    def similarity(self, a: Song, b: Song) -> float:
        return self.combine(self.factor_scores(a, b))

    def distance(self, a: Song, b: Song) -> float:
        """Euclidean distance in normalized feature space (inf if disjoint)"""
        return partial_euclidean(a.features.normalized(), b.features.normalized())

    def find_similar(
        self,
        target: Song,
        candidates: Iterable[Song],
        limit: int = 10,
        min_score: float = 0.0,
    ) -> List[ScoredSong]:
        """
        Rank candidates by similarity to ``target``

        The target itself is skipped. Ties are broken by song id so the
        ordering is stable across calls.
        """
        scored = []
        for song in candidates:
            if song.id == target.id:
                continue
            score = self.similarity(target, song)
            if score > min_score:
                scored.append(ScoredSong(song, score, f"Similar to {target.title}"))

        scored.sort(key=lambda s: (-s.score, str(s.song.id)))
        return scored[:limit]

    def cluster(
        self,
        songs: Sequence[Song],
        n_clusters: int,
        random_state: int = 42,
    ) -> List[SongCluster]:
        """
        Group songs by feature proximity (k-means)

        Missing features are filled with the normalized population default
        so every song gets a full-length vector.
        """
        if n_clusters <= 0:
            raise MalformedInputError(f"n_clusters must be positive, got {n_clusters}")
        if not songs:
            return []

        n_clusters = min(n_clusters, len(songs))

        matrix = np.array([
            [
                song.features.normalized().get(name, normalize_value(name, default_value(name)))
                for name in FEATURE_NAMES
            ]
            for song in songs
        ])

        kmeans = KMeans(n_clusters=n_clusters, n_init=10, random_state=random_state)
        labels = kmeans.fit_predict(matrix)

        clusters = [
            SongCluster(
                id=idx,
                centroid={name: float(v) for name, v in zip(FEATURE_NAMES, kmeans.cluster_centers_[idx])},
            )
            for idx in range(n_clusters)
        ]
        for song, label in zip(songs, labels):
            clusters[int(label)].songs.append(song)

        logger.debug(f"Clustered {len(songs)} songs into {n_clusters} groups")
        return clusters
