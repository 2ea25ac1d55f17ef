"""
Missing-Data Completion: Audio Features, Genres & Moods

SYSTEM DESIGN DECISION: Why predict instead of skip?
====================================================

CATALOGUE REALITY:
- Third-party audio analysis is missing for a large share of songs
- Genre/mood tags are sparse and hand-entered
- A recommender that skips incomplete songs never recommends them

SOLUTION: Fill the gaps from whatever complete data exists, and say
how sure we are.

FEATURE LADDER:
===============
For each missing feature, the first rung that applies wins:

    rung          needs                            confidence
    ------------  -------------------------------  ----------------
    artist        ≥3 feature-complete songs        0.8
    decade        ≥5 feature-complete songs        0.6
    correlation   present, correlated features     min(Σ|corr|, 0.7)
    default       nothing                          0.3

The rung's estimate is then pulled toward the population default:

    value = prediction × confidence + default × (1 - confidence)

so a weak guess stays close to "average song".

MODEL LIFECYCLE:
================
FeatureModel is an immutable snapshot built from the feature-complete
songs. FeaturePredictor owns exactly one, rebuilds it under a lock and
swaps the reference, so readers never see a half-built model.

    initialize(songs) → build → swap
    needs_rebuild()   → never built / invalidated / older than refresh
    invalidate()      → next needs_rebuild() says yes
    teardown()        → drop model and memoized songs

INSUFFICIENT DATA:
==================
Fewer than 5 feature-complete songs → status 'fallback': fixed
hand-written genre/mood profiles and correlations, no artist/decade
averages. This is a state, not an error.
"""

import hashlib
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from cachetools import LRUCache
from loguru import logger

from songrec import settings
from songrec.errors import MalformedInputError
from songrec.models.entities import Song, decade_bucket
from songrec.models.features import (
    DISCRETE_FEATURES,
    FEATURE_NAMES,
    FeatureVector,
    clamp_value,
    default_value,
    denormalize_value,
)
from songrec.models.voters import (
    GENRE_VOTERS,
    MOOD_VOTERS,
    Voter,
    collect_votes,
    combine_votes,
)


MIN_TRAINING_SONGS = 5
MIN_ARTIST_SONGS = 3
MIN_DECADE_SONGS = 5
MIN_CORRELATION = 0.1

ARTIST_CONFIDENCE = 0.8
DECADE_CONFIDENCE = 0.6
MAX_CORRELATION_CONFIDENCE = 0.7
DEFAULT_CONFIDENCE = 0.3


# ===== FALLBACK TABLES (normalized space) =====

FALLBACK_GENRE_PROFILES: Dict[str, Dict[str, float]] = {
    'Trap': {'energy': 0.8, 'danceability': 0.7, 'valence': 0.5, 'tempo': 0.8, 'speechiness': 0.6},
    'Hip-Hop': {'energy': 0.6, 'danceability': 0.6, 'valence': 0.5, 'tempo': 0.5, 'speechiness': 0.8},
    'R&B': {'energy': 0.5, 'danceability': 0.7, 'valence': 0.6, 'tempo': 0.4, 'speechiness': 0.3},
    'Pop': {'energy': 0.7, 'danceability': 0.8, 'valence': 0.7, 'tempo': 0.6, 'speechiness': 0.2},
}

FALLBACK_MOOD_PROFILES: Dict[str, Dict[str, float]] = {
    'Energetic': {'energy': 0.8, 'danceability': 0.7, 'valence': 0.6, 'tempo': 0.8},
    'Chill': {'energy': 0.3, 'danceability': 0.5, 'valence': 0.6, 'tempo': 0.3},
    'Happy': {'energy': 0.6, 'danceability': 0.7, 'valence': 0.8, 'tempo': 0.6},
    'Sad': {'energy': 0.3, 'danceability': 0.4, 'valence': 0.2, 'tempo': 0.4},
    'Danceable': {'energy': 0.7, 'danceability': 0.9, 'valence': 0.7, 'tempo': 0.7},
    'Aggressive': {'energy': 0.9, 'danceability': 0.6, 'valence': 0.3, 'tempo': 0.8},
}

FALLBACK_CORRELATIONS: Dict[str, Dict[str, float]] = {
    'energy': {'danceability': 0.3, 'valence': 0.4, 'tempo': 0.2},
    'danceability': {'energy': 0.3, 'valence': 0.5, 'tempo': 0.1},
    'valence': {'energy': 0.4, 'danceability': 0.5, 'tempo': 0.1},
    'tempo': {'energy': 0.2, 'danceability': 0.1, 'valence': 0.1},
}


class ModelStatus(str, Enum):
    UNINITIALIZED = 'uninitialized'
    TRAINED = 'trained'
    FALLBACK = 'fallback'


def _freeze(nested: Mapping[str, Mapping[str, float]]) -> Mapping[str, Mapping[str, float]]:
    return MappingProxyType({k: MappingProxyType(dict(v)) for k, v in nested.items()})


@dataclass(frozen=True)
class FeatureModel:
    """
    Immutable statistics learned from feature-complete songs

    Averages for artists and decades are in raw units; genre/mood
    profiles and correlations are in normalized space.
    """

    status: ModelStatus
    training_size: int
    fingerprint: str
    correlations: Mapping[str, Mapping[str, float]]
    artist_averages: Mapping[str, Mapping[str, float]]
    decade_averages: Mapping[str, Mapping[str, float]]
    genre_profiles: Mapping[str, Mapping[str, float]]
    mood_profiles: Mapping[str, Mapping[str, float]]
    genre_source: str = 'fallback'
    mood_source: str = 'fallback'
    built_at: float = field(default=0.0, compare=False)

    def is_fallback(self) -> bool:
        return self.status is ModelStatus.FALLBACK


@dataclass(frozen=True)
class Prediction:
    feature: str
    value: float
    confidence: float
    source: str


def _artist_key(artist: Optional[str]) -> str:
    return (artist or '').strip().lower()


def training_fingerprint(songs: Sequence[Song]) -> str:
    """Stable hash of everything the model learns from"""
    digest = hashlib.sha1()
    for song in sorted(songs, key=lambda s: str(s.id)):
        digest.update(repr((
            str(song.id),
            _artist_key(song.artist),
            song.year,
            tuple(sorted(song.features.present().items())),
            tuple(sorted(song.genres)),
            tuple(sorted(song.moods)),
        )).encode())
    return digest.hexdigest()


def _group_averages(df: pd.DataFrame, key: str, min_songs: int) -> Dict[str, Dict[str, float]]:
    """Per-group raw feature means for groups with at least ``min_songs`` songs"""
    grouped = df.dropna(subset=[key]).groupby(key)
    counts = grouped.size()
    means = grouped[list(FEATURE_NAMES)].mean()

    averages = {}
    for group, row in means.iterrows():
        if counts[group] < min_songs:
            continue
        averages[group] = {name: float(v) for name, v in row.items() if pd.notna(v)}
    return averages


def _label_profiles(df: pd.DataFrame, column: str) -> Dict[str, Dict[str, float]]:
    """Average normalized vector per genre / mood label"""
    exploded = df[[column] + [f"n_{name}" for name in FEATURE_NAMES]].explode(column)
    exploded = exploded.dropna(subset=[column])
    if exploded.empty:
        return {}

    means = exploded.groupby(column).mean(numeric_only=True)
    profiles = {}
    for label, row in means.iterrows():
        profile = {name[2:]: float(v) for name, v in row.items() if pd.notna(v)}
        if profile:
            profiles[label] = profile
    return profiles


def _correlations(df: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    normalized = df[[f"n_{name}" for name in FEATURE_NAMES]].rename(columns=lambda c: c[2:])
    matrix = normalized.corr(min_periods=MIN_TRAINING_SONGS)

    correlations = {}
    for target in FEATURE_NAMES:
        related = {}
        for source in FEATURE_NAMES:
            if source == target:
                continue
            value = matrix.at[target, source]
            if pd.notna(value) and abs(value) >= MIN_CORRELATION:
                related[source] = float(value)
        if related:
            correlations[target] = related
    return correlations


def fallback_model(songs: Sequence[Song] = (), built_at: float = 0.0) -> FeatureModel:
    return FeatureModel(
        status=ModelStatus.FALLBACK,
        training_size=len(songs),
        fingerprint=training_fingerprint(songs),
        correlations=_freeze(FALLBACK_CORRELATIONS),
        artist_averages=_freeze({}),
        decade_averages=_freeze({}),
        genre_profiles=_freeze(FALLBACK_GENRE_PROFILES),
        mood_profiles=_freeze(FALLBACK_MOOD_PROFILES),
        built_at=built_at,
    )


def build_feature_model(songs: Iterable[Song], built_at: float = 0.0) -> FeatureModel:
    """
    Train a FeatureModel from a song collection

    Only feature-complete songs are used. Aggregation runs over songs
    sorted by id, so the same input always yields the same model.
    """
    training = sorted(
        (song for song in songs if song.is_feature_complete()),
        key=lambda s: str(s.id),
    )

    if len(training) < MIN_TRAINING_SONGS:
        logger.warning(
            f"Only {len(training)} feature-complete songs (need {MIN_TRAINING_SONGS}), "
            f"using fallback prediction tables"
        )
        return fallback_model(training, built_at=built_at)

    rows = []
    for song in training:
        present = song.features.present()
        normalized = song.features.normalized()
        row = {
            'artist': _artist_key(song.artist) or None,
            'decade': decade_bucket(song.year),
            'genres': sorted(song.genres) or None,
            'moods': sorted(song.moods) or None,
        }
        for name in FEATURE_NAMES:
            row[name] = present.get(name)
            row[f"n_{name}"] = normalized.get(name)
        rows.append(row)

    df = pd.DataFrame(rows)
    for name in FEATURE_NAMES:
        df[name] = pd.to_numeric(df[name])
        df[f"n_{name}"] = pd.to_numeric(df[f"n_{name}"])

    genre_profiles = _label_profiles(df, 'genres')
    mood_profiles = _label_profiles(df, 'moods')

    model = FeatureModel(
        status=ModelStatus.TRAINED,
        training_size=len(training),
        fingerprint=training_fingerprint(training),
        correlations=_freeze(_correlations(df)),
        artist_averages=_freeze(_group_averages(df, 'artist', MIN_ARTIST_SONGS)),
        decade_averages=_freeze(_group_averages(df, 'decade', MIN_DECADE_SONGS)),
        genre_profiles=_freeze(genre_profiles or FALLBACK_GENRE_PROFILES),
        mood_profiles=_freeze(mood_profiles or FALLBACK_MOOD_PROFILES),
        genre_source='trained' if genre_profiles else 'fallback',
        mood_source='trained' if mood_profiles else 'fallback',
        built_at=built_at,
    )

    logger.info(f"✓ Feature model trained on {len(training)} songs")
    logger.info(f"  Artists: {len(model.artist_averages)}, decades: {len(model.decade_averages)}")
    logger.info(f"  Genres: {len(model.genre_profiles)} ({model.genre_source}), "
                f"moods: {len(model.mood_profiles)} ({model.mood_source})")
    return model


def adjust_prediction(prediction: float, confidence: float, feature: str) -> float:
    """
    Blend a prediction toward the feature's population default

    confidence 1 → prediction, confidence 0 → default
    """
    if not 0 <= confidence <= 1:
        raise MalformedInputError(f"Confidence must be in [0, 1], got {confidence}")

    value = prediction * confidence + default_value(feature) * (1 - confidence)
    value = clamp_value(feature, value)
    if feature in DISCRETE_FEATURES:
        value = float(round(value))
    return value


class FeaturePredictor:
    """
    Owns the FeatureModel and answers prediction queries against it

    Construct one per application (composition root) and pass it to the
    filters that need it.
    """

    def __init__(
        self,
        refresh_seconds: float = settings.MODEL_REFRESH_SECONDS,
        cache_size: int = settings.WARM_CACHE_SIZE,
        clock=time.monotonic,
        genre_voters: Sequence[Voter] = GENRE_VOTERS,
        mood_voters: Sequence[Voter] = MOOD_VOTERS,
    ):
        self.refresh_seconds = refresh_seconds
        self.genre_voters = tuple(genre_voters)
        self.mood_voters = tuple(mood_voters)
        self._clock = clock
        self._model: Optional[FeatureModel] = None
        self._invalidated = False
        self._lock = threading.Lock()
        self._enhanced = LRUCache(maxsize=cache_size)
        self._cache_lock = threading.RLock()

    # ===== LIFECYCLE =====

    def initialize(self, training_songs: Iterable[Song]) -> FeatureModel:
        """Build a fresh model and swap it in"""
        songs = list(training_songs)
        with self._lock:
            model = build_feature_model(songs, built_at=self._clock())
            self._model = model
            self._invalidated = False
            self._clear_enhanced()

        if model.is_fallback():
            logger.warning(f"Feature predictor running in fallback mode ({model.training_size} songs)")
        return model

    def _clear_enhanced(self):
        with self._cache_lock:
            self._enhanced.clear()

    def needs_rebuild(self) -> bool:
        model = self._model
        if model is None or self._invalidated:
            return True
        return self._clock() - model.built_at >= self.refresh_seconds

    def invalidate(self):
        self._invalidated = True

    def teardown(self):
        with self._lock:
            self._model = None
            self._invalidated = False
            self._clear_enhanced()
        logger.info("Feature predictor torn down")

    @property
    def status(self) -> ModelStatus:
        model = self._model
        return ModelStatus.UNINITIALIZED if model is None else model.status

    @property
    def model(self) -> FeatureModel:
        """Current snapshot; an uninitialized predictor answers from the fallback tables"""
        model = self._model
        if model is None:
            with self._lock:
                if self._model is None:
                    logger.warning("Feature predictor used before initialize(), using fallback tables")
                    self._model = fallback_model(built_at=self._clock())
                model = self._model
        return model

    # ===== AUDIO FEATURES =====

    def _correlation_estimate(
        self, model: FeatureModel, song: Song, feature: str
    ) -> Optional[Tuple[float, float]]:
        normalized = song.features.normalized()
        related = model.correlations.get(feature, {})

        weighted = 0.0
        total = 0.0
        for source in sorted(related):
            if source not in normalized:
                continue
            corr = related[source]
            value = normalized[source] if corr > 0 else 1 - normalized[source]
            weighted += abs(corr) * value
            total += abs(corr)

        if total == 0:
            return None

        estimate = denormalize_value(feature, weighted / total)
        return estimate, min(total, MAX_CORRELATION_CONFIDENCE)

    def predict_feature(self, song: Song, feature: str) -> Prediction:
        """Present value as-is, otherwise the first ladder rung that applies"""
        if feature not in FEATURE_NAMES:
            raise MalformedInputError(f"Unknown audio feature: {feature!r}")

        present = song.features.get(feature)
        if present is not None:
            return Prediction(feature, present, 1.0, 'present')

        model = self.model

        artist = model.artist_averages.get(_artist_key(song.artist), {})
        if feature in artist:
            return Prediction(
                feature,
                adjust_prediction(artist[feature], ARTIST_CONFIDENCE, feature),
                ARTIST_CONFIDENCE,
                'artist',
            )

        decade = model.decade_averages.get(song.decade, {}) if song.decade else {}
        if feature in decade:
            return Prediction(
                feature,
                adjust_prediction(decade[feature], DECADE_CONFIDENCE, feature),
                DECADE_CONFIDENCE,
                'decade',
            )

        estimate = self._correlation_estimate(model, song, feature)
        if estimate is not None:
            value, confidence = estimate
            return Prediction(
                feature,
                adjust_prediction(value, confidence, feature),
                confidence,
                'correlation',
            )

        return Prediction(
            feature,
            adjust_prediction(default_value(feature), DEFAULT_CONFIDENCE, feature),
            DEFAULT_CONFIDENCE,
            'default',
        )

    def predict_audio_features(self, song: Song) -> Dict[str, Prediction]:
        """Predictions for every missing feature of ``song``"""
        return {name: self.predict_feature(song, name) for name in song.features.missing()}

    def complete_features(self, song: Song) -> FeatureVector:
        predictions = self.predict_audio_features(song)
        return song.features.with_values({name: p.value for name, p in predictions.items()})

    # ===== GENRES & MOODS =====

    def predict_genres(self, song: Song, top_n: int = 2) -> List[str]:
        votes = collect_votes(self.genre_voters, song, self.model.genre_profiles)
        return combine_votes(votes, top_n=top_n)

    def predict_moods(self, song: Song, top_n: int = 2) -> List[str]:
        if not song.genres:
            song = song.with_tags(genres=self.predict_genres(song))
        votes = collect_votes(self.mood_voters, song, self.model.mood_profiles)
        return combine_votes(votes, top_n=top_n)

    # ===== WHOLE SONG =====

    def enhance(self, song: Song) -> Song:
        """
        Song with every gap filled: missing features predicted, empty
        genre/mood tags predicted. Known data is never overwritten.
        """
        model = self.model
        key = (model.fingerprint, model.status, song)

        with self._cache_lock:
            cached = self._enhanced.get(key)
        if cached is not None:
            return cached

        enhanced = song.with_features(self.complete_features(song))
        if not enhanced.genres:
            enhanced = enhanced.with_tags(genres=self.predict_genres(song))
        if not enhanced.moods:
            enhanced = enhanced.with_tags(moods=self.predict_moods(enhanced))

        with self._cache_lock:
            self._enhanced[key] = enhanced
        return enhanced
