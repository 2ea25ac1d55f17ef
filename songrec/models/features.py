"""
Audio Feature Vectors

FEATURE SPACE:
==============
Raw audio features come in very different units:
- Energy / Danceability / Valence: 0-1
- Tempo: 50-200 BPM
- Loudness: -60-0 dB
- Key: pitch class 0-11

Every similarity function works on the normalized form, where each
feature is mapped to [0, 1] with its documented (min, max):

    normalized = clamp((value - min) / (max - min), 0, 1)

MISSING VALUES:
===============
A feature that is None is missing. For features where zero is not a
physically meaningful reading, zero is ALSO treated as missing:

    feature            zero means
    -----------------  -----------------
    energy             missing
    danceability       missing
    valence            missing
    tempo              missing (below range)
    loudness           missing
    time_signature     missing (below range)
    mode               minor key (real value)
    key                C (real value)
    acousticness       real value
    instrumentalness   real value
    liveness           real value
    speechiness        real value

Missing features are left out of vector math entirely, so two songs are
only compared on the features both of them actually have.
"""

import math
from dataclasses import dataclass, fields, replace
from numbers import Real
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from songrec.errors import MalformedInputError


FEATURE_RANGES: Dict[str, Tuple[float, float]] = {
    'energy': (0.0, 1.0),
    'danceability': (0.0, 1.0),
    'valence': (0.0, 1.0),
    'tempo': (50.0, 200.0),
    'acousticness': (0.0, 1.0),
    'instrumentalness': (0.0, 1.0),
    'liveness': (0.0, 1.0),
    'speechiness': (0.0, 1.0),
    'loudness': (-60.0, 0.0),
    'mode': (0.0, 1.0),
    'key': (0.0, 11.0),
    'time_signature': (3.0, 7.0),
}

FEATURE_NAMES: Tuple[str, ...] = tuple(FEATURE_RANGES)

# Population defaults, the anchor for confidence blending
DEFAULT_FEATURE_VALUES: Dict[str, float] = {
    'energy': 0.5,
    'danceability': 0.5,
    'valence': 0.5,
    'tempo': 120.0,
    'acousticness': 0.1,
    'instrumentalness': 0.1,
    'liveness': 0.1,
    'speechiness': 0.1,
    'loudness': -10.0,
    'mode': 1.0,
    'key': 0.0,
    'time_signature': 4.0,
}

ZERO_IS_MISSING = frozenset({
    'energy', 'danceability', 'valence', 'tempo', 'loudness', 'time_signature',
})

DISCRETE_FEATURES = frozenset({'mode', 'key', 'time_signature'})

# Admission criterion for FeaturePredictor training data
CORE_FEATURES: Tuple[str, ...] = ('energy', 'danceability', 'valence', 'tempo')


def is_missing(name: str, value: Optional[float]) -> bool:
    """True if ``value`` counts as absent for feature ``name``"""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return value == 0 and name in ZERO_IS_MISSING


def clamp_value(name: str, value: float) -> float:
    low, high = FEATURE_RANGES[name]
    return max(low, min(high, value))


def normalize_value(name: str, value: float) -> float:
    low, high = FEATURE_RANGES[name]
    return max(0.0, min(1.0, (value - low) / (high - low)))


def denormalize_value(name: str, normalized: float) -> float:
    low, high = FEATURE_RANGES[name]
    return low + max(0.0, min(1.0, normalized)) * (high - low)


def default_value(name: str) -> float:
    return DEFAULT_FEATURE_VALUES[name]


def _shared(a: Mapping[str, float], b: Mapping[str, float]) -> List[str]:
    return sorted(key for key in a if key in b)


def partial_cosine(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """
    Cosine similarity over the keys both mappings share

    Inputs are normalized (non-negative) vectors, so the result is in
    [0, 1]. No shared keys, or a zero norm on either side, gives 0.
    """
    keys = _shared(a, b)
    if not keys:
        return 0.0

    x = np.array([a[k] for k in keys], dtype=float)
    y = np.array([b[k] for k in keys], dtype=float)

    norm = np.linalg.norm(x) * np.linalg.norm(y)
    if norm == 0:
        return 0.0

    return float(max(0.0, min(1.0, x @ y / norm)))


def partial_euclidean(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Euclidean distance over shared keys; infinite if nothing is shared"""
    keys = _shared(a, b)
    if not keys:
        return math.inf

    x = np.array([a[k] for k in keys], dtype=float)
    y = np.array([b[k] for k in keys], dtype=float)
    return float(np.linalg.norm(x - y))


@dataclass(frozen=True)
class FeatureVector:
    """
    A song's raw audio features, each one independently optional

    Values are stored in raw units. ``present()`` and ``normalized()``
    drop the missing ones, so callers never see a sentinel zero.
    """

    energy: Optional[float] = None
    danceability: Optional[float] = None
    valence: Optional[float] = None
    tempo: Optional[float] = None
    acousticness: Optional[float] = None
    instrumentalness: Optional[float] = None
    liveness: Optional[float] = None
    speechiness: Optional[float] = None
    loudness: Optional[float] = None
    mode: Optional[float] = None
    key: Optional[float] = None
    time_signature: Optional[float] = None

    def __post_init__(self):
        for field in fields(self):
            value = getattr(self, field.name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, Real):
                raise MalformedInputError(
                    f"Feature '{field.name}' must be numeric, got {type(value).__name__}"
                )
            value = float(value)
            object.__setattr__(self, field.name, None if math.isnan(value) else value)

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Optional[float]]]) -> 'FeatureVector':
        """Build from a mapping, ignoring keys that are not audio features"""
        if not values:
            return cls()
        return cls(**{name: values[name] for name in FEATURE_NAMES if name in values})

    def get(self, name: str) -> Optional[float]:
        """Raw value, or None when missing (sentinel zeros included)"""
        value = getattr(self, name)
        return None if is_missing(name, value) else value

    def present(self) -> Dict[str, float]:
        return {
            name: getattr(self, name)
            for name in FEATURE_NAMES
            if not is_missing(name, getattr(self, name))
        }

    def normalized(self) -> Dict[str, float]:
        return {name: normalize_value(name, value) for name, value in self.present().items()}

    def missing(self) -> List[str]:
        return [name for name in FEATURE_NAMES if is_missing(name, getattr(self, name))]

    def is_feature_complete(self) -> bool:
        return all(self.get(name) is not None for name in CORE_FEATURES)

    def has_any(self) -> bool:
        return bool(self.present())

    def with_values(self, values: Mapping[str, float]) -> 'FeatureVector':
        return replace(self, **{k: v for k, v in values.items() if k in FEATURE_RANGES})

    def as_dict(self) -> Dict[str, Optional[float]]:
        return {name: getattr(self, name) for name in FEATURE_NAMES}

    def out_of_range(self) -> Dict[str, float]:
        """Present values lying outside their documented bounds"""
        violations = {}
        for name, value in self.present().items():
            low, high = FEATURE_RANGES[name]
            if value < low or value > high:
                violations[name] = value
        return violations

    def characteristics(self) -> List[str]:
        """
        Audio signature tags

        EXAMPLE:
        ========
        energy 0.85, danceability 0.8, tempo 175
        → ['high-energy', 'danceable', 'fast-tempo']
        """
        normalized = self.normalized()
        tags = []

        if normalized.get('energy', 0) > 0.7:
            tags.append('high-energy')
        if normalized.get('danceability', 0) > 0.7:
            tags.append('danceable')
        if normalized.get('valence', 0) > 0.7:
            tags.append('positive')
        if normalized.get('acousticness', 0) > 0.7:
            tags.append('acoustic')
        if normalized.get('speechiness', 0) > 0.7:
            tags.append('vocal-heavy')

        if 'tempo' in normalized:
            if normalized['tempo'] > 0.8:
                tags.append('fast-tempo')
            elif normalized['tempo'] < 0.3:
                tags.append('slow-tempo')
            else:
                tags.append('medium-tempo')

        return tags
