import math

import pytest

from songrec.errors import MalformedInputError
from songrec.models.features import (
    FeatureVector,
    is_missing,
    normalize_value,
    partial_cosine,
    partial_euclidean,
)


def test_zero_is_missing_only_for_sentinel_features():
    vector = FeatureVector(energy=0.0, mode=0.0, key=0.0, acousticness=0.0)

    assert vector.get('energy') is None
    assert vector.get('mode') == 0.0
    assert vector.get('key') == 0.0
    assert vector.get('acousticness') == 0.0
    assert 'energy' in vector.missing()
    assert 'mode' not in vector.missing()


def test_is_missing_handles_none_and_nan():
    assert is_missing('valence', None)
    assert is_missing('valence', float('nan'))
    assert not is_missing('valence', 0.4)


def test_nan_becomes_none():
    assert FeatureVector(energy=float('nan')).energy is None


def test_non_numeric_feature_is_rejected():
    with pytest.raises(MalformedInputError):
        FeatureVector(energy='loud')
    with pytest.raises(MalformedInputError):
        FeatureVector(mode=True)


def test_normalization_uses_documented_ranges():
    assert normalize_value('tempo', 125) == pytest.approx(0.5)
    assert normalize_value('tempo', 20) == 0.0
    assert normalize_value('loudness', -30) == pytest.approx(0.5)

    normalized = FeatureVector(energy=0.8, tempo=200, loudness=None).normalized()
    assert normalized == {'energy': 0.8, 'tempo': 1.0}


def test_feature_completeness_needs_core_features():
    assert FeatureVector(energy=0.5, danceability=0.5, valence=0.5, tempo=120).is_feature_complete()
    assert not FeatureVector(energy=0.5, danceability=0.5, valence=0.5, tempo=0).is_feature_complete()
    assert not FeatureVector(energy=0.5, danceability=0.5, valence=0.5).is_feature_complete()


def test_from_mapping_ignores_unknown_keys():
    vector = FeatureVector.from_mapping({'energy': 0.7, 'bpm_guess': 128})
    assert vector.present() == {'energy': 0.7}


def test_partial_cosine_uses_shared_keys_only():
    assert partial_cosine({'energy': 0.5}, {'valence': 0.5}) == 0.0
    assert partial_cosine({'energy': 0.5, 'tempo': 0.2}, {'energy': 0.5, 'tempo': 0.2, 'valence': 0.9}) == pytest.approx(1.0)
    assert partial_cosine({'energy': 0.0}, {'energy': 0.4}) == 0.0


def test_partial_euclidean():
    assert math.isinf(partial_euclidean({'energy': 0.5}, {'tempo': 0.5}))
    assert partial_euclidean({'energy': 0.2, 'tempo': 0.1}, {'energy': 0.5, 'tempo': 0.5}) == pytest.approx(0.5)


def test_characteristics():
    tags = FeatureVector(energy=0.85, danceability=0.8, tempo=175).characteristics()
    assert tags == ['high-energy', 'danceable', 'fast-tempo']
    assert FeatureVector().characteristics() == []


def test_out_of_range():
    vector = FeatureVector(energy=1.4, tempo=240, key=5)
    assert vector.out_of_range() == {'energy': 1.4, 'tempo': 240.0}
