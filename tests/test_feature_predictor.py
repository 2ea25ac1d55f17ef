import pytest

from songrec.errors import MalformedInputError
from songrec.models.feature_predictor import (
    FALLBACK_GENRE_PROFILES,
    FeaturePredictor,
    ModelStatus,
    adjust_prediction,
    build_feature_model,
)
from songrec.models.features import DISCRETE_FEATURES, FEATURE_NAMES, FEATURE_RANGES

from conftest import make_song


def _as_dicts(model):
    return {
        name: {k: dict(v) for k, v in getattr(model, name).items()}
        for name in ('correlations', 'artist_averages', 'decade_averages', 'genre_profiles', 'mood_profiles')
    }


# ===== CONFIDENCE BLENDING =====

def test_adjust_prediction_full_confidence_keeps_value():
    assert adjust_prediction(0.73, 1, 'energy') == pytest.approx(0.73)


def test_adjust_prediction_zero_confidence_gives_default():
    assert adjust_prediction(0.9, 0, 'energy') == pytest.approx(0.5)
    assert adjust_prediction(180, 0, 'tempo') == pytest.approx(120)


def test_adjust_prediction_clamps_and_rounds():
    assert adjust_prediction(5.0, 1, 'energy') == 1.0
    assert adjust_prediction(0.2, 0.9, 'mode') == 0.0
    with pytest.raises(MalformedInputError):
        adjust_prediction(0.5, 1.5, 'energy')


# ===== MODEL BUILD =====

def test_build_is_deterministic(catalog):
    first = build_feature_model(catalog, built_at=1.0)
    second = build_feature_model(list(reversed(catalog)), built_at=99.0)

    assert first.fingerprint == second.fingerprint
    assert _as_dicts(first) == _as_dicts(second)
    assert first.status is ModelStatus.TRAINED
    assert first.training_size == 8


def test_insufficient_data_falls_back(catalog):
    model = build_feature_model(catalog[:3])

    assert model.status is ModelStatus.FALLBACK
    assert dict(model.artist_averages) == {}
    assert set(model.genre_profiles) == set(FALLBACK_GENRE_PROFILES)


def test_fallback_profiles_still_predict_genres(catalog):
    predictor = FeaturePredictor()
    predictor.initialize(catalog[:3])
    song = make_song('x', energy=0.8, danceability=0.7, valence=0.5, tempo=170, speechiness=0.6)

    assert predictor.status is ModelStatus.FALLBACK
    assert predictor.predict_genres(song)[0] == 'Trap'


# ===== FEATURE LADDER =====

def test_present_feature_is_returned_as_is(predictor, catalog):
    prediction = predictor.predict_feature(catalog[0], 'energy')
    assert (prediction.value, prediction.confidence, prediction.source) == (0.85, 1.0, 'present')


def test_artist_rung(predictor):
    prediction = predictor.predict_feature(make_song('x', 'Lil Uzi Vert'), 'energy')

    assert prediction.source == 'artist'
    assert prediction.confidence == 0.8
    assert prediction.value == pytest.approx(0.78)


def test_decade_rung(predictor):
    prediction = predictor.predict_feature(make_song('x', 'Nobody', year=2015), 'energy')
    decade_energy = (0.85 + 0.8 + 0.6 + 0.55 + 0.7 + 0.65 + 0.2) / 7

    assert prediction.source == 'decade'
    assert prediction.confidence == 0.6
    assert prediction.value == pytest.approx(decade_energy * 0.6 + 0.5 * 0.4)


def test_correlation_rung(fallback_predictor):
    prediction = fallback_predictor.predict_feature(make_song('x', energy=0.9), 'danceability')

    assert prediction.source == 'correlation'
    assert prediction.confidence == pytest.approx(0.3)
    assert prediction.value == pytest.approx(0.62)


def test_default_rung(fallback_predictor):
    prediction = fallback_predictor.predict_feature(make_song('x'), 'energy')

    assert prediction.source == 'default'
    assert prediction.confidence == 0.3
    assert prediction.value == pytest.approx(0.5)


def test_unknown_feature_is_rejected(predictor, catalog):
    with pytest.raises(MalformedInputError):
        predictor.predict_feature(catalog[0], 'bpm')


def test_predictions_stay_in_bounds(predictor, catalog):
    for song in catalog:
        for name, prediction in predictor.predict_audio_features(song).items():
            low, high = FEATURE_RANGES[name]
            assert low <= prediction.value <= high
            assert 0 <= prediction.confidence <= 1
            if name in DISCRETE_FEATURES:
                assert prediction.value == round(prediction.value)


def test_only_missing_features_are_predicted(predictor, catalog):
    predictions = predictor.predict_audio_features(catalog[8])
    assert 'energy' not in predictions
    assert set(predictions) == set(FEATURE_NAMES) - {'energy'}


# ===== GENRES & MOODS =====

def test_moods_use_predicted_genres(predictor):
    song = make_song('x', 'Lil Uzi Vert')
    assert predictor.predict_genres(song) == ['Trap', 'Hip-Hop']
    assert predictor.predict_moods(song)


def test_enhance_fills_gaps_without_overwriting(predictor, catalog):
    original = catalog[0]
    enhanced = predictor.enhance(original)

    assert enhanced.features.energy == 0.85
    assert enhanced.genres == original.genres
    assert enhanced.moods == original.moods
    assert not enhanced.features.missing() or set(enhanced.features.missing()) <= set(original.features.missing())

    blank = predictor.enhance(catalog[7])
    assert blank.is_feature_complete()
    assert blank.genres
    assert blank.moods


def test_enhance_is_memoized_per_model(predictor, catalog):
    song = catalog[7]
    first = predictor.enhance(song)

    assert predictor.enhance(song) is first

    predictor.initialize(catalog[:3])
    assert predictor.enhance(song) is not first


# ===== LIFECYCLE =====

def test_lifecycle_with_clock(catalog):
    now = [0.0]
    predictor = FeaturePredictor(refresh_seconds=10, clock=lambda: now[0])

    assert predictor.status is ModelStatus.UNINITIALIZED
    assert predictor.needs_rebuild()

    predictor.initialize(catalog)
    assert predictor.status is ModelStatus.TRAINED
    assert not predictor.needs_rebuild()

    now[0] = 10.0
    assert predictor.needs_rebuild()

    predictor.initialize(catalog)
    assert not predictor.needs_rebuild()

    predictor.invalidate()
    assert predictor.needs_rebuild()

    predictor.teardown()
    assert predictor.status is ModelStatus.UNINITIALIZED


def test_uninitialized_predictor_answers_from_fallback(fallback_predictor):
    assert fallback_predictor.model.is_fallback()
    assert fallback_predictor.status is ModelStatus.FALLBACK
