from dataclasses import replace
from itertools import combinations

import pytest

from songrec.errors import MalformedInputError
from songrec.models.features import FeatureVector
from songrec.models.similarity import SimilarityEngine, SimilarityWeights, tag_overlap

from conftest import make_song


def test_similarity_is_symmetric(catalog, similarity):
    for a, b in combinations(catalog, 2):
        assert similarity.similarity(a, b) == similarity.similarity(b, a)


def test_similarity_is_bounded(catalog, similarity):
    for a, b in combinations(catalog, 2):
        assert 0.0 <= similarity.similarity(a, b) <= 1.0


def test_identical_songs_score_one(similarity):
    features = dict(energy=0.8, danceability=0.7, valence=0.3, tempo=125)
    a = make_song('a', 'Artist', genres=['Trap'], moods=['Energetic'], **features)
    b = make_song('b', 'Artist', genres=['trap'], moods=['Energetic'], **features)

    assert b.features.normalized()['tempo'] == pytest.approx(0.5)
    assert similarity.similarity(a, b) == pytest.approx(1.0)


def test_removing_a_factor_never_raises_score_above_full_data(catalog, similarity):
    """
    The full score is a weighted mean of the remaining composite and the
    removed factor, so it can only fall below the reduced score when the
    removed factor scored below the rest.
    """
    removals = {
        'genre': lambda s: s.with_tags(genres=[]),
        'mood': lambda s: s.with_tags(moods=[]),
        'audio': lambda s: s.with_features(FeatureVector()),
        'popularity': lambda s: replace(s, popularity=None),
    }

    for a, b in combinations(catalog, 2):
        full_factors = similarity.factor_scores(a, b)
        full = similarity.combine(full_factors)

        for factor, remove in removals.items():
            if factor not in full_factors:
                continue
            reduced_b = remove(b)
            reduced = similarity.similarity(a, reduced_b)
            remaining = similarity.combine({k: v for k, v in full_factors.items() if k != factor})

            assert factor not in similarity.factor_scores(a, reduced_b)
            assert reduced == pytest.approx(remaining)
            if full_factors[factor] >= remaining:
                assert reduced <= full + 1e-12


def test_missing_data_is_not_scored_as_zero(similarity):
    target = make_song('t', 'A', genres=['Pop'], energy=0.8, valence=0.6)
    sentinel = make_song('x', 'B', genres=['Pop'], energy=0.0, valence=0.6)
    absent = make_song('y', 'B', genres=['Pop'], valence=0.6)

    assert similarity.similarity(target, sentinel) == similarity.similarity(target, absent)


def test_audio_similarity_without_shared_features_is_zero(similarity):
    a = make_song('a', energy=0.8)
    b = make_song('b', valence=0.8)
    assert similarity.audio_similarity(a, b) == 0.0
    assert 'audio' not in similarity.factor_scores(a, b)


def test_no_factors_gives_zero():
    engine = SimilarityEngine()
    a = make_song('a', artist='')
    b = make_song('b', artist='')
    assert engine.similarity(a, b) == 0.0


def test_tag_overlap_is_case_insensitive_jaccard():
    assert tag_overlap(['Trap', 'Hip-Hop'], ['trap']) == pytest.approx(0.5)
    assert tag_overlap([], ['trap']) is None


@pytest.mark.parametrize('weights', [
    dict(audio=-0.1),
    dict(audio=0.9, genre=0.5),
    dict(audio=0, genre=0, mood=0, artist=0, popularity=0),
])
def test_invalid_weights_are_rejected(weights):
    with pytest.raises(MalformedInputError):
        SimilarityWeights(**weights)


def test_find_similar_excludes_target_and_ranks(catalog, similarity):
    target = catalog[0]
    results = similarity.find_similar(target, catalog, limit=3)

    assert len(results) == 3
    assert target.id not in [r.song.id for r in results]
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert results[0].song.artist == 'Lil Uzi Vert'


def test_distance_over_shared_features(similarity):
    a = make_song('a', energy=0.2, valence=0.1)
    b = make_song('b', energy=0.5, valence=0.5)
    assert similarity.distance(a, b) == pytest.approx(0.5)


def test_cluster_separates_energetic_from_calm(similarity):
    songs = [
        make_song('loud1', energy=0.9, danceability=0.8, valence=0.7, tempo=170),
        make_song('loud2', energy=0.95, danceability=0.85, valence=0.75, tempo=175),
        make_song('calm1', energy=0.1, danceability=0.2, valence=0.3, tempo=60),
        make_song('calm2', energy=0.15, danceability=0.25, valence=0.3, tempo=65),
    ]
    clusters = similarity.cluster(songs, n_clusters=2)

    groups = sorted(sorted(s.id for s in c.songs) for c in clusters)
    assert groups == [['calm1', 'calm2'], ['loud1', 'loud2']]
    assert sum(c.size for c in clusters) == 4


def test_cluster_edge_cases(similarity):
    assert similarity.cluster([], 3) == []
    assert len(similarity.cluster([make_song('a', energy=0.5)], 5)) == 1
    with pytest.raises(MalformedInputError):
        similarity.cluster([make_song('a')], 0)


def test_dropping_shared_genre_lowers_score(similarity):
    a = make_song('a', 'Left', genres=['Trap'], moods=['Dark'], energy=0.8, valence=0.3)
    b = make_song('b', 'Right', genres=['trap'], moods=['dark'], energy=0.4, valence=0.9)

    full = similarity.similarity(a, b)

    assert similarity.similarity(a, b.with_tags(genres=[])) < full
    assert similarity.similarity(a.with_tags(genres=[]), b) < full
    assert similarity.similarity(a, b.with_tags(moods=[])) < full
