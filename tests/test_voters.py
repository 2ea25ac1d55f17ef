from songrec.models.feature_predictor import FALLBACK_GENRE_PROFILES
from songrec.models.voters import (
    GENRE_VOTERS,
    Vote,
    audio_profile_voter,
    collect_votes,
    combine_votes,
    genre_mapping_voter,
    mood_threshold_voter,
    release_year_voter,
    title_keyword_voter,
)

from conftest import make_song


def test_uzi_without_audio_is_trap_or_hip_hop():
    song = make_song('x', 'Lil Uzi Vert')
    votes = collect_votes(GENRE_VOTERS, song, FALLBACK_GENRE_PROFILES)

    assert combine_votes(votes) == ['Trap', 'Hip-Hop']


def test_combine_votes_is_case_insensitive_and_breaks_ties_alphabetically():
    votes = [Vote('trap', 0.5, 'a'), Vote('Trap', 0.4, 'b'), Vote('Pop', 0.9, 'c'), Vote('Jazz', 0.1, 'd')]
    assert combine_votes(votes) == ['Pop', 'trap']
    assert combine_votes(votes, top_n=5) == ['Pop', 'trap', 'Jazz']
    assert combine_votes([]) == []


def test_failing_voter_is_skipped():
    def broken(song, profiles):
        raise ValueError("bad row")

    def steady(song, profiles):
        return [Vote('Jazz', 0.4, 'steady')]

    votes = collect_votes([broken, steady], make_song('x'), {})
    assert votes == [Vote('Jazz', 0.4, 'steady')]


def test_audio_profile_voter_keeps_top_three():
    song = make_song('x', energy=0.8, danceability=0.7, valence=0.5, tempo=170, speechiness=0.6)
    votes = audio_profile_voter(song, FALLBACK_GENRE_PROFILES)

    assert len(votes) == 3
    assert votes[0].label == 'Trap'
    assert votes[0].confidence > votes[1].confidence
    assert audio_profile_voter(make_song('y'), FALLBACK_GENRE_PROFILES) == []


def test_release_year_buckets():
    assert [v.label for v in release_year_voter(make_song('x', year=2015), {})] == ['Hip-Hop', 'Pop']
    assert [v.label for v in release_year_voter(make_song('x', year=2016), {})] == ['Trap', 'Hip-Hop', 'Rap']
    assert release_year_voter(make_song('x', year=1990), {}) == []


def test_mood_thresholds():
    calm = make_song('x', energy=0.2, valence=0.8)
    assert [v.label for v in mood_threshold_voter(calm, {})] == ['Chill', 'Relaxed']

    loud = make_song('y', energy=0.0, tempo=150)
    assert [v.label for v in mood_threshold_voter(loud, {})] == ['Fast', 'Energetic']


def test_title_keywords_and_genre_mapping():
    song = make_song('x', title='Love On Fire', genres=['Jazz'])
    assert {v.label for v in title_keyword_voter(song, {})} == {'Energetic', 'Romantic'}
    assert [v.label for v in genre_mapping_voter(song, {})] == ['Chill', 'Sophisticated']
