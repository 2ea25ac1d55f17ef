import pytest

from songrec.models.entities import Song, UserPreferenceEvent
from songrec.models.feature_predictor import FeaturePredictor
from songrec.models.features import FeatureVector
from songrec.models.similarity import SimilarityEngine


def make_song(song_id, artist='Nobody', title=None, year=None, genres=(), moods=(),
              popularity=None, play_count=0, avg_rating=0.0, **features):
    return Song(
        id=song_id,
        title=title or f"Song {song_id}",
        artist=artist,
        year=year,
        features=FeatureVector(**features),
        genres=genres,
        moods=moods,
        popularity=popularity,
        play_count=play_count,
        avg_rating=avg_rating,
    )


def event(user_id, song_id, kind, value=None, play_count=1):
    return UserPreferenceEvent(user_id=user_id, song_id=song_id, kind=kind, value=value, play_count=play_count)


@pytest.fixture
def catalog():
    return [
        make_song('s1', 'Lil Uzi Vert', 'XO Tour Llif3', 2017, ['Trap'], ['Energetic'], 80, 500, 4.5,
                  energy=0.85, danceability=0.75, valence=0.5, tempo=150, speechiness=0.3),
        make_song('s2', 'Lil Uzi Vert', 'The Way Life Goes', 2018, ['Trap', 'Hip-Hop'], ['Energetic'], 75, 400, 4.2,
                  energy=0.8, danceability=0.7, valence=0.45, tempo=145, speechiness=0.25),
        make_song('s3', 'Lil Uzi Vert', 'Just Wanna Rock', 2020, ['Trap'], ['Aggressive'], 70, 350, 4.0,
                  energy=0.9, danceability=0.8, valence=0.55, tempo=155, speechiness=0.35),
        make_song('s4', 'Drake', 'Passionfruit', 2016, ['Hip-Hop'], ['Chill'], 90, 900, 4.6,
                  energy=0.6, danceability=0.65, valence=0.4, tempo=110, speechiness=0.1),
        make_song('s5', 'Drake', 'Nice For What', 2018, ['Hip-Hop', 'R&B'], ['Chill'], 85, 800, 4.1,
                  energy=0.55, danceability=0.6, valence=0.35, tempo=100, speechiness=0.15),
        make_song('s6', 'The Weeknd', 'Starboy', 2019, ['R&B'], ['Romantic'], 88, 700, 4.3,
                  energy=0.7, danceability=0.65, valence=0.3, tempo=120, speechiness=0.05),
        make_song('s7', 'Taylor Swift', 'Shake It Off', 2014, ['Pop'], ['Happy'], 95, 1000, 4.8,
                  energy=0.65, danceability=0.75, valence=0.8, tempo=118, speechiness=0.05),
        make_song('s8', 'Unknown Artist', 'Untitled', 2021, play_count=5),
        make_song('s9', 'Lil Uzi Vert', 'Leak', 2022, play_count=50, energy=0.88),
        make_song('s10', 'Calm Band', 'Quiet Morning', 2012, ['Jazz'], ['Chill'], 40, 30, 3.9,
                  energy=0.2, danceability=0.3, valence=0.6, tempo=70, acousticness=0.9),
    ]


@pytest.fixture
def similarity():
    return SimilarityEngine()


@pytest.fixture
def predictor(catalog):
    predictor = FeaturePredictor()
    predictor.initialize(catalog)
    return predictor


@pytest.fixture
def fallback_predictor():
    return FeaturePredictor()
