"""
Genre & Mood Voting

Each voter looks at one kind of evidence and returns (label, confidence)
votes. The combiner sums confidence per label and keeps the best two.

GENRE VOTERS:
=============
- audio profile: cosine to per-genre average vectors (top 3)
- metadata: artist / title keywords and release year        (0.6)
- known artists: lookup table of artist name fragments       (0.7)
- release year: era buckets                                  (0.5)

MOOD VOTERS:
============
- audio profile: cosine to per-mood average vectors (top 3)
- audio thresholds: energy / valence / danceability / tempo  (0.6)
- title keywords                                             (0.5)
- genre mapping: typical moods of the song's genres          (0.4)

EXAMPLE:
========
"Lil Uzi Vert", no audio features, no genres:
    metadata      → Trap 0.6, Hip-Hop 0.6
    known artists → Trap 0.7
    → ['Trap', 'Hip-Hop']
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Sequence

from loguru import logger

from songrec.models.entities import Song
from songrec.models.features import partial_cosine


Profiles = Mapping[str, Mapping[str, float]]


@dataclass(frozen=True)
class Vote:
    label: str
    confidence: float
    voter: str


Voter = Callable[[Song, Profiles], List[Vote]]


KNOWN_ARTISTS: Dict[str, Sequence[str]] = {
    'Trap': ('uzi', 'vert', 'carti', 'thug', 'future', 'migos'),
    'Hip-Hop': ('drake', 'kendrick', 'cole', 'kanye', 'jay-z'),
    'R&B': ('weeknd', 'beyonce', 'rihanna', 'usher', 'chris brown'),
    'Pop': ('taylor', 'swift', 'ariana', 'grande', 'justin', 'bieber'),
}

TITLE_MOODS: Dict[str, Sequence[str]] = {
    'Happy': ('happy', 'joy', 'smile', 'sunshine', 'bright', 'cheerful'),
    'Sad': ('sad', 'cry', 'tears', 'lonely', 'broken', 'hurt', 'pain'),
    'Energetic': ('energy', 'fire', 'power', 'strong', 'wild', 'crazy'),
    'Chill': ('chill', 'calm', 'peaceful', 'quiet', 'soft', 'gentle'),
    'Romantic': ('love', 'heart', 'romance', 'kiss', 'sweet', 'tender'),
    'Aggressive': ('fight', 'war', 'battle', 'rage', 'angry', 'furious'),
    'Party': ('party', 'dance', 'club', 'night', 'celebration', 'fun'),
}

GENRE_MOODS: Dict[str, Sequence[str]] = {
    'trap': ('Energetic', 'Aggressive'),
    'hip-hop': ('Energetic', 'Confident'),
    'rap': ('Aggressive', 'Confident'),
    'r&b': ('Romantic', 'Chill'),
    'pop': ('Happy', 'Danceable'),
    'rock': ('Energetic', 'Aggressive'),
    'jazz': ('Chill', 'Sophisticated'),
    'classical': ('Peaceful', 'Sophisticated'),
    'electronic': ('Energetic', 'Danceable'),
    'country': ('Happy', 'Nostalgic'),
}


def _dedupe(labels: Iterable[str]) -> List[str]:
    return list(OrderedDict.fromkeys(labels))


# ===== SHARED =====

def audio_profile_voter(song: Song, profiles: Profiles) -> List[Vote]:
    """Top 3 labels whose average vector is closest to the song's audio"""
    normalized = song.features.normalized()
    if not normalized or not profiles:
        return []

    scored = [(label, partial_cosine(normalized, profile)) for label, profile in profiles.items()]
    scored = [(label, score) for label, score in scored if score > 0]
    scored.sort(key=lambda pair: (-pair[1], pair[0]))

    return [Vote(label, score, 'audio-profile') for label, score in scored[:3]]


# ===== GENRE =====

def genre_metadata_voter(song: Song, profiles: Profiles) -> List[Vote]:
    artist = (song.artist or '').lower()
    title = (song.title or '').lower()
    labels = []

    if 'uzi' in artist or 'vert' in artist:
        labels += ['Trap', 'Hip-Hop', 'Rap']

    if 'trap' in title or 'drill' in title:
        labels.append('Trap')
    if 'love' in title or 'heart' in title:
        labels += ['R&B', 'Pop']
    if 'party' in title or 'dance' in title:
        labels += ['Pop', 'Dance']

    if song.year:
        if 2015 <= song.year <= 2020:
            labels += ['Trap', 'Hip-Hop']
        elif song.year > 2020:
            labels += ['Rap', 'Hip-Hop']

    return [Vote(label, 0.6, 'metadata') for label in _dedupe(labels)[:2]]


def known_artist_voter(song: Song, profiles: Profiles) -> List[Vote]:
    artist = (song.artist or '').lower()
    if not artist:
        return []
    return [
        Vote(genre, 0.7, 'known-artist')
        for genre, fragments in KNOWN_ARTISTS.items()
        if any(fragment in artist for fragment in fragments)
    ]


def release_year_voter(song: Song, profiles: Profiles) -> List[Vote]:
    year = song.year
    if not year:
        return []

    if 2010 <= year <= 2015:
        labels = ['Hip-Hop', 'Pop']
    elif 2015 < year <= 2020:
        labels = ['Trap', 'Hip-Hop', 'Rap']
    elif year > 2020:
        labels = ['Rap', 'Hip-Hop', 'Trap']
    else:
        labels = []

    return [Vote(label, 0.5, 'release-year') for label in labels]


# ===== MOOD =====

def mood_threshold_voter(song: Song, profiles: Profiles) -> List[Vote]:
    features = song.features
    energy = features.get('energy')
    valence = features.get('valence')
    danceability = features.get('danceability')
    tempo = features.get('tempo')
    labels = []

    if energy is not None:
        if energy > 0.7:
            labels += ['Energetic', 'Upbeat']
        elif energy < 0.3:
            labels += ['Chill', 'Relaxed']

    if valence is not None:
        if valence > 0.7:
            labels += ['Happy', 'Positive']
        elif valence < 0.3:
            labels += ['Sad', 'Melancholic']

    if danceability is not None and danceability > 0.7:
        labels += ['Danceable', 'Party']

    if tempo is not None:
        if tempo > 140:
            labels += ['Fast', 'Energetic']
        elif tempo < 80:
            labels += ['Slow', 'Chill']

    return [Vote(label, 0.6, 'audio-threshold') for label in _dedupe(labels)[:2]]


def title_keyword_voter(song: Song, profiles: Profiles) -> List[Vote]:
    title = (song.title or '').lower()
    if not title:
        return []
    return [
        Vote(mood, 0.5, 'title-keyword')
        for mood, keywords in TITLE_MOODS.items()
        if any(keyword in title for keyword in keywords)
    ]


def genre_mapping_voter(song: Song, profiles: Profiles) -> List[Vote]:
    labels = []
    for genre in sorted(song.genres):
        labels += GENRE_MOODS.get(genre.lower(), ())
    return [Vote(label, 0.4, 'genre-mapping') for label in _dedupe(labels)[:2]]


GENRE_VOTERS: Sequence[Voter] = (
    audio_profile_voter,
    genre_metadata_voter,
    known_artist_voter,
    release_year_voter,
)

MOOD_VOTERS: Sequence[Voter] = (
    audio_profile_voter,
    mood_threshold_voter,
    title_keyword_voter,
    genre_mapping_voter,
)


# ===== COMBINER =====

def collect_votes(voters: Iterable[Voter], song: Song, profiles: Profiles) -> List[Vote]:
    """Run every voter; a voter tripping over bad data contributes nothing"""
    votes = []
    for voter in voters:
        try:
            votes.extend(voter(song, profiles))
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Voter {getattr(voter, '__name__', voter)} skipped song {song.id}: {e}")
    return votes


def combine_votes(votes: Iterable[Vote], top_n: int = 2) -> List[str]:
    """
    Sum confidence per label, return the ``top_n`` best labels

    Labels are matched case-insensitively; the first spelling seen wins.
    Ties are broken alphabetically.
    """
    totals: Dict[str, float] = {}
    spelling: Dict[str, str] = {}

    for vote in votes:
        key = vote.label.casefold()
        spelling.setdefault(key, vote.label)
        totals[key] = totals.get(key, 0.0) + vote.confidence

    ranked = sorted(totals, key=lambda key: (-totals[key], key))
    return [spelling[key] for key in ranked[:top_n]]
