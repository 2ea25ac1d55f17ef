"""
Popularity ranking

Order: total plays, then average rating, then catalogue popularity, then
song id. Scores decay linearly with rank (first song 1.0), so any
score-sorted merge keeps the popularity order.
"""

from typing import Iterable, List, Optional, Sequence

import pandas as pd

from songrec.models.entities import ScoredSong, Song


def popularity_ranking(
    songs: Sequence[Song],
    limit: int = 20,
    exclude: Optional[Iterable] = None,
    reason: str = "Popular song",
) -> List[ScoredSong]:
    excluded = set(exclude or ())
    candidates = [song for song in songs if song.id not in excluded]
    if not candidates or limit <= 0:
        return []

    df = pd.DataFrame({
        'pos': range(len(candidates)),
        'plays': [song.play_count for song in candidates],
        'rating': [song.avg_rating for song in candidates],
        'popularity': [song.popularity if song.popularity is not None else -1.0 for song in candidates],
        'key': [str(song.id) for song in candidates],
    })
    df = df.sort_values(
        ['plays', 'rating', 'popularity', 'key'],
        ascending=[False, False, False, True],
        kind='mergesort',
    )

    total = len(df)
    return [
        ScoredSong(candidates[pos], 1.0 - rank / total, reason)
        for rank, pos in enumerate(df['pos'].head(limit))
    ]
