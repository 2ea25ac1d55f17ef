"""
Hybrid Recommendation Ranker

SYSTEM DESIGN DECISION: Why a weighted sum?
===========================================

SINGLE STRATEGY LIMITATIONS:
============================
1. Collaborative:
   ✅ Learns from listening behaviour
   ❌ Needs history, favours already-played neighbourhoods

2. Content-Based:
   ✅ Explainable, works for unplayed songs
   ❌ Filter bubble

3. AI-Enhanced:
   ✅ Lets songs with missing analysis compete
   ❌ Only as good as the predictions

BLENDING STRATEGY:
==================
Score(song) = Σ weight_source × score_source(song)

    defaults: collaborative 0.3, content 0.3, ai-enhanced 0.3, popularity 0.1

Each weight in [0, 1], total ≤ 1, so the blended score stays in [0, 1].

WHY SUM, NOT MAX:
=================
A song endorsed by two independent strategies is convergent evidence and
should outrank one endorsed by a single strategy:

    content 0.4 × 0.3 + collaborative 0.6 × 0.3 = 0.30
    collaborative alone                          = 0.18

COLD START:
===========
No plays, skips, likes or ratings → no filter can produce anything, so
they are not called at all. The user gets the popularity list, tagged
'cold-start'.
"""

import math
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger

from songrec.errors import MalformedInputError
from songrec.models.entities import RecommendationResult, ScoredSong, Song, UserHistory, UserId
from songrec.models.popularity import popularity_ranking


POPULARITY_SLICE = 0.2
WEIGHT_TOLERANCE = 1e-9


@dataclass(frozen=True)
class HybridWeights:
    collaborative: float = 0.3
    content: float = 0.3
    ai_enhanced: float = 0.3
    popularity: float = 0.1

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> 'HybridWeights':
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise MalformedInputError(f"Unknown hybrid weight(s): {sorted(unknown)}")
        return cls(**values)

    def validate(self) -> 'HybridWeights':
        for name, value in asdict(self).items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                raise MalformedInputError(f"Hybrid weight '{name}' must be a number, got {value!r}")
            if not 0 <= value <= 1:
                raise MalformedInputError(f"Hybrid weight '{name}' must be in [0, 1], got {value}")

        total = sum(asdict(self).values())
        if total > 1 + WEIGHT_TOLERANCE:
            raise MalformedInputError(f"Hybrid weights must sum to at most 1, got {total:.4f}")
        return self


class HybridRanker:
    """
    Blends every recommendation source into one ranked, explained list

    Sources run one after another against the same read-only snapshot;
    none of them mutates shared state.
    """

    def __init__(
        self,
        collaborative,
        content,
        enhanced,
        popularity: Callable[..., List[ScoredSong]] = popularity_ranking,
    ):
        self.collaborative = collaborative
        self.content = content
        self.enhanced = enhanced
        self.popularity = popularity
        logger.info("Hybrid ranker initialized")

    def recommend(
        self,
        history: UserHistory,
        catalog: Sequence[Song],
        weights: Union[HybridWeights, Mapping[str, float], None] = None,
        limit: int = 20,
        community: Optional[Mapping[UserId, UserHistory]] = None,
    ) -> List[RecommendationResult]:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise MalformedInputError(f"limit must be a positive integer, got {limit!r}")

        if weights is None:
            weights = HybridWeights()
        elif not isinstance(weights, HybridWeights):
            weights = HybridWeights.from_mapping(weights)
        weights.validate()

        if history.is_cold_start():
            return self._cold_start(history, catalog, limit)

        contributions = []
        if weights.collaborative > 0:
            contributions.append((
                'collaborative',
                weights.collaborative,
                self.collaborative.recommend(history, catalog, community=community, limit=limit),
            ))
        if weights.content > 0:
            contributions.append((
                'content-based',
                weights.content,
                self.content.recommend(history, catalog, limit=limit),
            ))
        if weights.ai_enhanced > 0:
            contributions.append((
                'ai-enhanced',
                weights.ai_enhanced,
                self.enhanced.recommend(history, catalog, limit=limit),
            ))
        if weights.popularity > 0:
            contributions.append((
                'popularity',
                weights.popularity,
                self.popularity(
                    catalog,
                    math.ceil(limit * POPULARITY_SLICE),
                    exclude=history.seen_song_ids(),
                ),
            ))

        results = self.merge(contributions, limit)
        logger.info(f"Hybrid: {len(results)} recommendations for user {history.user_id} "
                    f"from {', '.join(f'{tag}={len(entries)}' for tag, _, entries in contributions)}")
        return results

    @staticmethod
    def merge(contributions, limit: int) -> List[RecommendationResult]:
        """
        Sum weighted scores per song identity

        ``contributions`` is a list of (source tag, weight, entries).
        """
        merged: Dict = {}

        for tag, weight, entries in contributions:
            for entry in entries:
                slot = merged.get(entry.song.id)
                if slot is None:
                    slot = merged[entry.song.id] = {
                        'song': entry.song, 'score': 0.0, 'sources': [], 'reasons': [],
                    }
                slot['score'] += entry.score * weight
                if tag not in slot['sources']:
                    slot['sources'].append(tag)
                if entry.reason and entry.reason not in slot['reasons']:
                    slot['reasons'].append(entry.reason)

        ordered = sorted(merged.values(), key=lambda s: (-s['score'], str(s['song'].id)))[:limit]

        return [
            RecommendationResult(
                song=slot['song'],
                score=max(0.0, min(1.0, slot['score'])),
                sources=tuple(slot['sources']),
                rationale='; '.join(slot['reasons']),
                rank=rank,
            )
            for rank, slot in enumerate(ordered, start=1)
        ]

    def _cold_start(
        self,
        history: UserHistory,
        catalog: Sequence[Song],
        limit: int,
    ) -> List[RecommendationResult]:
        logger.info(f"Cold start for user {history.user_id}, serving popular songs")
        popular = self.popularity(catalog, limit, reason="Popular with listeners")
        return [
            RecommendationResult(
                song=entry.song,
                score=entry.score,
                sources=('cold-start',),
                rationale="Popular with listeners; like or play songs to personalize",
                rank=rank,
            )
            for rank, entry in enumerate(popular, start=1)
        ]
