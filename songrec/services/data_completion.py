"""
Data Completion Batch Job

Fills missing audio features, genres and moods with FeaturePredictor
output and writes them back through the song repository.

PIPELINE:
=========
1. Make sure the feature model is current
2. Select songs with gaps (missing core features, no genres or no moods)
3. Per batch, per song: plan → skip if nothing useful → persist
4. After a real run that changed data: invalidate the model (and any
   downstream caches) so the next request retrains on the new data

A failure on one song is counted and logged; the batch keeps going.
"""

from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

import pandas as pd
from loguru import logger

from songrec import settings
from songrec.errors import MalformedInputError, SongNotFoundError
from songrec.infra.repositories import SongRepository
from songrec.models.entities import Song, SongId
from songrec.models.feature_predictor import FeaturePredictor
from songrec.models.features import clamp_value


@dataclass
class SongCompletion:
    song_id: SongId
    features: Dict[str, float] = field(default_factory=dict)
    genres: List[str] = field(default_factory=list)
    moods: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.features or self.genres or self.moods)


@dataclass
class CompletionReport:
    completed: int = 0
    skipped: int = 0
    errors: int = 0
    dry_run: bool = False
    songs: List[SongCompletion] = field(default_factory=list)

    def to_dict(self, include_songs: bool = False) -> Dict:
        report = {
            'completed': self.completed,
            'skipped': self.skipped,
            'errors': self.errors,
            'dry_run': self.dry_run,
        }
        if include_songs:
            report['songs'] = [asdict(song) for song in self.songs]
        return report


def needs_completion(song: Song) -> bool:
    return not song.is_feature_complete() or not song.genres or not song.moods


class DataCompletionEngine:
    def __init__(
        self,
        songs: SongRepository,
        predictor: FeaturePredictor,
        batch_size: int = settings.COMPLETION_BATCH_SIZE,
        on_data_changed: Optional[Callable[[], None]] = None,
    ):
        self.songs = songs
        self.predictor = predictor
        self.batch_size = batch_size
        self.on_data_changed = on_data_changed

    async def ensure_model(self):
        if self.predictor.needs_rebuild():
            self.predictor.initialize(await self.songs.get_feature_complete_songs())

    def plan(self, song: Song) -> SongCompletion:
        """Predicted values for every gap of ``song``; known data untouched"""
        completion = SongCompletion(song_id=song.id)

        for name, prediction in self.predictor.predict_audio_features(song).items():
            completion.features[name] = prediction.value

        if not song.genres:
            completion.genres = self.predictor.predict_genres(song)
        if not song.moods:
            completion.moods = self.predictor.predict_moods(song)

        return completion

    async def _apply(self, completion: SongCompletion):
        if completion.features:
            await self.songs.update_song_features(completion.song_id, completion.features)
        if completion.genres:
            await self.songs.set_song_genres(completion.song_id, completion.genres)
        if completion.moods:
            await self.songs.set_song_moods(completion.song_id, completion.moods)

    async def _select(self, song_id: Optional[SongId], max_songs: Optional[int]) -> List[Song]:
        if song_id is not None:
            song = await self.songs.get_song_by_id(song_id)
            if song is None:
                raise SongNotFoundError(song_id)
            return [song]

        candidates = [song for song in await self.songs.get_songs() if needs_completion(song)]
        return candidates[:max_songs] if max_songs else candidates

    async def complete_song_data(
        self,
        song_id: Optional[SongId] = None,
        dry_run: bool = False,
        batch_size: Optional[int] = None,
        max_songs: Optional[int] = None,
    ) -> CompletionReport:
        """
        Complete one song (``song_id``) or every song with gaps

        Returns counts of completed, skipped and failed songs. A dry run
        computes everything and writes nothing.
        """
        if batch_size is None:
            batch_size = self.batch_size
        if batch_size <= 0:
            raise MalformedInputError(f"batch_size must be positive, got {batch_size}")
        if max_songs is not None and max_songs <= 0:
            raise MalformedInputError(f"max_songs must be positive, got {max_songs}")

        await self.ensure_model()
        songs = await self._select(song_id, max_songs)
        report = CompletionReport(dry_run=dry_run)

        logger.info(f"🔧 Completing data for {len(songs)} songs "
                    f"(batch size {batch_size}{', dry run' if dry_run else ''})")

        for start in range(0, len(songs), batch_size):
            batch = songs[start:start + batch_size]
            for song in batch:
                try:
                    completion = self.plan(song)
                    if completion.is_empty():
                        report.skipped += 1
                        continue
                    if not dry_run:
                        await self._apply(completion)
                    report.completed += 1
                    report.songs.append(completion)
                except Exception:
                    logger.exception(f"Error completing song {song.id}")
                    report.errors += 1

            logger.info(f"  Batch {start // batch_size + 1}: "
                        f"{report.completed} completed, {report.skipped} skipped, {report.errors} errors")

        if report.completed and not dry_run:
            self.predictor.invalidate()
            if self.on_data_changed is not None:
                self.on_data_changed()

        logger.info(f"✓ Data completion finished: {report.to_dict()}")
        return report

    async def validate_and_clean(self, dry_run: bool = False) -> Dict[str, int]:
        """Clamp stored feature values that lie outside their bounds"""
        cleaned = 0
        errors = 0

        for song in await self.songs.get_songs():
            try:
                violations = song.features.out_of_range()
                if not violations:
                    continue
                fixed = {name: clamp_value(name, value) for name, value in violations.items()}
                if not dry_run:
                    await self.songs.update_song_features(song.id, fixed)
                logger.debug(f"Song {song.id}: clamped {fixed}")
                cleaned += 1
            except Exception:
                logger.exception(f"Error cleaning song {song.id}")
                errors += 1

        if cleaned and not dry_run:
            self.predictor.invalidate()
            if self.on_data_changed is not None:
                self.on_data_changed()

        logger.info(f"✓ Data cleaning finished: {cleaned} songs cleaned, {errors} errors")
        return {'cleaned': cleaned, 'errors': errors}

    async def completion_stats(self) -> Dict[str, float]:
        songs = await self.songs.get_songs()
        df = pd.DataFrame({
            'complete': [song.is_feature_complete() for song in songs],
            'genres': [bool(song.genres) for song in songs],
            'moods': [bool(song.moods) for song in songs],
        })

        total = len(df)

        def rate(column: str) -> int:
            return int(round(df[column].mean() * 100)) if total else 0

        return {
            'total_songs': total,
            'songs_with_complete_audio_features': int(df['complete'].sum()) if total else 0,
            'songs_with_genres': int(df['genres'].sum()) if total else 0,
            'songs_with_moods': int(df['moods'].sum()) if total else 0,
            'audio_features_completion_rate': rate('complete'),
            'genres_completion_rate': rate('genres'),
            'moods_completion_rate': rate('moods'),
        }
