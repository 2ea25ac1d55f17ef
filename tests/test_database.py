import asyncio

import pytest

from songrec.errors import SongNotFoundError
from songrec.infra.database import SqlEventRepository, SqlSongRepository, get_db_manager
from songrec.infra.repositories import SongFilter
from songrec.models.entities import EventKind

from conftest import event, make_song


def run_with_db(tmp_path, scenario):
    async def runner():
        db = await get_db_manager(str(tmp_path / "songs.db"))
        try:
            return await scenario(SqlSongRepository(db), SqlEventRepository(db))
        finally:
            await db.close()

    return asyncio.run(runner())


def test_song_round_trip_keeps_missing_features(tmp_path, catalog):
    async def scenario(songs, events):
        for song in catalog:
            await songs.add_song(song)
        return await songs.get_song_by_id('s9'), await songs.get_songs()

    stored, everything = run_with_db(tmp_path, scenario)

    assert stored.features.energy == 0.88
    assert stored.features.valence is None
    assert stored.artist == 'Lil Uzi Vert'
    assert len(everything) == 10


def test_filters(tmp_path, catalog):
    async def scenario(songs, events):
        for song in catalog:
            await songs.add_song(song)
        return (
            await songs.get_feature_complete_songs(),
            await songs.get_songs(SongFilter(feature_complete=False)),
            await songs.get_songs(SongFilter(artist='drake')),
            await songs.get_songs(SongFilter(genre='trap', limit=2)),
            await songs.get_songs(SongFilter(ids=['s1', 's10'])),
        )

    complete, incomplete, drake, trap, by_id = run_with_db(tmp_path, scenario)

    assert len(complete) == 8
    assert {s.id for s in incomplete} == {'s8', 's9'}
    assert {s.id for s in drake} == {'s4', 's5'}
    assert [s.id for s in trap] == ['s1', 's2']
    assert {s.id for s in by_id} == {'s1', 's10'}


def test_writes_update_features_and_tags(tmp_path):
    async def scenario(songs, events):
        await songs.add_song(make_song('x', genres=['Old']))
        await songs.update_song_features('x', {'energy': 0.6, 'tempo': 128, 'not_a_feature': 1})
        await songs.set_song_genres('x', ['Trap', 'Hip-Hop', 'Trap'])
        await songs.set_song_moods('x', ['Energetic'])
        return await songs.get_song_by_id('x')

    song = run_with_db(tmp_path, scenario)

    assert (song.features.energy, song.features.tempo) == (0.6, 128.0)
    assert song.genres == frozenset({'Trap', 'Hip-Hop'})
    assert song.moods == frozenset({'Energetic'})


def test_add_song_replaces_existing(tmp_path):
    async def scenario(songs, events):
        await songs.add_song(make_song('x', genres=['Old'], energy=0.2))
        await songs.add_song(make_song('x', genres=['New'], energy=0.9))
        return await songs.get_songs()

    stored = run_with_db(tmp_path, scenario)

    assert len(stored) == 1
    assert stored[0].genres == frozenset({'New'})
    assert stored[0].features.energy == 0.9


def test_writes_to_unknown_song_raise(tmp_path):
    async def scenario(songs, events):
        await songs.update_song_features('ghost', {'energy': 0.5})

    with pytest.raises(SongNotFoundError):
        run_with_db(tmp_path, scenario)


def test_events_by_kind(tmp_path):
    async def scenario(songs, events):
        await songs.add_song(make_song('s1'))
        await songs.add_song(make_song('s2'))
        for e in (
            event('u1', 's1', 'play', play_count=3),
            event('u1', 's2', 'skip'),
            event('u1', 's1', 'like'),
            event('u1', 's2', 'rating', 4),
            event('u2', 's1', 'like'),
        ):
            await events.add_event(e)
        return (
            await events.get_interactions('u1'),
            await events.get_likes('u1'),
            await events.get_ratings('u1'),
            await events.get_all_events(),
        )

    interactions, likes, ratings, everything = run_with_db(tmp_path, scenario)

    assert [(e.kind, e.play_count) for e in interactions] == [(EventKind.PLAY, 3), (EventKind.SKIP, 1)]
    assert [e.song_id for e in likes] == ['s1']
    assert ratings[0].value == 4
    assert len(everything) == 5
    assert {e.user_id for e in everything} == {'u1', 'u2'}
