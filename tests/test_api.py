import pytest
from fastapi.testclient import TestClient

from songrec.api import create_app
from songrec.infra.cache import RecommendationCache
from songrec.infra.memory import InMemoryEventRepository, InMemorySongRepository
from songrec.services import build_services

from conftest import event


@pytest.fixture
def client(catalog):
    events = InMemoryEventRepository([
        event('u1', 's1', 'like'),
        event('u1', 's4', 'play', play_count=2),
        event('u2', 's2', 'like'),
    ])
    services = build_services(InMemorySongRepository(catalog), events, cache=RecommendationCache())
    with TestClient(create_app(services=services)) as client:
        yield client


def test_recommendations(client):
    response = client.get("/recommendations/u1", params={'limit': 5, 'algorithm': 'content'})

    assert response.status_code == 200
    body = response.json()
    assert body['user_id'] == 'u1'
    assert body['algorithm'] == 'content'
    assert body['count'] == len(body['recommendations']) <= 5
    for entry in body['recommendations']:
        assert 0 <= entry['score'] <= 1
        assert entry['sources']
        assert entry['song_id'] not in ('s1', 's4')


@pytest.mark.parametrize('params', [{'limit': 0}, {'limit': 500}, {'algorithm': 'magic'}])
def test_bad_recommendation_requests(client, params):
    assert client.get("/recommendations/u1", params=params).status_code == 400


def test_similar_songs(client):
    response = client.get("/songs/s1/similar", params={'limit': 3})

    assert response.status_code == 200
    assert response.json()['count'] == 3
    assert client.get("/songs/nope/similar").status_code == 404


def test_data_completion_actions(client):
    stats = client.post("/admin/data-completion", json={'action': 'stats'}).json()
    assert stats['total_songs'] == 10

    dry = client.post("/admin/data-completion", json={'action': 'complete', 'dry_run': True}).json()
    assert dry['completed'] == 2
    assert len(dry['songs']) == 2

    done = client.post("/admin/data-completion", json={'action': 'complete'}).json()
    assert done['completed'] == 2
    assert 'songs' not in done

    status = client.get("/admin/data-completion").json()
    assert status['audio_features_completion_rate'] == 100

    assert client.post("/admin/data-completion", json={'action': 'validate'}).json()['cleaned'] == 0
    assert client.post("/admin/data-completion", json={'action': 'explode'}).status_code == 400
    assert client.post("/admin/data-completion", json={'batch_size': 0}).status_code == 422


def test_health(client):
    body = client.get("/health").json()
    assert body['status'] == 'degraded'
    assert body['model_status'] == 'uninitialized'
    assert body['database_connected'] is False

    client.get("/recommendations/u1")
    body = client.get("/health").json()
    assert body['status'] == 'healthy'
    assert body['cache_stats']['misses'] == 1
