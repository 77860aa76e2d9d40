"""
Tests for the activity catalog client and embedding cache

Run with pytest, or directly: python test_catalog_client.py
"""

import sys
import os
import asyncio
import json

import numpy as np
import pytest
import redis
import requests

# Add the project root to the Python path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from config.config import CatalogConfig
from models.candidate_pool import Activity
from services.catalog_client import CatalogClient, CatalogError, StaticCatalog, parse_game_start
from services.embedding_cache import EmbeddingCache


def make_response(payload, status_code: int = 200) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(payload).encode() if payload is not None else b''
    return response


class FakeHttp:
    """Stands in for requests.Session, recording every call."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


GAME_START = {
    'session_id': 'abc-123',
    'recommendations': [
        {'id': 1, 'name': 'Museum visit', 'embedding': [0.1, 0.2, 0.3]},
        {'id': 2, 'name': 'Trail run'}
    ],
    'base_ai_weights': {'coef': [[0.5, 0.0, 0.0]], 'intercept': [0.1], 'classes': [0, 1], 'is_fitted': True}
}


def test_parse_game_start():
    batch = parse_game_start(GAME_START)

    assert batch.session_id == 'abc-123'
    assert [activity.id for activity in batch.activities] == [1, 2]
    assert batch.activities[0].has_embedding
    assert not batch.activities[1].has_embedding
    assert batch.base_weights['is_fitted'] is True


def test_parse_game_start_rejects_bad_payloads():
    with pytest.raises(CatalogError):
        parse_game_start({'session_id': 'x'})
    with pytest.raises(CatalogError):
        parse_game_start({'recommendations': [{'name': 'no id'}]})
    with pytest.raises(CatalogError):
        parse_game_start(None)


def test_fetch_batch_posts_tags():
    http = FakeHttp([make_response(GAME_START)])
    client = CatalogClient(CatalogConfig(base_url='http://catalog.test/'), http_session=http)

    batch = asyncio.run(client.fetch_batch(['sunny', 'morning', 'chill']))

    assert len(batch.activities) == 2
    call = http.calls[0]
    assert call['method'] == 'POST'
    assert call['url'] == 'http://catalog.test/activities/game/start'
    assert call['json'] == ['sunny', 'morning', 'chill']
    assert call['timeout'] == 10.0


def test_submit_training_payload():
    http = FakeHttp([make_response(None)])
    client = CatalogClient(CatalogConfig(base_url='http://catalog.test'), http_session=http)

    asyncio.run(client.submit_training('abc-123', 7, ['sunny', 'happy']))

    call = http.calls[0]
    assert call['url'] == 'http://catalog.test/activities/game/train'
    assert call['json'] == {'session_id': 'abc-123', 'chosen_activity_id': 7, 'context_tags': ['sunny', 'happy']}


def test_fetch_embeddings():
    payload = {
        'activities': [{'id': 1, 'name': 'A', 'embedding': [0.1, 0.2]}, {'id': 2, 'name': 'B', 'embedding': [0.3, 0.4]}],
        'embedding_dimension': 2
    }
    client = CatalogClient(http_session=FakeHttp([make_response(payload)]))

    activities = asyncio.run(client.fetch_embeddings())

    assert [activity.id for activity in activities] == [1, 2]
    assert np.allclose(activities[1].embedding, [0.3, 0.4])


def test_transport_errors_become_catalog_errors():
    for error in (requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")):
        client = CatalogClient(http_session=FakeHttp(error=error))
        with pytest.raises(CatalogError):
            asyncio.run(client.fetch_batch(['sunny']))

    client = CatalogClient(http_session=FakeHttp([make_response({'detail': 'boom'}, status_code=500)]))
    with pytest.raises(CatalogError):
        asyncio.run(client.fetch_batch(['sunny']))


def test_invalid_json_becomes_catalog_error():
    response = requests.Response()
    response.status_code = 200
    response._content = b'<html>not json</html>'
    client = CatalogClient(http_session=FakeHttp([response]))

    with pytest.raises(CatalogError):
        asyncio.run(client.fetch_batch(['sunny']))


def test_static_catalog_slices_and_failures():
    activities = [Activity(id=i, name=str(i)) for i in range(5)]
    catalog = StaticCatalog(activities, batch_size=2)

    async def run():
        first = await catalog.fetch_batch([])
        catalog.fail_next = 1
        with pytest.raises(CatalogError):
            await catalog.fetch_batch([])
        second = await catalog.fetch_batch([])
        third = await catalog.fetch_batch([])
        fourth = await catalog.fetch_batch([])
        return first, second, third, fourth

    first, second, third, fourth = asyncio.run(run())

    assert [a.id for a in first.activities] == [0, 1]
    assert [a.id for a in second.activities] == [2, 3]
    assert [a.id for a in third.activities] == [4]
    assert fourth.activities == []
    assert catalog.fetch_count == 5


def test_embedding_cache_memory_tier():
    cache = EmbeddingCache()
    cache.put(1, [0.1, 0.2])

    assert np.allclose(cache.get(1), [0.1, 0.2])
    assert cache.get(2) is None
    assert asyncio.run(cache.prefetch([2])) == 0

    metrics = cache.get_metrics()
    assert metrics['hits'] == 1
    assert metrics['misses'] == 1
    assert metrics['size'] == 1


class RecordingRedis:
    """Minimal synchronous Redis client keeping values in a dict."""

    def __init__(self, fail: bool = False):
        self.values = {}
        self.fail = fail

    def pipeline(self):
        return self

    def setex(self, key, ttl, value):
        self.values[key] = value

    def execute(self):
        if self.fail:
            raise redis.ConnectionError("redis down")

    def mget(self, keys):
        if self.fail:
            raise redis.ConnectionError("redis down")
        return [self.values.get(key) for key in keys]


def test_embedding_cache_redis_tier():
    shared = RecordingRedis()
    writer = EmbeddingCache(redis_client=shared, ttl=60)
    stored = asyncio.run(writer.store_activities([
        Activity(id=1, name='A', embedding=np.array([0.1, 0.2])),
        Activity(id=2, name='B')
    ]))
    assert stored == 1
    assert json.loads(shared.values['embedding:1']) == [0.1, 0.2]

    # A second cache sharing the same Redis sees the embedding after a prefetch
    reader = EmbeddingCache(redis_client=shared)
    assert reader.get(1) is None
    assert asyncio.run(reader.prefetch([1, 2, 1])) == 1
    assert np.allclose(reader.get(1), [0.1, 0.2])
    assert reader.get_metrics()['redis_hits'] == 1


def test_embedding_cache_survives_redis_errors():
    cache = EmbeddingCache(redis_client=RecordingRedis(fail=True))

    stored = asyncio.run(cache.store_activities([Activity(id=1, name='A', embedding=np.array([0.5]))]))
    assert stored == 1
    assert np.allclose(cache.get(1), [0.5])
    assert asyncio.run(cache.prefetch([2])) == 0


def test_embedding_cache_load_from_catalog():
    activities = [
        Activity(id=1, name='A', embedding=np.array([0.1])),
        Activity(id=2, name='B'),
        Activity(id=3, name='C', embedding=np.array([0.3]))
    ]
    cache = EmbeddingCache()

    stored = asyncio.run(cache.load(StaticCatalog(activities)))

    assert stored == 2
    assert cache.is_loaded
    assert len(cache) == 2
    assert cache.get(2) is None


def main():
    """Run all tests."""
    print("Catalog Client - Test Suite")
    print("=" * 50)

    tests = [
        test_parse_game_start,
        test_parse_game_start_rejects_bad_payloads,
        test_fetch_batch_posts_tags,
        test_submit_training_payload,
        test_fetch_embeddings,
        test_transport_errors_become_catalog_errors,
        test_invalid_json_becomes_catalog_error,
        test_static_catalog_slices_and_failures,
        test_embedding_cache_memory_tier,
        test_embedding_cache_redis_tier,
        test_embedding_cache_survives_redis_errors,
        test_embedding_cache_load_from_catalog,
    ]

    failed = 0
    for test in tests:
        try:
            test()
            print(f"✓ {test.__name__}")
        except AssertionError as e:
            failed += 1
            print(f"✗ {test.__name__}: {e}")

    print("\n" + "=" * 50)
    print(f"{len(tests) - failed}/{len(tests)} tests passed")
    return failed == 0


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
