from songrec.infra.cache import RecommendationCache


def test_miss_then_hot_hit():
    cache = RecommendationCache(hot_cache_size=10, warm_cache_size=10)

    assert cache.get('u1', 'hybrid', 20) is None
    cache.set('u1', 'hybrid', 20, ['r'])
    assert cache.get('u1', 'hybrid', 20) == ['r']

    metrics = cache.get_metrics()
    assert (metrics['hot_hits'], metrics['misses']) == (1, 1)
    assert metrics['hit_rate'] == 0.5


def test_warm_hit_is_promoted():
    cache = RecommendationCache(hot_cache_size=10, warm_cache_size=10)
    cache.set('u1', 'hybrid', 20, ['r'])
    cache.hot_cache.clear()

    assert cache.get('u1', 'hybrid', 20) == ['r']
    assert cache.metrics['warm_hits'] == 1
    assert cache.make_key('u1', 'hybrid', 20) in cache.hot_cache


def test_keys_include_hint_and_limit():
    cache = RecommendationCache()
    cache.set('u1', 'hybrid', 20, ['a'])

    assert cache.get('u1', 'content', 20) is None
    assert cache.get('u1', 'hybrid', 10) is None


def test_invalidate_user_leaves_others():
    cache = RecommendationCache()
    cache.set('u1', 'hybrid', 20, ['a'])
    cache.set(1, 'content', 5, ['b'])
    cache.set('u2', 'hybrid', 20, ['c'])

    cache.invalidate_user('u1')
    cache.invalidate_user('1')

    assert cache.get('u1', 'hybrid', 20) is None
    assert cache.get(1, 'content', 5) is None
    assert cache.get('u2', 'hybrid', 20) == ['c']


def test_invalidate_all():
    cache = RecommendationCache()
    cache.set('u1', 'hybrid', 20, ['a'])
    cache.invalidate_all()

    assert cache.get_metrics()['warm_cache_size'] == 0
    assert cache.get('u1', 'hybrid', 20) is None
