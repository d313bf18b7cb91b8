from concierge.analytics import analytics
from concierge.cache import CachePrefix, ResultCache, ttl_for
from concierge.config import settings


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def test_set_then_get_returns_value_until_ttl_elapses():
    clock = FakeClock()
    c = ResultCache(max_size=10, clock=clock)
    c.set(CachePrefix.EMBEDDING, "hello", [0.1, 0.2], ttl_seconds=60)

    assert c.get(CachePrefix.EMBEDDING, "hello") == [0.1, 0.2]
    clock.advance(59)
    assert c.get(CachePrefix.EMBEDDING, "hello") == [0.1, 0.2]
    clock.advance(1)
    assert c.get(CachePrefix.EMBEDDING, "hello") is None
    assert len(c) == 0


def test_keys_are_independent_of_dict_ordering():
    c = ResultCache(max_size=10)
    c.set(CachePrefix.RAG_SEARCH, {"query": "q", "match_count": 4}, "v", ttl_seconds=60)
    assert c.get(CachePrefix.RAG_SEARCH, {"match_count": 4, "query": "q"}) == "v"
    assert c.get(CachePrefix.RAG_SEARCH, {"match_count": 5, "query": "q"}) is None


def test_same_key_under_different_prefixes_does_not_collide():
    c = ResultCache(max_size=10)
    c.set(CachePrefix.METRICS, "k", 1, ttl_seconds=60)
    c.set(CachePrefix.TAXONOMY, "k", 2, ttl_seconds=60)
    assert c.get(CachePrefix.METRICS, "k") == 1
    assert c.get(CachePrefix.TAXONOMY, "k") == 2


def test_full_cache_evicts_oldest_insertion():
    c = ResultCache(max_size=3)
    for k in ("a", "b", "c"):
        c.set(CachePrefix.RAG_SEARCH, k, k.upper(), ttl_seconds=60)
    # Reads do not refresh insertion order
    assert c.get(CachePrefix.RAG_SEARCH, "a") == "A"

    c.set(CachePrefix.RAG_SEARCH, "d", "D", ttl_seconds=60)

    assert c.get(CachePrefix.RAG_SEARCH, "a") is None
    assert [c.get(CachePrefix.RAG_SEARCH, k) for k in ("b", "c", "d")] == ["B", "C", "D"]
    assert len(c) == 3


def test_resetting_a_key_moves_it_to_newest():
    c = ResultCache(max_size=2)
    c.set(CachePrefix.RAG_SEARCH, "a", 1, ttl_seconds=60)
    c.set(CachePrefix.RAG_SEARCH, "b", 2, ttl_seconds=60)
    c.set(CachePrefix.RAG_SEARCH, "a", 3, ttl_seconds=60)
    c.set(CachePrefix.RAG_SEARCH, "c", 4, ttl_seconds=60)

    assert c.get(CachePrefix.RAG_SEARCH, "b") is None
    assert c.get(CachePrefix.RAG_SEARCH, "a") == 3


def test_clear_prefix_only_removes_that_prefix():
    c = ResultCache(max_size=10)
    c.set(CachePrefix.RAG_SEARCH, "a", 1, ttl_seconds=60)
    c.set(CachePrefix.RAG_SEARCH, "b", 2, ttl_seconds=60)
    c.set(CachePrefix.ORCHESTRATOR, "a", 3, ttl_seconds=60)

    assert c.clear_prefix(CachePrefix.RAG_SEARCH) == 2
    assert c.get(CachePrefix.RAG_SEARCH, "a") is None
    assert c.get(CachePrefix.ORCHESTRATOR, "a") == 3


def test_sweep_removes_only_expired_entries():
    clock = FakeClock()
    c = ResultCache(max_size=10, clock=clock)
    c.set(CachePrefix.ORCHESTRATOR, "short", 1, ttl_seconds=10)
    c.set(CachePrefix.EMBEDDING, "long", 2, ttl_seconds=100)
    clock.advance(50)

    assert c.sweep() == 1
    assert len(c) == 1
    assert c.get(CachePrefix.EMBEDDING, "long") == 2


def test_stats_count_hits_and_misses_per_prefix():
    c = ResultCache(max_size=10)
    c.set(CachePrefix.EMBEDDING, "x", 1, ttl_seconds=60)
    c.get(CachePrefix.EMBEDDING, "x")
    c.get(CachePrefix.EMBEDDING, "y")
    c.get(CachePrefix.RAG_SEARCH, "z")

    stats = c.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 2
    assert stats["byPrefix"]["emb"] == {"hits": 1, "misses": 1}
    assert stats["byPrefix"]["rag"] == {"hits": 0, "misses": 1}
    assert analytics.get_cache_stats()["emb"]["hitRate"] == 50.0


def test_visual_asset_ttl_is_shorter_than_signed_url_lifetime():
    assert ttl_for(CachePrefix.VISUAL_ASSETS) < settings.SIGNED_URL_TTL_SECONDS
    assert ttl_for(CachePrefix.EMBEDDING) == 24 * 60 * 60
    assert ttl_for(CachePrefix.ORCHESTRATOR) == 30 * 60
